import logging
import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict

logger = logging.getLogger(__name__)

DEFAULT_ALERT_KIND = "fire"


class AlertStatus(str, Enum):
    """Lifecycle of an alert. Only PENDING -> ACKNOWLEDGED is allowed."""
    PENDING = "pending"
    ACKNOWLEDGED = "acknowledged"


@dataclass(frozen=True)
class Location:
    lat: float = math.nan
    lng: float = math.nan

    def to_dict(self) -> Dict[str, float | None]:
        # NaN is not valid JSON, so unknown coordinates are sent as null
        return {
            "lat": None if math.isnan(self.lat) else self.lat,
            "lng": None if math.isnan(self.lng) else self.lng,
        }


@dataclass(frozen=True)
class AlertRecord:
    """One emergency alert as shown on the dashboard."""
    id: str
    kind: str = DEFAULT_ALERT_KIND
    location: Location = field(default_factory=Location)
    status: AlertStatus = AlertStatus.PENDING
    created_at: str = ""

    @property
    def is_pending(self) -> bool:
        return self.status is AlertStatus.PENDING

    def acknowledged(self) -> "AlertRecord":
        return replace(self, status=AlertStatus.ACKNOWLEDGED)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "AlertRecord":
        """
        Builds a record from a backend alert object.

        The backend names the id `_id` and the category `type`; `id` and `kind`
        are accepted as well. Raises ValueError when no id is present, since a
        backend record without an id cannot be deduplicated.
        """
        alert_id = data.get("_id") or data.get("id")
        if not alert_id:
            raise ValueError(f"Alert object has no id: {data!r}")

        location = data.get("location")
        if not isinstance(location, dict):
            location = {}
        status_value = data.get("status") or AlertStatus.PENDING.value
        try:
            status = AlertStatus(status_value)
        except ValueError:
            # Backend workflow states beyond the two we track (e.g. "dispatched")
            # are all past the pending stage.
            logger.debug(f"Treating unknown status '{status_value}' of alert {alert_id} as acknowledged")
            status = AlertStatus.ACKNOWLEDGED

        return cls(
            id=str(alert_id),
            kind=data.get("type") or data.get("kind") or DEFAULT_ALERT_KIND,
            location=Location(lat=_to_float(location.get("lat")), lng=_to_float(location.get("lng"))),
            status=status,
            created_at=str(data.get("createdAt") or ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.kind,
            "location": self.location.to_dict(),
            "status": self.status.value,
            "createdAt": self.created_at,
        }


def _to_float(value: Any) -> float:
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return math.nan
    # Infinity is not valid JSON either; treat it like an unparseable coordinate
    return parsed if math.isfinite(parsed) else math.nan
