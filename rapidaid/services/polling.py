import logging
from typing import List

from ..core.errors import FetchError
from ..core.models import AlertRecord
from .backend import AlertBackend

logger = logging.getLogger(__name__)


class PollSource:
    """Reports the backend's current alert list for this station as a full snapshot."""

    def __init__(self, backend: AlertBackend):
        self.backend = backend

    async def fetch_snapshot(self) -> List[AlertRecord]:
        """
        Fetches the current alert list.

        Raises FetchError when the backend cannot be reached or answers with an
        error. Individual alert objects without an id are skipped rather than
        failing the whole snapshot.
        """
        alerts = await self.backend.get_station_alerts()

        snapshot = []
        for alert_data in alerts:
            if not isinstance(alert_data, dict):
                logger.warning(f"Ignoring non-object alert entry in snapshot: {alert_data!r}")
                continue
            try:
                snapshot.append(AlertRecord.from_api(alert_data))
            except ValueError as e:
                logger.warning(f"Ignoring alert entry: {e}")
        logger.debug(f"Fetched snapshot with {len(snapshot)} alerts")
        return snapshot

    async def fetch_alert(self, alert_id: str) -> AlertRecord:
        data = await self.backend.get_alert(alert_id)
        try:
            return AlertRecord.from_api(data)
        except ValueError as e:
            raise FetchError(str(e)) from e
