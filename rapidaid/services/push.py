import asyncio
import json
import logging
import math
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import httpx

from ..core.errors import MalformedPayloadError
from ..core.models import DEFAULT_ALERT_KIND, AlertRecord, AlertStatus, Location

logger = logging.getLogger(__name__)

AlertHandler = Callable[[AlertRecord], None]


def _parse_coordinate(name: str, value: Any) -> float:
    if value is None or isinstance(value, bool):
        raise MalformedPayloadError(name, value)
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        raise MalformedPayloadError(name, value)
    if math.isinf(parsed):
        raise MalformedPayloadError(name, value)
    return parsed


def alert_from_push(payload: Dict[str, Any], *, fallback_id: str, received_at: datetime) -> AlertRecord:
    """
    Converts a push payload `{"data": {alertId?, type?, lat, lng, timestamp?}}`
    into a pending AlertRecord.

    Never raises on bad input: a missing id becomes `fallback_id`, unparseable
    coordinates become NaN and a missing timestamp becomes `received_at`.
    A partially broken alert is still an emergency.
    """
    data = payload.get("data") if isinstance(payload, dict) else None
    if not isinstance(data, dict):
        logger.warning(f"Push payload has no data object, using defaults: {payload!r}")
        data = {}

    coordinates = {}
    for name in ("lat", "lng"):
        try:
            coordinates[name] = _parse_coordinate(name, data.get(name))
        except MalformedPayloadError as e:
            logger.warning(f"{e}; storing NaN")
            coordinates[name] = math.nan

    alert_id = data.get("alertId")
    if not alert_id:
        logger.warning(f"Push payload has no alertId, using synthesized id {fallback_id}")
        alert_id = fallback_id

    return AlertRecord(
        id=str(alert_id),
        kind=data.get("type") or DEFAULT_ALERT_KIND,
        location=Location(**coordinates),
        status=AlertStatus.PENDING,
        created_at=str(data.get("timestamp") or received_at.isoformat()),
    )


class PushSource:
    """
    Entry point for push-delivered alerts.

    The transport calls `deliver` once per push event; the converted record is
    handed to the single handler registered with `on_alert`.
    """

    def __init__(self):
        self._handler: Optional[AlertHandler] = None
        self._last_synthesized_ms = 0

    def on_alert(self, handler: AlertHandler):
        if self._handler is not None and self._handler is not handler:
            logger.warning("Replacing previously registered push alert handler")
        self._handler = handler

    def deliver(self, payload: Dict[str, Any]) -> Optional[AlertRecord]:
        received_at = datetime.now(timezone.utc)
        record = alert_from_push(
            payload, fallback_id=self._synthesize_id(received_at), received_at=received_at
        )
        logger.warning(f"🚨 Push alert received: {record.id}")

        if self._handler is None:
            logger.error(f"No push handler registered, dropping alert {record.id}")
            return None
        try:
            self._handler(record)
        except Exception as e:
            logger.error(f"Push handler failed for alert {record.id}: {e}", exc_info=True)
        return record

    def _synthesize_id(self, received_at: datetime) -> str:
        # Delivery time in milliseconds, bumped so two pushes in the same
        # millisecond never share an id
        now_ms = int(received_at.timestamp() * 1000)
        if now_ms <= self._last_synthesized_ms:
            now_ms = self._last_synthesized_ms + 1
        self._last_synthesized_ms = now_ms
        return str(now_ms)


class PushStreamSubscriber:
    """SSE client that feeds an upstream push stream into a PushSource."""

    def __init__(self, stream_url: str, push_source: PushSource, api_key: Optional[str] = None,
                 max_reconnect_attempts: int = 5, reconnect_delay: float = 5.0):
        self.stream_url = stream_url
        self.push_source = push_source
        self.api_key = api_key
        self.is_connected = False
        self.subscription_task: Optional[asyncio.Task] = None
        self.reconnect_attempts = 0
        self.max_reconnect_attempts = max_reconnect_attempts
        self.reconnect_delay = reconnect_delay

    async def subscribe(self):
        """Subscribes to the push stream and delivers every event until attempts run out."""
        while self.reconnect_attempts < self.max_reconnect_attempts:
            try:
                logger.info(f"🔗 Connecting to push stream: {self.stream_url}")
                headers = {"X-API-Key": self.api_key} if self.api_key else {}
                async with httpx.AsyncClient(timeout=None) as client:
                    async with client.stream("GET", self.stream_url, headers=headers) as response:
                        if response.status_code != 200:
                            logger.error(f"Push stream connection failed with status {response.status_code}")
                            self.is_connected = False
                            break

                        self.is_connected = True
                        self.reconnect_attempts = 0
                        logger.info("✅ Connected to push stream")
                        async for line in response.aiter_lines():
                            self.process_line(line)
                logger.warning("Push stream closed by server")
            except (httpx.HTTPError, OSError) as e:
                logger.error(f"Push stream error (attempt {self.reconnect_attempts + 1}): {e}")

            self.is_connected = False
            self.reconnect_attempts += 1
            if self.reconnect_attempts < self.max_reconnect_attempts:
                await asyncio.sleep(self.reconnect_delay)
            else:
                logger.error("Max reconnection attempts reached. Push stream disabled.")

    def process_line(self, line: str) -> Optional[AlertRecord]:
        """Delivers one SSE `data:` line. Keep-alives and non-JSON lines are skipped."""
        if not line.startswith("data:"):
            return None
        event_data = line[5:].strip()
        if not event_data or event_data == "keep-alive":
            return None
        try:
            payload = json.loads(event_data)
        except json.JSONDecodeError:
            logger.debug(f"Skipping non-JSON push stream line: {event_data!r}")
            return None
        if not isinstance(payload, dict):
            return None
        return self.push_source.deliver(payload)

    def start_subscription(self):
        """Start the subscription in the background"""
        if self.subscription_task is None or self.subscription_task.done():
            self.subscription_task = asyncio.create_task(self.subscribe())
            logger.info("🚀 Started push stream subscription task")

    async def stop(self):
        if self.subscription_task and not self.subscription_task.done():
            self.subscription_task.cancel()
            await asyncio.gather(self.subscription_task, return_exceptions=True)
        self.is_connected = False
