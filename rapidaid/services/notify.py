import logging
from typing import Dict, Optional

from .sse import EventBroadcaster

logger = logging.getLogger(__name__)

NEW_ALERT_MESSAGE = "🚨 New Fire Emergency Alert!"
NEW_ALERT_DURATION_MS = 5000
NEW_ALERT_STYLE = {
    "background": "#dc2626",
    "color": "#fff",
    "fontWeight": "bold",
}


class ToastNotifier:
    """Visual notification surface: shows a toast on every connected dashboard."""

    def __init__(self, broadcaster: EventBroadcaster):
        self.broadcaster = broadcaster

    def show(self, message: str, *, level: str = "error", style: Optional[Dict[str, str]] = None,
             duration_ms: int = NEW_ALERT_DURATION_MS):
        # Fire and forget; a toast with no viewer is not an error
        delivered = self.broadcaster.publish("toast", {
            "message": message,
            "level": level,
            "style": style or {},
            "duration": duration_ms,
        })
        logger.debug(f"Toast '{message}' delivered to {delivered} clients")

    def new_alert(self, alert_id: str):
        self.show(NEW_ALERT_MESSAGE, style=NEW_ALERT_STYLE, duration_ms=NEW_ALERT_DURATION_MS)
        logger.info(f"Toast shown for alert {alert_id}")
