import logging
import threading
from typing import Dict, Iterable, List, Optional

from .models import AlertRecord

logger = logging.getLogger(__name__)


class AlertStore:
    """
    In-memory alert list shown on the dashboard, newest arrival first.

    Every mutation runs under one lock and never awaits, so a check-then-insert
    cannot interleave with another push, poll or read-state change. Inserts
    that fire effects must still come from the event loop; the engine rejects
    push delivery from other threads. The unread counter is
    maintained incrementally and always equals the number of pending records.
    """

    def __init__(self):
        self._lock = threading.RLock()
        # Arrival order, most recent insert first
        self._order: List[str] = []
        self._records: Dict[str, AlertRecord] = {}
        self._unread = 0

    def upsert_if_new(self, record: AlertRecord) -> bool:
        """Inserts the record at the front unless its id is already known."""
        with self._lock:
            if record.id in self._records:
                return False
            self._records[record.id] = record
            self._order.insert(0, record.id)
            if record.is_pending:
                self._unread += 1
            return True

    def replace_snapshot(self, records: Iterable[AlertRecord]):
        """
        Destructively replaces the whole collection, keeping the given order.

        Poll results are never merged through this; it would erase alerts only
        known from push delivery.
        """
        with self._lock:
            self._order = []
            self._records = {}
            for record in records:
                if record.id in self._records:
                    continue
                self._records[record.id] = record
                self._order.append(record.id)
            self._unread = sum(1 for r in self._records.values() if r.is_pending)

    def mark_as_read(self, alert_id: str) -> bool:
        """Moves a pending alert to acknowledged. Returns True only on a real transition."""
        with self._lock:
            record = self._records.get(alert_id)
            if record is None or not record.is_pending:
                return False
            self._records[alert_id] = record.acknowledged()
            self._unread -= 1
            logger.info(f"Alert {alert_id} marked as read ({self._unread} unread)")
            return True

    def clear(self):
        with self._lock:
            self._order = []
            self._records = {}
            self._unread = 0

    def list(self) -> List[AlertRecord]:
        with self._lock:
            return [self._records[alert_id] for alert_id in self._order]

    def get(self, alert_id: str) -> Optional[AlertRecord]:
        with self._lock:
            return self._records.get(alert_id)

    @property
    def unread_count(self) -> int:
        with self._lock:
            return self._unread

    def __contains__(self, alert_id: str) -> bool:
        with self._lock:
            return alert_id in self._records

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
