"""
Reconciliation of push-delivered and polled alerts.

Two producers feed one store:

    push event ──► handle_push ──┐
                                 ├──► AlertStore.upsert_if_new ──► sound + toast
    poll timer ──► poll_once ────┘        (only when inserted)

The store's id check is the only dedup authority, so an alert that arrives by
push and later shows up in a snapshot fires its effects exactly once. The
first snapshot loaded into an empty store is applied silently, so opening the
dashboard does not replay every pending alert.
"""
import asyncio
import logging
from typing import List, Optional, Sequence, Set

from ..services.audio import AudioAlerter
from ..services.notify import ToastNotifier
from ..services.polling import PollSource
from ..services.push import PushSource
from .config import DEFAULT_POLL_INTERVAL_SECONDS
from .errors import FetchError
from .models import AlertRecord, AlertStatus
from .store import AlertStore

logger = logging.getLogger(__name__)


class ReconciliationEngine:

    def __init__(self, store: AlertStore, poll_source: PollSource, push_source: PushSource,
                 alerter: AudioAlerter, notifier: ToastNotifier,
                 poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS, refresh_on_push: bool = True):
        self.store = store
        self.poll_source = poll_source
        self.push_source = push_source
        self.alerter = alerter
        self.notifier = notifier
        self.poll_interval = poll_interval
        self.refresh_on_push = refresh_on_push

        self.loading = False
        self._stopped = False
        self._poll_lock = asyncio.Lock()
        self._poll_task: Optional[asyncio.Task] = None
        self._refresh_task: Optional[asyncio.Task] = None
        self._effect_tasks: Set[asyncio.Task] = set()

        self.push_source.on_alert(self.handle_push)

    @property
    def running(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    async def start(self):
        """Runs an immediate poll, then keeps polling every `poll_interval` seconds."""
        if self.running:
            return
        self._stopped = False
        logger.info(f"Starting alert engine (poll interval {self.poll_interval}s)")
        self._poll_task = asyncio.create_task(self._poll_loop())

    async def stop(self):
        """Cancels the poll timer and any pending refresh; no fetch is issued afterwards."""
        self._stopped = True
        tasks = [t for t in (self._poll_task, self._refresh_task, *self._effect_tasks) if t and not t.done()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._poll_task = None
        self._refresh_task = None
        logger.info("Alert engine stopped")

    async def _poll_loop(self):
        while True:
            try:
                await self.poll_once()
            except Exception as e:
                logger.error(f"An unexpected error occurred in poller: {e}", exc_info=True)
            await asyncio.sleep(self.poll_interval)

    async def poll_once(self) -> int:
        """
        Runs one poll cycle and returns the number of alerts inserted.

        Fetch failures are logged and leave the store untouched; the next tick
        retries.
        """
        async with self._poll_lock:
            was_populated = len(self.store) > 0
            self.loading = True
            try:
                snapshot = await self.poll_source.fetch_snapshot()
            except FetchError as e:
                logger.error(f"Error fetching alerts: {e.message}")
                return 0
            finally:
                self.loading = False

            if self._stopped:
                logger.debug("Engine stopped while fetching, discarding snapshot")
                return 0
            return self._merge_snapshot(snapshot, announce=was_populated)

    def _merge_snapshot(self, snapshot: Sequence[AlertRecord], announce: bool) -> int:
        inserted = 0
        # The backend lists newest first; inserting oldest first keeps that order on a cold start
        for record in reversed(snapshot):
            known = self.store.get(record.id)
            if known is not None:
                if known.is_pending and record.status is AlertStatus.ACKNOWLEDGED:
                    # Acknowledged elsewhere (another console, the backend)
                    self.store.mark_as_read(record.id)
                continue

            if not self.store.upsert_if_new(record):
                continue
            inserted += 1
            if record.is_pending and announce:
                logger.info(f"🔔 New alert detected via polling: {record.id}")
                self._fire_alert_effects(record)

        if inserted:
            logger.info(f"Merged {inserted} new alerts from snapshot ({self.store.unread_count} unread)")
        return inserted

    def handle_push(self, record: AlertRecord):
        """
        Inserts a push-delivered alert and fires its effects if it is new.

        Must be called on the engine's event loop; transports running on
        another thread hand payloads over with `loop.call_soon_threadsafe`.
        Off the loop it raises RuntimeError before touching the store, so an
        alert is never inserted without its effects.
        """
        asyncio.get_running_loop()
        if not self.store.upsert_if_new(record):
            logger.info(f"Push alert {record.id} already known, skipping effects")
            return

        logger.warning(f"🚨 New alert received via push: {record.id}")
        self._fire_alert_effects(record)
        if self.refresh_on_push and not self._stopped:
            self._schedule_refresh()

    def _fire_alert_effects(self, record: AlertRecord):
        # Sound runs in the background so a slow or failing audio chain never
        # holds up the toast or the next insert
        task = asyncio.create_task(self.alerter.play())
        self._effect_tasks.add(task)
        task.add_done_callback(self._effect_tasks.discard)
        self.notifier.new_alert(record.id)

    def _schedule_refresh(self):
        if self._refresh_task is not None and not self._refresh_task.done():
            return
        self._refresh_task = asyncio.create_task(self._refresh())

    async def _refresh(self):
        try:
            await self.poll_once()
        except Exception as e:
            logger.error(f"An unexpected error occurred in push refresh: {e}", exc_info=True)

    async def acknowledge(self, alert_id: str) -> bool:
        """
        Acknowledges the alert on the backend, then marks it read locally.

        Raises FetchError if the backend update fails; the local status is only
        changed after the backend accepted it.
        """
        await self.poll_source.backend.update_alert_status(alert_id, AlertStatus.ACKNOWLEDGED.value)
        logger.info(f"Alert {alert_id} acknowledged on backend")
        return self.store.mark_as_read(alert_id)

    async def fetch_alert(self, alert_id: str) -> AlertRecord:
        return await self.poll_source.fetch_alert(alert_id)

    def mark_as_read(self, alert_id: str) -> bool:
        return self.store.mark_as_read(alert_id)

    def clear(self):
        self.store.clear()
        logger.info("All alerts cleared")

    async def play_alert_sound(self) -> bool:
        return await self.alerter.play()

    @property
    def alerts(self) -> List[AlertRecord]:
        return self.store.list()

    @property
    def unread_count(self) -> int:
        return self.store.unread_count
