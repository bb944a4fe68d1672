# reminder_worker.py
"""
Background thread driving the time-based parts of the engine
"""
import logging
import threading
from typing import Dict, Optional

logger = logging.getLogger(__name__)


class ReminderWorker:
    """Periodically expires stale reservations, retries reminder registration
    and fires due reminders"""

    def __init__(self, booking, scheduler, interval_seconds: float = 60):
        self.booking = booking
        self.scheduler = scheduler
        self.interval = interval_seconds

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run,
            daemon=True,
            name="ReminderWorker"
        )
        self._thread.start()
        logger.info(f"⏰ Reminder worker started (every {self.interval}s)")

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Reminder worker stopped")

    def run_once(self) -> Dict[str, int]:
        """One pass; returns what it did"""
        expired = self.booking.sweep_expired()
        registered = self.booking.retry_pending_registrations()
        deleted = self.booking.retry_pending_deletions()
        sent = self.scheduler.tick()
        return {'expired': expired, 'registered': registered, 'deleted': deleted, 'sent': sent}

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                result = self.run_once()
                if any(result.values()):
                    logger.debug(f"Reminder worker pass: {result}")
            except Exception as e:
                # one bad pass must not kill the loop
                logger.exception(f"❌ Reminder worker pass failed: {e}")
            self._stop_event.wait(self.interval)
