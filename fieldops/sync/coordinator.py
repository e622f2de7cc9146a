"""
Background sync coordinator.

Runs SyncProtocol cycles on a fixed interval from a daemon thread, and on
demand through sync_now(). At most one cycle is ever in flight: a caller that
asks while a cycle is running gets that cycle's result instead of a new one.

States:
  idle     - waiting for the next scheduled cycle
  syncing  - a cycle is running
  backoff  - the last cycle could not reach the server; the next attempt is
             delayed by min(base * 2 ** (failures - 1), max) seconds
"""

import logging
import threading
from concurrent.futures import Future
from datetime import datetime, timedelta, timezone
from typing import Optional

from fieldops.sync.offline_queue import OfflineQueue
from fieldops.sync.protocol import FAILED, SyncProtocol, SyncResult

logger = logging.getLogger(__name__)

IDLE = "idle"
SYNCING = "syncing"
BACKOFF = "backoff"


class SyncCoordinator:
    def __init__(
        self,
        protocol: SyncProtocol,
        interval_seconds: float = 900.0,
        backoff_base_seconds: float = 30.0,
        backoff_max_seconds: float = 900.0,
        queue: Optional[OfflineQueue] = None,
        initial_delay_seconds: float = 5.0,
    ):
        self._protocol = protocol
        self._interval = interval_seconds
        self._backoff_base = backoff_base_seconds
        self._backoff_max = backoff_max_seconds
        self._queue = queue or getattr(protocol, "queue", None)
        self._initial_delay = initial_delay_seconds

        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._inflight: Optional[Future] = None

        self._state = IDLE
        self._consecutive_failures = 0
        self._next_attempt_at: Optional[datetime] = None
        self._last_sync_at: Optional[datetime] = None
        self._last_result: Optional[SyncResult] = None
        self._last_error: Optional[str] = None
        self._cycles = 0

    # ── Public interface ─────────────────────────────────────────────────────

    @property
    def state(self) -> str:
        with self._lock:
            return self._current_state()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        """Start the recurring background cycle."""
        if self.is_running:
            logger.warning("Sync coordinator already running.")
            return

        self._stop_event.clear()
        with self._lock:
            self._next_attempt_at = _utcnow() + timedelta(seconds=self._initial_delay)
        self._thread = threading.Thread(target=self._loop, daemon=True, name="sync-coordinator")
        self._thread.start()
        logger.info("Sync coordinator started. Interval: %ss", self._interval)

    def stop(self, timeout: Optional[float] = None):
        """Stop the loop. An in-flight cycle finishes its current request first.

        sync_now() returns a skipped result until start() is called again.
        """
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning("Sync coordinator did not stop within %ss", timeout)
            else:
                self._thread = None
        logger.info("Sync coordinator stopped.")

    def sync_now(self, timeout: Optional[float] = None) -> SyncResult:
        """Run a cycle now, or wait for the one already running."""
        if self._stop_event.is_set():
            logger.info("Sync coordinator is stopped, not starting a cycle.")
            return SyncResult.skipped("Sync coordinator is stopped")
        future, owner = self._claim()
        if owner:
            self._execute(future)
        else:
            logger.info("Sync already in progress, waiting for it.")
        return future.result(timeout=timeout)

    def backoff_delay(self, failures: int) -> float:
        if failures <= 0:
            return 0.0
        return min(self._backoff_base * 2 ** (failures - 1), self._backoff_max)

    def status(self) -> dict:
        with self._lock:
            state = self._current_state()
            last_result = self._last_result
            payload = {
                "state": state,
                "running": self.is_running,
                "last_sync_at": self._last_sync_at.isoformat() if self._last_sync_at else None,
                "last_result": last_result.to_dict() if last_result else None,
                "last_error": self._last_error,
                "consecutive_failures": self._consecutive_failures,
                "interval_seconds": self._interval,
                "next_attempt_at": self._next_attempt_at.isoformat() if self._next_attempt_at else None,
                "cycles": self._cycles,
            }

        pending = failed = None
        if self._queue is not None:
            try:
                pending = self._queue.pending_count()
                failed = self._queue.failed_count()
            except Exception as e:
                logger.warning("Could not read offline queue depth: %s", e)
        payload["pending_changes"] = pending
        payload["failed_changes"] = failed
        return payload

    # ── Cycle execution ──────────────────────────────────────────────────────

    def _claim(self) -> tuple[Future, bool]:
        with self._lock:
            if self._inflight is not None:
                return self._inflight, False
            future: Future = Future()
            self._inflight = future
            self._state = SYNCING
            return future, True

    def _execute(self, future: Future) -> None:
        try:
            result = self._protocol.run_cycle(should_stop=self._stop_event.is_set)
        except Exception as e:
            logger.exception("Sync cycle crashed")
            result = SyncResult.crashed(str(e))

        with self._lock:
            self._record(result)
            self._inflight = None
        future.set_result(result)

    def _record(self, result: SyncResult) -> None:
        now = _utcnow()
        self._cycles += 1
        self._last_result = result

        if result.status == FAILED or result.interrupted:
            self._consecutive_failures += 1
            delay = self.backoff_delay(self._consecutive_failures)
            self._state = BACKOFF
            self._next_attempt_at = now + timedelta(seconds=delay)
            self._last_error = result.errors[-1] if result.errors else "sync failed"
            logger.warning(
                "Sync cycle failed (%d in a row), backing off %.0fs",
                self._consecutive_failures, delay,
            )
        elif result.stopped:
            # Cut short by stop(): neither a completed sync nor a new failure
            self._state = BACKOFF if self._consecutive_failures else IDLE
            self._last_error = result.errors[-1] if result.errors else None
            logger.info("Sync cycle stopped early, last sync time unchanged")
        else:
            self._consecutive_failures = 0
            self._state = IDLE
            self._last_sync_at = result.finished_at or now
            self._next_attempt_at = now + timedelta(seconds=self._interval)
            self._last_error = result.errors[-1] if result.errors else None

    def _current_state(self) -> str:
        # Backoff ends on its own once the delay has elapsed
        if self._state == BACKOFF and self._next_attempt_at and _utcnow() >= self._next_attempt_at:
            self._state = IDLE
        return self._state

    # ── Core loop ────────────────────────────────────────────────────────────

    def _loop(self):
        while not self._stop_event.is_set():
            with self._lock:
                due = self._next_attempt_at or _utcnow()
            wait = (due - _utcnow()).total_seconds()
            if wait > 0:
                # Re-check the schedule at least once a minute; sync_now() may have moved it
                self._stop_event.wait(min(wait, 60.0))
                continue

            try:
                self.sync_now()
            except Exception as e:
                logger.error(f"Sync coordinator error: {e}", exc_info=True)
                with self._lock:
                    self._next_attempt_at = _utcnow() + timedelta(seconds=self._interval)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)
