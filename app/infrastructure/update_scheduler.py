"""
Update Scheduler - debounced and immediate writes for inline edits.

Two write policies coexist for the same key:
- schedule(): debounced. The write runs once the key has been quiet for
  the configured period; scheduling again before then replaces the
  pending write and restarts the wait.
- flush(): immediate (blur / Enter). Cancels any pending write for the
  key and runs the write now, in the caller's thread.

Writes that share a lock key never overlap. Callers that must read and
write as one step (settle related pending writes, recalculate, save) hold
that lock with hold(); it is reentrant for the holding thread. A pending
write that was cancelled or replaced while it waited for the lock is
skipped.

shutdown() drops pending writes but does not interrupt a write that is
already running.
"""
import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler

from app.config import get_config
from app.domain.exceptions import DomainError

logger = logging.getLogger(__name__)


class UpdateScheduler:
    """Keyed write scheduling on top of an APScheduler BackgroundScheduler."""

    def __init__(
        self,
        debounce_seconds: Optional[float] = None,
        scheduler: Optional[BackgroundScheduler] = None,
    ):
        if debounce_seconds is None:
            debounce_seconds = get_config().debounce_seconds
        self.debounce_seconds = debounce_seconds
        self._scheduler = scheduler or BackgroundScheduler(timezone=timezone.utc)
        # lock key -> [RLock, number of threads holding or waiting]
        self._locks: Dict[Any, List] = {}
        # key -> (token, lock key, write_fn, args)
        self._pending: Dict[Any, Tuple[object, Any, Callable, tuple]] = {}
        self._guard = threading.Lock()

    @staticmethod
    def job_id(key) -> str:
        return f"budget-item-{key}"

    @property
    def running(self) -> bool:
        return self._scheduler.running

    @property
    def lock_count(self) -> int:
        """Locks currently held or waited on."""
        with self._guard:
            return len(self._locks)

    def start(self) -> None:
        if not self._scheduler.running:
            self._scheduler.start()

    def shutdown(self) -> None:
        """Drop pending writes and stop the scheduler."""
        with self._guard:
            self._pending.clear()
        if self._scheduler.running:
            self._scheduler.remove_all_jobs()
            self._scheduler.shutdown(wait=False)

    @contextmanager
    def hold(self, lock_key):
        """Hold the write lock for lock_key; released locks are forgotten."""
        with self._guard:
            entry = self._locks.get(lock_key)
            if entry is None:
                entry = self._locks[lock_key] = [threading.RLock(), 0]
            entry[1] += 1
        entry[0].acquire()
        try:
            yield
        finally:
            entry[0].release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[lock_key]

    # =========================================================================
    # Policies
    # =========================================================================

    def schedule(self, key, write_fn: Callable, *args, lock_key=None) -> datetime:
        """
        Debounce a write for key.

        lock_key groups writes that must not overlap (defaults to key).

        Returns:
            When the write is due to run
        """
        self.start()
        token = object()
        with self._guard:
            self._pending[key] = (token, key if lock_key is None else lock_key, write_fn, args)
        run_date = datetime.now(timezone.utc) + timedelta(seconds=self.debounce_seconds)
        self._scheduler.add_job(
            self._run_debounced,
            'date',
            run_date=run_date,
            args=[key, token],
            id=self.job_id(key),
            replace_existing=True,
            misfire_grace_time=None,
            # a replaced write may still be waiting on its lock under the same id
            max_instances=5,
        )
        logger.debug(f"Write for {key} scheduled at {run_date.isoformat()}")
        return run_date

    def flush(self, key, write_fn: Callable, *args, lock_key=None):
        """Cancel any pending write for key and write now."""
        self.cancel(key)
        with self.hold(key if lock_key is None else lock_key):
            return write_fn(*args)

    def cancel(self, key) -> bool:
        """Drop the pending write for key; False if there was none."""
        entry = self._take(key)
        self._remove_job(key)
        if entry is None:
            return False
        logger.debug(f"Pending write for {key} cancelled")
        return True

    def run_pending(self, key) -> bool:
        """Run the pending write for key now instead of waiting; False if none."""
        with self._guard:
            entry = self._pending.get(key)
        if entry is None:
            return False
        token, lock_key = entry[0], entry[1]
        with self.hold(lock_key):
            entry = self._take(key, token)
            self._remove_job(key)
            if entry is None:
                return False
            logger.debug(f"Pending write for {key} run early")
            self._call(key, entry[2], entry[3])
        return True

    def is_pending(self, key) -> bool:
        with self._guard:
            return key in self._pending

    # =========================================================================
    # Execution
    # =========================================================================

    def _take(self, key, token=None):
        """Claim the pending write for key, only if it still carries token."""
        with self._guard:
            entry = self._pending.get(key)
            if entry is None or (token is not None and entry[0] is not token):
                return None
            return self._pending.pop(key)

    def _remove_job(self, key) -> None:
        if not self._scheduler.running:
            return
        try:
            self._scheduler.remove_job(self.job_id(key))
        except JobLookupError:
            pass

    def _call(self, key, write_fn: Callable, args) -> None:
        try:
            write_fn(*args)
        except DomainError as e:
            logger.error(f"Debounced write for {key} failed: {e.message}")

    def _run_debounced(self, key, token) -> None:
        with self._guard:
            entry = self._pending.get(key)
        if entry is None or entry[0] is not token:
            return
        with self.hold(entry[1]):
            # Re-check under the lock: an immediate edit may have cancelled it
            claimed = self._take(key, token)
            if claimed is None:
                logger.debug(f"Superseded write for {key} skipped")
                return
            self._call(key, claimed[2], claimed[3])
