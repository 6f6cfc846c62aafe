"""
Retention sweeper: deletes recordings older than the retention window.
"""

import logging
import threading
from datetime import timedelta
from typing import Optional

from dayflow.core.chunk_store import ChunkStore
from dayflow.core.constants import RETENTION_DAYS, SWEEP_INTERVAL_MINUTES

logger = logging.getLogger(__name__)


class RetentionSweeper:
    """Runs ChunkStore eviction once, or periodically on a daemon thread."""

    def __init__(self, chunk_store: ChunkStore,
                 retention: timedelta = timedelta(days=RETENTION_DAYS)):
        self.chunk_store = chunk_store
        self.retention = retention
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def run(self, retention: timedelta | None = None) -> int:
        """Evict everything created before now - retention. Returns the count."""
        window = retention if retention is not None else self.retention
        cutoff = self.chunk_store.now() - window
        evicted = self.chunk_store.evict_older_than(cutoff, stop_event=self._stop_event)
        logger.info("Retention sweep removed %d chunks (cutoff %s)", evicted, cutoff)
        return evicted

    def start(self, interval: timedelta = timedelta(minutes=SWEEP_INTERVAL_MINUTES)):
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._loop, args=(interval.total_seconds(),), daemon=True,
        )
        self._thread.start()

    def stop(self, timeout: float | None = None):
        self._stop_event.set()
        if self._thread is not None and timeout is not None:
            self._thread.join(timeout)

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _loop(self, interval_sec: float):
        while not self._stop_event.is_set():
            try:
                self.run()
            except Exception as e:
                # a failed sweep must not kill the timer; the next run retries
                logger.error("Retention sweep failed: %s", e, exc_info=True)
            self._stop_event.wait(interval_sec)
