"""Periodic eviction of old terminal jobs from the in-memory job table."""

from __future__ import annotations

import logging
import threading
from datetime import datetime

from stackscan.engine.scheduler import Scheduler

logger = logging.getLogger(__name__)


class Reaper:
    """Sweeps the scheduler every ``interval_seconds`` on a daemon thread.

    Only COMPLETED / FAILED jobs whose ``completed_at`` is older than
    ``retention_seconds`` are removed. Eviction has no side effects.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        *,
        interval_seconds: float = 600.0,
        retention_seconds: float = 3_600.0,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        if retention_seconds < 0:
            raise ValueError("retention_seconds must be >= 0")
        self.scheduler = scheduler
        self.interval_seconds = interval_seconds
        self.retention_seconds = retention_seconds
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def sweep(self, now: datetime | None = None) -> int:
        """Run one eviction pass and return how many jobs were removed."""

        removed = self.scheduler.evict_terminal(retention_seconds=self.retention_seconds, now=now)
        if removed:
            logger.info("Reaper evicted %d finished job(s)", removed)
        return removed

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="stackscan-reaper", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def _run(self) -> None:
        while not self._stop.wait(timeout=self.interval_seconds):
            try:
                self.sweep()
            except Exception:
                logger.exception("Reaper sweep failed")

    def __enter__(self) -> Reaper:
        self.start()
        return self

    def __exit__(self, *_: object) -> None:
        self.stop()
