"""FIFO backlog of job ids awaiting dispatch."""

from __future__ import annotations

from collections import deque


class JobQueue:
    """Ordered backlog of job ids.

    Duplicates are allowed: a retried job is appended again while an older entry
    may still sit in the backlog. ``dequeue_next`` makes no eligibility promise;
    the scheduler re-checks the job state for every id it pops. Not thread-safe
    on its own, the scheduler only touches it while holding its lock.
    """

    def __init__(self) -> None:
        self._items: deque[str] = deque()

    def enqueue(self, job_id: str) -> None:
        self._items.append(job_id)

    def dequeue_next(self) -> str | None:
        if not self._items:
            return None
        return self._items.popleft()

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._items
