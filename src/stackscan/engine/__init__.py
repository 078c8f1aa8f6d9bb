"""In-memory background job engine.

A single dispatcher thread turns a FIFO backlog into concurrently running work
functions, bounded by a concurrency ceiling. Failed jobs are requeued until the
retry budget is spent; finished jobs are evicted by a periodic reaper. Nothing
is persisted: jobs live only as long as the process.
"""

from stackscan.engine.models import (
    JobKind,
    JobLogEvent,
    JobState,
    JobView,
    QueueStats,
    UnknownJobKindError,
)
from stackscan.engine.reaper import Reaper
from stackscan.engine.retry import RetryDecision, RetryPolicy
from stackscan.engine.scheduler import Scheduler

__all__ = [
    "JobKind",
    "JobLogEvent",
    "JobState",
    "JobView",
    "QueueStats",
    "Reaper",
    "RetryDecision",
    "RetryPolicy",
    "Scheduler",
    "UnknownJobKindError",
]
