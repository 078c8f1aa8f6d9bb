"""Domain models for the in-memory job engine."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class JobState(str, Enum):
    """Job lifecycle states."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({JobState.COMPLETED, JobState.FAILED})


class JobKind(str, Enum):
    """Job kinds shipped with the pipeline. The registry accepts any string kind."""

    CLONE = "clone"
    ANALYZE = "analyze"


class UnknownJobKindError(ValueError):
    """Raised by ``submit`` when no work function is registered for a kind."""

    def __init__(self, kind: str) -> None:
        super().__init__(f"Unknown job kind: {kind}")
        self.kind = kind


class InvalidTransitionError(RuntimeError):
    """A state change that the job state machine does not allow."""


_ALLOWED_TRANSITIONS: dict[JobState, frozenset[JobState]] = {
    JobState.PENDING: frozenset({JobState.RUNNING}),
    JobState.RUNNING: frozenset({JobState.COMPLETED, JobState.PENDING, JobState.FAILED}),
    JobState.COMPLETED: frozenset(),
    JobState.FAILED: frozenset(),
}


def ensure_transition(current: JobState, target: JobState) -> None:
    """Raise if ``current -> target`` is not part of the job state machine."""

    if target not in _ALLOWED_TRANSITIONS[current]:
        raise InvalidTransitionError(f"Invalid transition: {current.value} -> {target.value}")


@dataclass(slots=True)
class Job:
    """Mutable job record owned by the scheduler. Never handed out directly."""

    id: str
    kind: str
    payload: dict[str, Any]
    created_at: datetime
    state: JobState = JobState.PENDING
    started_at: datetime | None = None
    completed_at: datetime | None = None
    retry_count: int = 0
    last_error: str | None = None
    result: Any = None

    def mark_running(self, now: datetime) -> None:
        ensure_transition(self.state, JobState.RUNNING)
        self.state = JobState.RUNNING
        if self.started_at is None:
            self.started_at = now

    def mark_completed(self, now: datetime, result: Any) -> None:
        ensure_transition(self.state, JobState.COMPLETED)
        self.state = JobState.COMPLETED
        self.completed_at = now
        self.result = result

    def mark_retry(self, error: str) -> None:
        ensure_transition(self.state, JobState.PENDING)
        self.state = JobState.PENDING
        self.retry_count += 1
        self.last_error = error

    def mark_failed(self, now: datetime, error: str) -> None:
        ensure_transition(self.state, JobState.FAILED)
        self.state = JobState.FAILED
        self.completed_at = now
        self.last_error = error

    def to_view(self) -> JobView:
        return JobView(
            id=self.id,
            kind=self.kind,
            state=self.state,
            payload=dict(self.payload),
            created_at=self.created_at,
            started_at=self.started_at,
            completed_at=self.completed_at,
            retry_count=self.retry_count,
            last_error=self.last_error,
            result=self.result,
        )


@dataclass(frozen=True, slots=True)
class JobView:
    """Read-only job snapshot returned to callers."""

    id: str
    kind: str
    state: JobState
    payload: dict[str, Any]
    created_at: datetime
    started_at: datetime | None
    completed_at: datetime | None
    retry_count: int
    last_error: str | None
    result: Any

    @property
    def duration_ms(self) -> int | None:
        if self.started_at is None or self.completed_at is None:
            return None
        return int((self.completed_at - self.started_at).total_seconds() * 1000)

    def to_dict(self, *, include_result: bool = True) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "kind": self.kind,
            "state": self.state.value,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "retry_count": self.retry_count,
            "last_error": self.last_error,
        }
        if include_result:
            data["result"] = self.result
        return data


@dataclass(slots=True)
class QueueStats:
    """Counters across the job table plus the raw backlog length."""

    total: int = 0
    pending: int = 0
    running: int = 0
    completed: int = 0
    failed: int = 0
    queue_length: int = 0


@dataclass(frozen=True, slots=True)
class JobLogEvent:
    """Structured log record emitted at job start, success, retry and failure."""

    job_id: str
    kind: str
    level: str
    event: str
    message: str
    payload: Mapping[str, Any] = field(default_factory=dict)
    details: Mapping[str, Any] = field(default_factory=dict)


WorkFunction = Callable[[dict[str, Any]], Any]
LogSink = Callable[[JobLogEvent], None]
EntityStatusSink = Callable[[JobView, str], None]
