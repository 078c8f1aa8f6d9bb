"""Concurrency-bounded, retrying scheduler that drives work functions on threads."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta
from enum import Enum
from typing import Any
from uuid import uuid4

from stackscan.config import EngineSettings
from stackscan.engine.models import (
    EntityStatusSink,
    Job,
    JobLogEvent,
    JobState,
    JobView,
    LogSink,
    QueueStats,
    UnknownJobKindError,
    WorkFunction,
)
from stackscan.engine.queue import JobQueue
from stackscan.engine.retry import RetryPolicy
from stackscan.engine.sinks import log_job_event
from stackscan.storage.common import utc_now

logger = logging.getLogger(__name__)


class Scheduler:
    """Owns the job table, the backlog and the single dispatcher loop.

    ``submit`` returns as soon as the job is queued. A dispatcher thread pops ids
    in FIFO order and starts one worker thread per job while fewer than
    ``max_concurrency`` jobs are RUNNING; when the ceiling is reached it waits on
    a condition that finishing jobs signal, bounded by ``poll_interval_seconds``.
    The dispatcher exits once the backlog is empty and is restarted by the next
    ``submit`` / ``enqueue``.

    All job table and backlog mutations happen under ``self._cond``, so a job's
    state and its contribution to the running count always change together.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        work_functions: Mapping[str, WorkFunction] | None = None,
        max_concurrency: int = 3,
        retry_policy: RetryPolicy | None = None,
        poll_interval_seconds: float = 1.0,
        log_sink: LogSink | None = None,
        entity_sink: EntityStatusSink | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if max_concurrency <= 0:
            raise ValueError("max_concurrency must be > 0")
        if poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be > 0")

        self.max_concurrency = max_concurrency
        self.retry_policy = retry_policy or RetryPolicy()
        self.poll_interval_seconds = poll_interval_seconds
        self._work_functions: dict[str, WorkFunction] = {}
        for kind, work_function in (work_functions or {}).items():
            self.register(kind, work_function)
        self._log_sink = log_sink or log_job_event
        self._entity_sink = entity_sink
        self._clock = clock

        self._jobs: dict[str, Job] = {}
        self._queue = JobQueue()
        self._cond = threading.Condition()
        self._loop_active = False
        self._retry_timers: dict[str, threading.Timer] = {}
        self._settling = 0
        self._closed = False

    @classmethod
    def from_settings(cls, settings: EngineSettings, **kwargs: Any) -> Scheduler:
        """Build a scheduler from engine settings; ``kwargs`` are passed through."""

        return cls(
            max_concurrency=settings.max_concurrency,
            retry_policy=RetryPolicy(
                max_retries=settings.max_retries,
                backoff_base_seconds=settings.retry_backoff_base_seconds,
                backoff_max_seconds=settings.retry_backoff_max_seconds,
            ),
            poll_interval_seconds=settings.poll_interval_seconds,
            **kwargs,
        )

    # -- registry ------------------------------------------------------------

    def register(self, kind: str, work_function: WorkFunction) -> None:
        """Register the work function that executes jobs of ``kind``."""

        self._work_functions[_kind_key(kind)] = work_function

    def set_entity_sink(self, entity_sink: EntityStatusSink | None) -> None:
        self._entity_sink = entity_sink

    def set_log_sink(self, log_sink: LogSink) -> None:
        self._log_sink = log_sink

    # -- public API ----------------------------------------------------------

    def submit(self, kind: str, payload: Mapping[str, Any] | None = None) -> str:
        """Create a PENDING job, queue it and make sure the dispatcher is running."""

        key = _kind_key(kind)
        if key not in self._work_functions:
            raise UnknownJobKindError(key)

        job_id = str(uuid4())
        with self._cond:
            if self._closed:
                raise RuntimeError("Scheduler is closed; no new jobs are accepted.")
            self._jobs[job_id] = Job(
                id=job_id,
                kind=key,
                payload=dict(payload or {}),
                created_at=self._clock(),
            )
            self._queue.enqueue(job_id)
            self._ensure_loop_locked()

        logger.info("Job %s added to queue (kind=%s)", job_id, key)
        return job_id

    def enqueue(self, job_id: str) -> None:
        """Append an existing id to the backlog. Ineligible ids are skipped on dequeue."""

        with self._cond:
            self._queue.enqueue(job_id)
            self._ensure_loop_locked()

    def get_status(self, job_id: str) -> JobView | None:
        with self._cond:
            job = self._jobs.get(job_id)
            return job.to_view() if job is not None else None

    def list_jobs(
        self,
        *,
        state: JobState | str | None = None,
        kind: str | None = None,
    ) -> list[JobView]:
        """Snapshot of jobs in creation order, optionally filtered by state and kind."""

        wanted_state = JobState(state) if state is not None else None
        wanted_kind = _kind_key(kind) if kind is not None else None
        with self._cond:
            return [
                job.to_view()
                for job in self._jobs.values()
                if (wanted_state is None or job.state is wanted_state)
                and (wanted_kind is None or job.kind == wanted_kind)
            ]

    def stats(self) -> QueueStats:
        with self._cond:
            stats = QueueStats(total=len(self._jobs), queue_length=len(self._queue))
            for job in self._jobs.values():
                if job.state is JobState.PENDING:
                    stats.pending += 1
                elif job.state is JobState.RUNNING:
                    stats.running += 1
                elif job.state is JobState.COMPLETED:
                    stats.completed += 1
                else:
                    stats.failed += 1
            return stats

    def running_count(self) -> int:
        with self._cond:
            return self._running_count_locked()

    @property
    def is_dispatching(self) -> bool:
        with self._cond:
            return self._loop_active

    def evict_terminal(self, *, retention_seconds: float, now: datetime | None = None) -> int:
        """Drop COMPLETED / FAILED jobs finished more than ``retention_seconds`` ago."""

        cutoff = (now or self._clock()) - timedelta(seconds=retention_seconds)
        with self._cond:
            expired = [
                job_id
                for job_id, job in self._jobs.items()
                if job.state.is_terminal
                and (job.completed_at is None or job.completed_at < cutoff)
            ]
            for job_id in expired:
                del self._jobs[job_id]
        return len(expired)

    def wait_until_idle(self, timeout: float | None = None) -> bool:
        """Block until no job is PENDING or RUNNING and finished jobs have reported.

        Returns False on timeout.
        """

        with self._cond:
            return self._cond.wait_for(self._is_idle_locked, timeout=timeout)

    def wait_for(self, job_id: str, timeout: float | None = None) -> JobView | None:
        """Block until ``job_id`` is terminal (or gone) and return its last snapshot."""

        def _settled() -> bool:
            job = self._jobs.get(job_id)
            return job is None or job.state.is_terminal

        with self._cond:
            self._cond.wait_for(_settled, timeout=timeout)
            job = self._jobs.get(job_id)
            return job.to_view() if job is not None else None

    def close(self) -> None:
        """Stop dispatching and cancel delayed retries. In-flight jobs run to completion."""

        with self._cond:
            self._closed = True
            for timer in self._retry_timers.values():
                timer.cancel()
            self._retry_timers.clear()
            self._cond.notify_all()

    def __enter__(self) -> Scheduler:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    # -- dispatcher loop -----------------------------------------------------

    def _ensure_loop_locked(self) -> None:
        if self._loop_active or self._closed:
            return
        self._loop_active = True
        threading.Thread(target=self._run_loop, name="stackscan-dispatcher", daemon=True).start()

    def _run_loop(self) -> None:
        while True:
            with self._cond:
                job = self._claim_next_locked()
                if job is None:
                    self._loop_active = False
                    self._cond.notify_all()
                    return
            self._dispatch(job)

    def _claim_next_locked(self) -> Job | None:
        while not self._closed and self._queue:
            if self._running_count_locked() >= self.max_concurrency:
                self._cond.wait(timeout=self.poll_interval_seconds)
                continue

            job_id = self._queue.dequeue_next()
            job = self._jobs.get(job_id) if job_id is not None else None
            if job is None or job.state is not JobState.PENDING:
                logger.debug("Skipping stale queue entry %s", job_id)
                continue

            job.mark_running(self._clock())
            return job
        return None

    def _dispatch(self, job: Job) -> None:
        logger.info("Processing job %s (kind=%s)", job.id, job.kind)
        worker = threading.Thread(
            target=self._execute,
            args=(job,),
            name=f"stackscan-job-{job.kind}-{job.id[:8]}",
            daemon=True,
        )
        try:
            worker.start()
        except RuntimeError as error:
            logger.exception("Failed to start worker thread for job %s", job.id)
            self._handle_failure(job, error)

    def _execute(self, job: Job) -> None:
        self._emit(job, level="info", event="started", message=f"Job {job.id} started ({job.kind})")
        try:
            work_function = self._work_functions.get(job.kind)
            if work_function is None:
                raise UnknownJobKindError(job.kind)
            result = work_function(dict(job.payload))
        except BaseException as error:  # noqa: BLE001
            # SystemExit from a work function ends this worker thread, not the engine.
            self._handle_failure(job, error)
            return
        self._handle_success(job, result)

    # -- outcome handling ----------------------------------------------------

    def _handle_success(self, job: Job, result: Any) -> None:
        with self._cond:
            job.mark_completed(self._clock(), result)
            view = job.to_view()
            self._settling += 1
            self._cond.notify_all()

        logger.info("Job %s completed successfully", job.id)
        try:
            self._emit(
                job,
                level="success",
                event="completed",
                message=f"Job {job.id} completed",
                details={"duration_ms": view.duration_ms},
            )
        finally:
            self._settled()

    def _handle_failure(self, job: Job, error: BaseException) -> None:
        message = str(error) or error.__class__.__name__
        with self._cond:
            decision = self.retry_policy.decide(job.retry_count)
            if decision.retry:
                job.mark_retry(message)
            else:
                job.mark_failed(self._clock(), message)
                self._settling += 1
            view = job.to_view()
            self._cond.notify_all()

        max_retries = self.retry_policy.max_retries
        if decision.retry:
            logger.warning(
                "Job %s failed, retrying (attempt %d/%d): %s",
                job.id,
                view.retry_count + 1,
                max_retries + 1,
                message,
            )
            self._emit(
                job,
                level="warn",
                event="retrying",
                message=(
                    f"Job {job.id} failed, retrying (attempt {view.retry_count}/{max_retries})"
                ),
                details={
                    "error": message,
                    "retry_count": view.retry_count,
                    "delay_seconds": decision.delay_seconds,
                },
            )
            # Requeued only after the retry event so it precedes the next "started".
            self._requeue(job.id, decision.delay_seconds)
            return

        logger.error("Job %s failed after %d retries: %s", job.id, view.retry_count, message)
        try:
            self._emit(
                job,
                level="error",
                event="failed",
                message=f"Job {job.id} failed after {view.retry_count} retries",
                details={"error": message, "retry_count": view.retry_count},
            )
            self._notify_entity(view, message)
        finally:
            self._settled()

    def _settled(self) -> None:
        with self._cond:
            self._settling -= 1
            self._cond.notify_all()

    def _requeue(self, job_id: str, delay_seconds: float) -> None:
        with self._cond:
            if delay_seconds > 0:
                self._schedule_retry_locked(job_id, delay_seconds)
            else:
                self._queue.enqueue(job_id)
                self._ensure_loop_locked()

    def _schedule_retry_locked(self, job_id: str, delay_seconds: float) -> None:
        if self._closed:
            return
        timer = threading.Timer(delay_seconds, self._release_delayed_retry, args=(job_id,))
        timer.daemon = True
        self._retry_timers[job_id] = timer
        timer.start()

    def _release_delayed_retry(self, job_id: str) -> None:
        with self._cond:
            self._retry_timers.pop(job_id, None)
            job = self._jobs.get(job_id)
            if job is None or job.state is not JobState.PENDING:
                return
            self._queue.enqueue(job_id)
            self._ensure_loop_locked()

    # -- side effects --------------------------------------------------------

    def _emit(
        self,
        job: Job,
        *,
        level: str,
        event: str,
        message: str,
        details: Mapping[str, Any] | None = None,
    ) -> None:
        try:
            self._log_sink(
                JobLogEvent(
                    job_id=job.id,
                    kind=job.kind,
                    level=level,
                    event=event,
                    message=message,
                    payload=job.payload,
                    details=dict(details or {}),
                ),
            )
        except Exception:  # noqa: BLE001
            logger.debug("Log sink failed for job %s (%s)", job.id, event, exc_info=True)

    def _notify_entity(self, view: JobView, error: str) -> None:
        if self._entity_sink is None:
            return
        try:
            self._entity_sink(view, error)
        except Exception as sink_error:  # noqa: BLE001
            logger.warning("Failed to update entity status for job %s: %s", view.id, sink_error)

    # -- helpers -------------------------------------------------------------

    def _running_count_locked(self) -> int:
        return sum(1 for job in self._jobs.values() if job.state is JobState.RUNNING)

    def _is_idle_locked(self) -> bool:
        # Terminal jobs whose sinks have not returned yet still count as busy.
        if self._settling:
            return False
        return not any(
            job.state in (JobState.PENDING, JobState.RUNNING) for job in self._jobs.values()
        )


def _kind_key(kind: str) -> str:
    if isinstance(kind, Enum):
        return str(kind.value)
    return str(kind)
