from __future__ import annotations

from datetime import UTC, datetime, timedelta

import allure
import pytest

from stackscan.engine.models import InvalidTransitionError, Job, JobState
from stackscan.engine.queue import JobQueue
from stackscan.engine.retry import RetryPolicy

pytestmark = [
    allure.epic("Job Engine"),
    allure.feature("Job Record, Queue & Retry Policy"),
]

_NOW = datetime(2026, 10, 18, 9, 30, tzinfo=UTC)


def test_queue_is_fifo_and_allows_duplicates() -> None:
    queue = JobQueue()
    for job_id in ("a", "b", "a"):
        queue.enqueue(job_id)

    assert len(queue) == 3
    assert "a" in queue
    assert [queue.dequeue_next() for _ in range(3)] == ["a", "b", "a"]
    assert queue.dequeue_next() is None
    assert not queue


def test_job_walks_through_retry_then_completion() -> None:
    job = Job(id="j-1", kind="clone", payload={}, created_at=_NOW)

    job.mark_running(_NOW + timedelta(seconds=1))
    job.mark_retry("timeout")
    job.mark_running(_NOW + timedelta(seconds=5))
    job.mark_completed(_NOW + timedelta(seconds=9), {"path": "/w/j-1"})

    view = job.to_view()
    assert view.state is JobState.COMPLETED
    assert view.retry_count == 1
    assert view.last_error == "timeout"
    assert view.started_at == _NOW + timedelta(seconds=1)
    assert view.duration_ms == 8_000
    assert view.to_dict(include_result=False)["state"] == "completed"
    assert "result" not in view.to_dict(include_result=False)


def test_terminal_jobs_reject_further_transitions() -> None:
    job = Job(id="j-2", kind="clone", payload={}, created_at=_NOW)
    job.mark_running(_NOW)
    job.mark_failed(_NOW, "boom")

    with pytest.raises(InvalidTransitionError):
        job.mark_running(_NOW)
    assert job.state is JobState.FAILED
    assert JobState.FAILED.is_terminal
    assert not JobState.PENDING.is_terminal


def test_pending_job_cannot_complete_without_running() -> None:
    job = Job(id="j-3", kind="analyze", payload={}, created_at=_NOW)

    with pytest.raises(InvalidTransitionError):
        job.mark_completed(_NOW, None)


def test_retry_policy_budget() -> None:
    policy = RetryPolicy(max_retries=2)

    assert policy.decide(0).retry
    assert policy.decide(1).retry
    assert not policy.decide(2).retry
    assert policy.decide(0).delay_seconds == 0.0


def test_retry_policy_exponential_backoff_is_capped() -> None:
    policy = RetryPolicy(max_retries=5, backoff_base_seconds=2.0, backoff_max_seconds=10.0)

    assert [policy.backoff_seconds(n) for n in range(1, 6)] == [2.0, 4.0, 8.0, 10.0, 10.0]
    assert policy.decide(1).delay_seconds == 4.0


def test_retry_policy_rejects_negative_budget() -> None:
    with pytest.raises(ValueError, match="max_retries"):
        RetryPolicy(max_retries=-1)
