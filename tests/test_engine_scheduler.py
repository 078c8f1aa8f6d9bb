from __future__ import annotations

import sys
import threading
import time

import allure
import pytest

from stackscan.config import EngineSettings
from stackscan.engine import (
    JobKind,
    JobLogEvent,
    JobState,
    RetryPolicy,
    Scheduler,
    UnknownJobKindError,
)

pytestmark = [
    allure.epic("Job Engine"),
    allure.feature("Scheduler"),
]


def _scheduler(**kwargs) -> Scheduler:
    kwargs.setdefault("poll_interval_seconds", 0.02)
    return Scheduler(**kwargs)


def test_submit_runs_job_to_completion_and_keeps_result() -> None:
    echo = {"echo": lambda payload: {"echo": payload["value"]}}
    with _scheduler(work_functions=echo) as scheduler:
        job_id = scheduler.submit("echo", {"value": 42})

        view = scheduler.wait_for(job_id, timeout=5)

    assert view is not None
    assert view.state is JobState.COMPLETED
    assert view.result == {"echo": 42}
    assert view.retry_count == 0
    assert view.last_error is None
    assert view.started_at is not None
    assert view.completed_at is not None
    assert view.created_at <= view.started_at <= view.completed_at


def test_concurrency_ceiling_is_never_exceeded(wait_until) -> None:
    ceiling = 3
    gate = threading.Event()
    lock = threading.Lock()
    in_flight = 0
    max_seen = 0

    def _work(_payload: dict) -> None:
        nonlocal in_flight, max_seen
        with lock:
            in_flight += 1
            max_seen = max(max_seen, in_flight)
        gate.wait(timeout=10)
        with lock:
            in_flight -= 1

    with _scheduler(work_functions={"slow": _work}, max_concurrency=ceiling) as scheduler:
        job_ids = [scheduler.submit("slow", {"n": index}) for index in range(ceiling + 5)]

        assert wait_until(lambda: scheduler.running_count() == ceiling)
        time.sleep(0.1)
        stats = scheduler.stats()
        assert stats.running == ceiling
        assert stats.pending == 5

        gate.set()
        assert scheduler.wait_until_idle(timeout=10)

        views = [scheduler.get_status(job_id) for job_id in job_ids]

    assert max_seen == ceiling
    assert all(view is not None and view.state is JobState.COMPLETED for view in views)


def test_dispatch_order_is_fifo() -> None:
    order: list[int] = []

    def _record(payload: dict) -> None:
        order.append(payload["n"])

    with _scheduler(work_functions={"record": _record}, max_concurrency=1) as scheduler:
        for index in range(6):
            scheduler.submit("record", {"n": index})
        assert scheduler.wait_until_idle(timeout=5)

    assert order == [0, 1, 2, 3, 4, 5]


def test_retry_exhaustion_fails_after_max_retries_plus_one_attempts(wait_until) -> None:
    attempts = 0
    failed: list[tuple[str, str]] = []

    def _always_fails(_payload: dict) -> None:
        nonlocal attempts
        attempts += 1
        raise RuntimeError("network unreachable")

    with _scheduler(
        work_functions={"clone": _always_fails},
        retry_policy=RetryPolicy(max_retries=2),
        entity_sink=lambda view, error: failed.append((view.id, error)),
    ) as scheduler:
        job_id = scheduler.submit("clone", {"project_id": "p-1"})
        view = scheduler.wait_for(job_id, timeout=5)
        assert wait_until(lambda: bool(failed))

    assert view is not None
    assert view.state is JobState.FAILED
    assert attempts == 3
    assert view.retry_count == 2
    assert view.last_error == "network unreachable"
    assert view.completed_at is not None
    assert failed == [(job_id, "network unreachable")]


def test_zero_retries_fails_on_first_error() -> None:
    with _scheduler(
        work_functions={"boom": lambda _payload: 1 / 0},
        retry_policy=RetryPolicy(max_retries=0),
    ) as scheduler:
        view = scheduler.wait_for(scheduler.submit("boom"), timeout=5)

    assert view is not None
    assert view.state is JobState.FAILED
    assert view.retry_count == 0
    assert view.last_error == "division by zero"


def test_system_exit_in_work_function_fails_job_and_frees_slot() -> None:
    with _scheduler(
        work_functions={"clone": lambda _payload: sys.exit("git helper exited")},
        max_concurrency=1,
        retry_policy=RetryPolicy(max_retries=0),
    ) as scheduler:
        first = scheduler.wait_for(scheduler.submit("clone"), timeout=5)
        second = scheduler.wait_for(scheduler.submit("clone"), timeout=5)
        assert scheduler.wait_until_idle(timeout=5)
        running = scheduler.running_count()

    assert first is not None
    assert first.state is JobState.FAILED
    assert first.last_error == "git helper exited"
    assert second is not None
    assert second.state is JobState.FAILED
    assert running == 0


def test_job_recovers_after_one_failure() -> None:
    calls = 0

    def _flaky(_payload: dict) -> str:
        nonlocal calls
        calls += 1
        if calls == 1:
            raise ConnectionError("reset by peer")
        return "ok"

    entity_calls: list[str] = []
    with _scheduler(
        work_functions={"flaky": _flaky},
        entity_sink=lambda view, _error: entity_calls.append(view.id),
    ) as scheduler:
        job_id = scheduler.submit("flaky")
        view = scheduler.wait_for(job_id, timeout=5)

    assert view is not None
    assert view.state is JobState.COMPLETED
    assert view.retry_count == 1
    assert view.result == "ok"
    assert entity_calls == []


def test_started_at_is_kept_from_first_dispatch_across_retries() -> None:
    starts: list[object] = []
    scheduler_ref: list[Scheduler] = []

    def _flaky(_payload: dict) -> None:
        job = scheduler_ref[0].list_jobs()[0]
        starts.append(job.started_at)
        if len(starts) == 1:
            time.sleep(0.02)
            raise RuntimeError("first attempt fails")

    with _scheduler(work_functions={"flaky": _flaky}) as scheduler:
        scheduler_ref.append(scheduler)
        view = scheduler.wait_for(scheduler.submit("flaky"), timeout=5)

    assert view is not None
    assert view.state is JobState.COMPLETED
    assert len(starts) == 2
    assert starts[0] == starts[1] == view.started_at


def test_chained_job_gets_its_own_id_and_lifecycle() -> None:
    scheduler = _scheduler()
    chained: list[str] = []

    def _clone(payload: dict) -> dict:
        chained.append(
            scheduler.submit(
                JobKind.ANALYZE,
                {"project_id": payload["project_id"], "project_path": "/tmp/clone"},
            ),
        )
        return {"path": "/tmp/clone"}

    def _analyze(_payload: dict) -> None:
        raise RuntimeError("analysis exploded")

    scheduler.register(JobKind.CLONE, _clone)
    scheduler.register(JobKind.ANALYZE, _analyze)
    scheduler.retry_policy = RetryPolicy(max_retries=0)
    with scheduler:
        clone_id = scheduler.submit(JobKind.CLONE, {"project_id": "p-1"})
        assert scheduler.wait_until_idle(timeout=5)

        clone_view = scheduler.get_status(clone_id)
        analyze_view = scheduler.get_status(chained[0])

    assert chained[0] != clone_id
    assert clone_view is not None
    assert clone_view.state is JobState.COMPLETED
    assert analyze_view is not None
    assert analyze_view.kind == "analyze"
    assert analyze_view.payload == {"project_id": "p-1", "project_path": "/tmp/clone"}
    assert analyze_view.state is JobState.FAILED


def test_duplicate_queue_entries_never_double_execute(wait_until) -> None:
    gate = threading.Event()
    executions = 0

    def _work(_payload: dict) -> None:
        nonlocal executions
        executions += 1
        gate.wait(timeout=10)

    with _scheduler(work_functions={"slow": _work}) as scheduler:
        job_id = scheduler.submit("slow")
        assert wait_until(lambda: scheduler.running_count() == 1)

        scheduler.enqueue(job_id)
        scheduler.enqueue(job_id)
        assert wait_until(lambda: not scheduler.is_dispatching)

        gate.set()
        assert scheduler.wait_for(job_id, timeout=5).state is JobState.COMPLETED

        scheduler.enqueue(job_id)
        scheduler.enqueue("no-such-job")
        assert wait_until(lambda: not scheduler.is_dispatching)
        assert scheduler.wait_until_idle(timeout=5)

    assert executions == 1


def test_unknown_kind_is_rejected_without_creating_a_job() -> None:
    with _scheduler(work_functions={"clone": lambda _payload: None}) as scheduler:
        with pytest.raises(UnknownJobKindError, match="Unknown job kind: build"):
            scheduler.submit("build", {"project_id": "p-1"})

        assert scheduler.list_jobs() == []
        assert scheduler.stats().total == 0


def test_failing_sinks_do_not_change_job_outcomes() -> None:
    def _broken_log_sink(_event: JobLogEvent) -> None:
        raise RuntimeError("log store down")

    def _broken_entity_sink(_view, _error) -> None:
        raise RuntimeError("entity store down")

    with _scheduler(
        work_functions={"ok": lambda _payload: "done", "bad": lambda _payload: 1 / 0},
        retry_policy=RetryPolicy(max_retries=1),
        log_sink=_broken_log_sink,
        entity_sink=_broken_entity_sink,
    ) as scheduler:
        ok_id = scheduler.submit("ok")
        bad_id = scheduler.submit("bad")
        assert scheduler.wait_until_idle(timeout=5)

        ok_view = scheduler.get_status(ok_id)
        bad_view = scheduler.get_status(bad_id)

    assert ok_view.state is JobState.COMPLETED
    assert ok_view.result == "done"
    assert bad_view.state is JobState.FAILED
    assert bad_view.retry_count == 1


def test_wait_until_idle_returns_after_terminal_sinks_ran() -> None:
    seen: list[str] = []

    def _slow_entity_sink(view, error: str) -> None:
        time.sleep(0.2)
        seen.append(f"{view.state.value}: {error}")

    with _scheduler(
        work_functions={"bad": lambda _payload: 1 / 0},
        retry_policy=RetryPolicy(max_retries=0),
        entity_sink=_slow_entity_sink,
    ) as scheduler:
        scheduler.submit("bad")
        assert scheduler.wait_until_idle(timeout=5)

        assert seen == ["failed: division by zero"]


def test_log_sink_sees_start_retry_failure_and_success_events(wait_until) -> None:
    events: list[JobLogEvent] = []
    calls = 0

    def _flaky(_payload: dict) -> None:
        nonlocal calls
        calls += 1
        if calls == 1:
            raise RuntimeError("transient")

    with _scheduler(work_functions={"flaky": _flaky}, log_sink=events.append) as scheduler:
        job_id = scheduler.submit("flaky", {"project_id": "p-9"})
        assert scheduler.wait_for(job_id, timeout=5).state is JobState.COMPLETED
        assert wait_until(lambda: any(event.event == "completed" for event in events))

    assert [event.event for event in events] == ["started", "retrying", "started", "completed"]
    assert [event.level for event in events] == ["info", "warn", "info", "success"]
    assert all(event.job_id == job_id for event in events)
    assert events[1].details["error"] == "transient"
    assert events[1].details["retry_count"] == 1
    assert events[0].payload == {"project_id": "p-9"}
    assert events[-1].details["duration_ms"] >= 0


def test_backoff_delays_retry_and_keeps_job_pending(wait_until) -> None:
    attempts: list[float] = []

    def _flaky(_payload: dict) -> None:
        attempts.append(time.monotonic())
        if len(attempts) == 1:
            raise RuntimeError("rate limited")

    with _scheduler(
        work_functions={"flaky": _flaky},
        retry_policy=RetryPolicy(max_retries=1, backoff_base_seconds=0.3),
    ) as scheduler:
        job_id = scheduler.submit("flaky")
        assert wait_until(lambda: scheduler.get_status(job_id).retry_count == 1)
        assert scheduler.get_status(job_id).state is JobState.PENDING

        view = scheduler.wait_for(job_id, timeout=5)

    assert view.state is JobState.COMPLETED
    assert len(attempts) == 2
    assert attempts[1] - attempts[0] >= 0.25


def test_list_jobs_filters_by_state_and_kind(wait_until) -> None:
    gate = threading.Event()
    with _scheduler(
        work_functions={"fast": lambda _payload: None, "slow": lambda _payload: gate.wait(10)},
    ) as scheduler:
        fast_id = scheduler.submit("fast")
        slow_id = scheduler.submit("slow")
        assert wait_until(lambda: scheduler.get_status(fast_id).state is JobState.COMPLETED)
        assert wait_until(lambda: scheduler.get_status(slow_id).state is JobState.RUNNING)

        assert [job.id for job in scheduler.list_jobs(state=JobState.RUNNING)] == [slow_id]
        assert [job.id for job in scheduler.list_jobs(state="completed")] == [fast_id]
        assert [job.id for job in scheduler.list_jobs(kind="slow")] == [slow_id]
        assert [job.id for job in scheduler.list_jobs()] == [fast_id, slow_id]

        gate.set()
        assert scheduler.wait_until_idle(timeout=5)


def test_closed_scheduler_rejects_new_jobs() -> None:
    scheduler = _scheduler(work_functions={"noop": lambda _payload: None})
    scheduler.close()

    with pytest.raises(RuntimeError, match="closed"):
        scheduler.submit("noop")


def test_from_settings_applies_engine_settings() -> None:
    scheduler = Scheduler.from_settings(
        EngineSettings(
            max_concurrency=5,
            max_retries=4,
            poll_interval_seconds=0.5,
            retry_backoff_base_seconds=1.0,
            retry_backoff_max_seconds=8.0,
        ),
    )

    assert scheduler.max_concurrency == 5
    assert scheduler.poll_interval_seconds == 0.5
    assert scheduler.retry_policy == RetryPolicy(
        max_retries=4,
        backoff_base_seconds=1.0,
        backoff_max_seconds=8.0,
    )


def test_end_to_end_clone_with_two_second_work_function() -> None:
    def _simulated_clone(payload: dict) -> dict:
        time.sleep(2)
        return {"path": f"/workspace/projects/{payload['project_id']}"}

    with _scheduler(work_functions={JobKind.CLONE: _simulated_clone}) as scheduler:
        job_id = scheduler.submit(
            JobKind.CLONE,
            {"project_id": "p-1", "repo_url": "https://github.com/o/r", "branch": "main"},
        )
        assert scheduler.get_status(job_id).state in {JobState.PENDING, JobState.RUNNING}

        view = scheduler.wait_for(job_id, timeout=10)

    assert view.state is JobState.COMPLETED
    assert view.started_at < view.completed_at
    assert view.duration_ms >= 1_900
    assert view.result == {"path": "/workspace/projects/p-1"}
