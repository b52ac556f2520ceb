"""
tests/test_scheduler_base.py

Unit tests for the ScheduledTask runner.

Coverage
--------
- Single-flight guard on trigger()
- Timeout race releases the guard and records a failure
- Escalation to ERROR after max_retries consecutive failures
- Exponential moving average of run time
- Health status
- stop() waits for an in-flight run, manual or scheduled
- update_config validation and recovery from ERROR
- Event delivery and listener isolation
"""

from __future__ import annotations

import threading
from datetime import datetime, timezone

import pytest

from app.scheduler.base import (
    ScheduledTask,
    SchedulerStatus,
    TaskAlreadyRunningError,
    TaskConfig,
    TaskMetrics,
)


class BlockingTask(ScheduledTask):
    def __init__(self, config: TaskConfig | None = None) -> None:
        super().__init__(task_id="blocking", name="Blocking", config=config or TaskConfig(interval="*/5 * * * *"))
        self.entered = threading.Event()
        self.release = threading.Event()
        self.calls = 0

    def execute_task(self):
        self.calls += 1
        self.entered.set()
        self.release.wait(timeout=5)
        return "done"


class ScriptedTask(ScheduledTask):
    def __init__(self, *, fail: bool = False, config: TaskConfig | None = None) -> None:
        super().__init__(
            task_id="scripted",
            name="Scripted",
            config=config or TaskConfig(interval="*/5 * * * *", max_retries=3),
        )
        self.fail = fail

    def execute_task(self):
        if self.fail:
            raise RuntimeError("boom")
        return {"ok": True}


@pytest.fixture()
def running_task():
    task = ScriptedTask(fail=True)
    task.start()
    yield task
    task.stop()


# ---------------------------------------------------------------------------
# Single flight
# ---------------------------------------------------------------------------


class TestSingleFlight:
    def test_trigger_while_running_raises_and_does_not_start_second_run(self) -> None:
        task = BlockingTask()
        worker = threading.Thread(target=task.trigger)
        worker.start()
        assert task.entered.wait(timeout=5)

        with pytest.raises(TaskAlreadyRunningError):
            task.trigger()
        assert task.calls == 1

        task.release.set()
        worker.join(timeout=5)
        assert not task.is_running
        assert task.get_metrics().successful_runs == 1

    def test_guard_is_released_after_failure(self) -> None:
        task = ScriptedTask(fail=True)
        first = task.trigger()
        second = task.trigger()
        assert not first.success
        assert not second.success
        assert task.get_metrics().failed_runs == 2


class TestTimeout:
    def test_overrun_is_recorded_as_failure_and_releases_guard(self) -> None:
        task = BlockingTask(TaskConfig(interval="*/5 * * * *", timeout_seconds=0.05))
        outcome = task.trigger()
        try:
            assert not outcome.success
            assert "timed out" in outcome.error
            assert not task.is_running
            assert task.get_metrics().consecutive_failures == 1
        finally:
            task.release.set()


# ---------------------------------------------------------------------------
# Failure escalation
# ---------------------------------------------------------------------------


class TestEscalation:
    def test_consecutive_failures_escalate_running_task_to_error(self, running_task) -> None:
        for _ in range(2):
            running_task.trigger()
        assert running_task.status is SchedulerStatus.RUNNING

        running_task.trigger()
        assert running_task.status is SchedulerStatus.ERROR
        assert not running_task.get_health_status().healthy

    def test_stopped_task_does_not_escalate(self) -> None:
        task = ScriptedTask(fail=True)
        for _ in range(5):
            task.trigger()
        assert task.status is SchedulerStatus.STOPPED

    def test_start_from_error_clears_failure_streak(self, running_task) -> None:
        for _ in range(3):
            running_task.trigger()
        assert running_task.status is SchedulerStatus.ERROR

        running_task.fail = False
        running_task.start()
        assert running_task.status is SchedulerStatus.RUNNING
        assert running_task.get_metrics().consecutive_failures == 0

    def test_success_resets_consecutive_failures(self) -> None:
        task = ScriptedTask(fail=True)
        task.trigger()
        task.fail = False
        task.trigger()
        assert task.get_metrics().consecutive_failures == 0


# ---------------------------------------------------------------------------
# Metrics and health
# ---------------------------------------------------------------------------


class TestMetrics:
    def test_first_sample_is_taken_as_is(self) -> None:
        metrics = TaskMetrics(total_runs=1)
        metrics.record_duration(4.0)
        assert metrics.average_run_time_seconds == 4.0

    def test_average_is_exponential_with_alpha_half(self) -> None:
        metrics = TaskMetrics(total_runs=1)
        metrics.record_duration(4.0)
        metrics.total_runs = 2
        metrics.record_duration(2.0)
        metrics.total_runs = 3
        metrics.record_duration(1.0)
        assert metrics.average_run_time_seconds == pytest.approx(2.0)

    def test_run_counters(self) -> None:
        task = ScriptedTask()
        task.trigger()
        task.trigger()
        metrics = task.get_metrics()
        assert metrics.total_runs == 2
        assert metrics.successful_runs == 2
        assert metrics.last_success_at is not None


class TestHealth:
    def test_running_task_with_recent_success_is_healthy(self) -> None:
        task = ScriptedTask()
        task.start()
        try:
            task.trigger()
            health = task.get_health_status()
            assert health.healthy
            assert health.status is SchedulerStatus.RUNNING
        finally:
            task.stop()

    def test_stopped_task_is_not_healthy(self) -> None:
        task = ScriptedTask()
        task.trigger()
        assert not task.get_health_status().healthy

    def test_last_error_after_last_success_is_unhealthy(self) -> None:
        task = ScriptedTask()
        task.start()
        try:
            task.trigger()
            task.fail = True
            task.trigger()
            health = task.get_health_status()
            assert not health.healthy
            assert health.last_error == "boom"
        finally:
            task.stop()


# ---------------------------------------------------------------------------
# Lifecycle and configuration
# ---------------------------------------------------------------------------


class TestLifecycle:
    def test_invalid_cron_is_rejected_at_construction(self) -> None:
        with pytest.raises(ValueError):
            ScriptedTask(config=TaskConfig(interval="not a cron"))

    def test_disabled_task_does_not_start(self) -> None:
        task = ScriptedTask(config=TaskConfig(interval="*/5 * * * *", enabled=False))
        task.start()
        assert task.status is SchedulerStatus.STOPPED

    def test_pause_and_resume(self) -> None:
        task = ScriptedTask()
        task.start()
        try:
            task.pause()
            assert task.status is SchedulerStatus.PAUSED
            task.resume()
            assert task.status is SchedulerStatus.RUNNING
            assert task.next_run_time() is not None
        finally:
            task.stop()
        assert task.status is SchedulerStatus.STOPPED
        assert task.next_run_time() is None

    @pytest.mark.parametrize("path", ["trigger", "cron"])
    def test_stop_waits_for_in_flight_run(self, path) -> None:
        task = BlockingTask()
        task.start()
        if path == "trigger":
            threading.Thread(target=task.trigger, daemon=True).start()
        else:
            task._scheduler.modify_job(task.task_id, next_run_time=datetime.now(timezone.utc))
        assert task.entered.wait(timeout=5)

        stopper = threading.Thread(target=task.stop)
        stopper.start()
        stopper.join(timeout=0.2)
        try:
            assert stopper.is_alive()
            assert task.status is not SchedulerStatus.STOPPED
        finally:
            task.release.set()
        stopper.join(timeout=5)

        assert not stopper.is_alive()
        assert task.status is SchedulerStatus.STOPPED
        assert task.get_metrics().successful_runs == 1


class TestUpdateConfig:
    def test_unknown_field_raises(self) -> None:
        task = ScriptedTask()
        with pytest.raises(ValueError):
            task.update_config(colour="blue")

    def test_invalid_interval_keeps_previous_config(self) -> None:
        task = ScriptedTask()
        with pytest.raises(ValueError):
            task.update_config(interval="every tuesday")
        assert task.config.interval == "*/5 * * * *"

    def test_running_task_is_rescheduled(self) -> None:
        task = ScriptedTask()
        task.start()
        try:
            config = task.update_config(interval="0 * * * *", timeout_seconds=10)
            assert config.interval == "0 * * * *"
            assert task.config.timeout_seconds == 10
            assert task.status is SchedulerStatus.RUNNING
        finally:
            task.stop()

    def test_update_recovers_task_from_error(self, running_task) -> None:
        for _ in range(3):
            running_task.trigger()
        assert running_task.status is SchedulerStatus.ERROR

        running_task.update_config(max_retries=5)
        assert running_task.status is SchedulerStatus.RUNNING
        assert running_task.get_metrics().consecutive_failures == 0


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


class TestEvents:
    def test_successful_run_emits_started_and_completed(self) -> None:
        task = ScriptedTask()
        events = []
        task.subscribe(events.append)
        task.trigger()
        assert [event.name for event in events] == ["task_started", "task_completed"]
        assert all(event.task_id == "scripted" for event in events)

    def test_failed_run_emits_task_failed(self) -> None:
        task = ScriptedTask(fail=True)
        events = []
        task.subscribe(events.append)
        task.trigger()
        failed = [event for event in events if event.name == "task_failed"]
        assert len(failed) == 1
        assert failed[0].payload["error"] == "boom"

    def test_status_changes_are_emitted(self) -> None:
        task = ScriptedTask()
        events = []
        task.subscribe(events.append)
        task.start()
        task.stop()
        transitions = [
            (event.payload["previous"], event.payload["current"])
            for event in events
            if event.name == "status_change"
        ]
        assert transitions == [("STOPPED", "STARTING"), ("STARTING", "RUNNING"), ("RUNNING", "STOPPED")]

    def test_failing_listener_does_not_affect_run(self) -> None:
        task = ScriptedTask()
        received = []

        def broken(_event):
            raise RuntimeError("listener bug")

        task.subscribe(broken)
        task.subscribe(received.append)
        outcome = task.trigger()
        assert outcome.success
        assert len(received) == 2

    def test_unsubscribe_stops_delivery(self) -> None:
        task = ScriptedTask()
        events = []
        task.subscribe(events.append)
        task.unsubscribe(events.append)
        task.trigger()
        assert events == []
