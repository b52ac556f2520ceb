"""
app/scheduler/base.py

Cron-driven, single-flight task runner with health and metrics.

Lifecycle
----------
    STOPPED -> STARTING -> RUNNING <-> PAUSED
    RUNNING -> ERROR   (consecutive failures reached ``max_retries``)
    ERROR   -> RUNNING (explicit ``start()`` or ``update_config()``)
    any     -> STOPPED (``stop()``)

Each task owns a ``BackgroundScheduler`` with exactly one cron job. Runs
coming from the cron trigger and from ``trigger()`` go through the same
guard, so a task never executes twice at the same time.

Every run is raced against ``timeout_seconds``. When the body overruns, the
run is recorded as failed and the guard is released, but the worker thread
is left to finish on its own: there is no cooperative cancellation.
"""

from __future__ import annotations

import enum
import logging
import threading
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import asdict, dataclass, field, fields, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

logger = logging.getLogger(__name__)


class SchedulerStatus(str, enum.Enum):
    STOPPED = "STOPPED"
    STARTING = "STARTING"
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"
    ERROR = "ERROR"


class TaskAlreadyRunningError(RuntimeError):
    """
    Raised by ``trigger()`` when a run of the same task is in flight.
    """

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task '{task_id}' is already running")
        self.task_id = task_id


class TaskTimeoutError(RuntimeError):
    """
    Recorded as the failure of a run that exceeded its timeout.
    """

    def __init__(self, task_id: str, timeout_seconds: float) -> None:
        super().__init__(f"Task '{task_id}' timed out after {timeout_seconds:.1f}s")
        self.task_id = task_id
        self.timeout_seconds = timeout_seconds


@dataclass(frozen=True)
class TaskConfig:
    """
    Scheduling parameters for one task. ``interval`` is a 5-field crontab.
    """

    interval: str
    enabled: bool = True
    timeout_seconds: float = 300.0
    max_retries: int = 3
    retry_delay_seconds: float = 0.0


@dataclass
class TaskMetrics:
    """
    Counters accumulated across runs. Survive pause/resume and restarts.

    ``average_run_time_seconds`` is an exponential moving average with
    alpha 0.5, not an arithmetic mean.
    """

    total_runs: int = 0
    successful_runs: int = 0
    failed_runs: int = 0
    consecutive_failures: int = 0
    average_run_time_seconds: float = 0.0
    last_run_at: datetime | None = None
    last_success_at: datetime | None = None
    last_error_at: datetime | None = None
    last_error: str | None = None

    def record_duration(self, duration_seconds: float) -> None:
        if self.total_runs <= 1:
            self.average_run_time_seconds = duration_seconds
        else:
            self.average_run_time_seconds = (self.average_run_time_seconds + duration_seconds) / 2

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class HealthStatus:
    task_id: str
    healthy: bool
    status: SchedulerStatus
    last_success: datetime | None
    consecutive_failures: int
    last_error: str | None = None


@dataclass(frozen=True)
class RunOutcome:
    """
    Result of one guarded run, returned by ``trigger()``.
    """

    task_id: str
    success: bool
    duration_seconds: float
    result: Any = None
    error: str | None = None


@dataclass(frozen=True)
class TaskEvent:
    """
    Observable notification of a state transition or run milestone.
    """

    name: str
    task_id: str
    payload: dict[str, Any] = field(default_factory=dict)
    emitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


TaskListener = Callable[[TaskEvent], None]

_CONFIG_FIELDS = frozenset(f.name for f in fields(TaskConfig))


class ScheduledTask(ABC):
    """
    Base class for periodic pipeline tasks.

    Subclasses implement ``execute_task()``; everything else (cron wiring,
    single-flight guard, timeout race, metrics, health, events) lives here.
    """

    def __init__(self, *, task_id: str, name: str, config: TaskConfig) -> None:
        _build_trigger(config.interval)
        self.task_id = task_id
        self.name = name
        self._config = config
        self._status = SchedulerStatus.STOPPED
        self._metrics = TaskMetrics()
        self._scheduler: BackgroundScheduler | None = None
        self._run_lock = threading.Lock()
        self._state_lock = threading.RLock()
        self._listeners: list[TaskListener] = []

    @abstractmethod
    def execute_task(self) -> Any:
        """
        Perform one run. Exceptions are recorded as a failed run.
        """

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def status(self) -> SchedulerStatus:
        return self._status

    @property
    def config(self) -> TaskConfig:
        return self._config

    @property
    def is_running(self) -> bool:
        """True while a run is in flight."""
        return self._run_lock.locked()

    def get_metrics(self) -> TaskMetrics:
        with self._state_lock:
            return replace(self._metrics)

    def get_health_status(self) -> HealthStatus:
        with self._state_lock:
            metrics = self._metrics
            recovered = metrics.last_error_at is None or (
                metrics.last_success_at is not None and metrics.last_success_at > metrics.last_error_at
            )
            healthy = (
                self._status is SchedulerStatus.RUNNING
                and metrics.consecutive_failures < self._config.max_retries
                and recovered
            )
            return HealthStatus(
                task_id=self.task_id,
                healthy=healthy,
                status=self._status,
                last_success=metrics.last_success_at,
                consecutive_failures=metrics.consecutive_failures,
                last_error=metrics.last_error,
            )

    def next_run_time(self) -> datetime | None:
        with self._state_lock:
            if self._scheduler is None:
                return None
            job = self._scheduler.get_job(self.task_id)
            return job.next_run_time if job is not None else None

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def subscribe(self, listener: TaskListener) -> None:
        with self._state_lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def unsubscribe(self, listener: TaskListener) -> None:
        with self._state_lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def emit(self, name: str, **payload: Any) -> None:
        event = TaskEvent(name=name, task_id=self.task_id, payload=payload)
        with self._state_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:  # noqa: BLE001
                logger.exception("Task listener failed task_id=%s event=%s", self.task_id, name)

    def _set_status(self, status: SchedulerStatus) -> None:
        previous = self._status
        if previous is status:
            return
        self._status = status
        logger.info(
            "Task status change task_id=%s from=%s to=%s",
            self.task_id,
            previous.value,
            status.value,
        )
        self.emit("status_change", previous=previous.value, current=status.value)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """
        Begin periodic execution. No-op when already RUNNING.

        From PAUSED this resumes; from ERROR it clears the failure streak
        and re-arms the trigger.
        """

        with self._state_lock:
            if self._status is SchedulerStatus.RUNNING:
                return
            if self._status is SchedulerStatus.PAUSED:
                self.resume()
                return
            if not self._config.enabled:
                logger.info("Task disabled, not starting task_id=%s", self.task_id)
                return

            if self._status is SchedulerStatus.ERROR and self._scheduler is not None:
                self._metrics.consecutive_failures = 0
                self._scheduler.resume()
                self._set_status(SchedulerStatus.RUNNING)
                self.emit("started", recovered=True)
                return

            self._metrics.consecutive_failures = 0
            self._set_status(SchedulerStatus.STARTING)
            scheduler = BackgroundScheduler(timezone="UTC")
            try:
                scheduler.add_job(
                    self._run_scheduled,
                    trigger=_build_trigger(self._config.interval),
                    id=self.task_id,
                    name=self.name,
                    replace_existing=True,
                    max_instances=1,
                    coalesce=True,
                    misfire_grace_time=300,
                )
                scheduler.start()
            except Exception:
                logger.exception("Task failed to start task_id=%s", self.task_id)
                self._set_status(SchedulerStatus.ERROR)
                raise

            self._scheduler = scheduler
            self._set_status(SchedulerStatus.RUNNING)
            logger.info(
                "Task started task_id=%s interval=%r timeout_seconds=%s",
                self.task_id,
                self._config.interval,
                self._config.timeout_seconds,
            )
            self.emit("started", interval=self._config.interval)

    def stop(self) -> None:
        """
        Cancel future runs and block until any in-flight run has finished.
        """

        with self._state_lock:
            if self._status is SchedulerStatus.STOPPED and self._scheduler is None:
                return
            scheduler = self._scheduler
            self._scheduler = None

        if scheduler is not None:
            scheduler.shutdown(wait=True)
        # Manual trigger() runs are not tracked by the scheduler.
        with self._run_lock:
            pass

        with self._state_lock:
            self._set_status(SchedulerStatus.STOPPED)
        logger.info("Task stopped task_id=%s", self.task_id)
        self.emit("stopped")

    def pause(self) -> None:
        with self._state_lock:
            if self._status is not SchedulerStatus.RUNNING or self._scheduler is None:
                return
            self._scheduler.pause()
            self._set_status(SchedulerStatus.PAUSED)
        self.emit("paused")

    def resume(self) -> None:
        with self._state_lock:
            if self._status is not SchedulerStatus.PAUSED or self._scheduler is None:
                return
            self._scheduler.resume()
            self._set_status(SchedulerStatus.RUNNING)
        self.emit("resumed")

    def update_config(self, **changes: Any) -> TaskConfig:
        """
        Hot-swap configuration. A RUNNING task is paused, rescheduled and
        resumed; an ERROR task has its failure streak cleared and resumes.
        """

        unknown = set(changes) - _CONFIG_FIELDS
        if unknown:
            raise ValueError(f"Unknown task config field(s): {sorted(unknown)}")

        with self._state_lock:
            new_config = replace(self._config, **changes)
            trigger = _build_trigger(new_config.interval)
            self._config = new_config

            if self._scheduler is not None:
                if self._status is SchedulerStatus.RUNNING:
                    self.pause()
                    self._scheduler.reschedule_job(self.task_id, trigger=trigger)
                    self.resume()
                else:
                    self._scheduler.reschedule_job(self.task_id, trigger=trigger)

            if self._status is SchedulerStatus.ERROR and self._scheduler is not None:
                self._metrics.consecutive_failures = 0
                self._scheduler.resume()
                self._set_status(SchedulerStatus.RUNNING)

        logger.info("Task config updated task_id=%s changes=%s", self.task_id, sorted(changes))
        self.emit("config_updated", changes=dict(changes))
        return new_config

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def trigger(self) -> RunOutcome:
        """
        Execute one run immediately on the calling thread.

        Raises ``TaskAlreadyRunningError`` when a run is in flight.
        """

        return self._execute_guarded()

    def _run_scheduled(self) -> None:
        try:
            self._execute_guarded()
        except TaskAlreadyRunningError:
            logger.warning("Skipping scheduled run, previous run still in flight task_id=%s", self.task_id)

    def _execute_guarded(self) -> RunOutcome:
        if not self._run_lock.acquire(blocking=False):
            raise TaskAlreadyRunningError(self.task_id)

        try:
            timeout_seconds = self._config.timeout_seconds
            started = time.monotonic()
            logger.info("Task run starting task_id=%s", self.task_id)
            self.emit("task_started")

            executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"task-{self.task_id}")
            future = executor.submit(self.execute_task)
            executor.shutdown(wait=False)
            try:
                result = future.result(timeout=timeout_seconds)
            except FutureTimeoutError:
                error: Exception = TaskTimeoutError(self.task_id, timeout_seconds)
                return self._record_failure(error, time.monotonic() - started)
            except Exception as exc:  # noqa: BLE001
                return self._record_failure(exc, time.monotonic() - started)
            return self._record_success(result, time.monotonic() - started)
        finally:
            self._run_lock.release()

    def _record_success(self, result: Any, duration_seconds: float) -> RunOutcome:
        now = datetime.now(timezone.utc)
        with self._state_lock:
            metrics = self._metrics
            metrics.total_runs += 1
            metrics.successful_runs += 1
            metrics.consecutive_failures = 0
            metrics.last_run_at = now
            metrics.last_success_at = now
            metrics.record_duration(duration_seconds)

        logger.info(
            "Task run completed task_id=%s duration_seconds=%.3f",
            self.task_id,
            duration_seconds,
        )
        self.emit("task_completed", duration_seconds=duration_seconds, result=result)
        return RunOutcome(
            task_id=self.task_id,
            success=True,
            duration_seconds=duration_seconds,
            result=result,
        )

    def _record_failure(self, error: Exception, duration_seconds: float) -> RunOutcome:
        now = datetime.now(timezone.utc)
        escalated = False
        with self._state_lock:
            metrics = self._metrics
            metrics.total_runs += 1
            metrics.failed_runs += 1
            metrics.consecutive_failures += 1
            metrics.last_run_at = now
            metrics.last_error_at = now
            metrics.last_error = str(error)
            metrics.record_duration(duration_seconds)
            failures = metrics.consecutive_failures

            if self._status is SchedulerStatus.RUNNING and failures >= self._config.max_retries:
                if self._scheduler is not None:
                    self._scheduler.pause()
                self._set_status(SchedulerStatus.ERROR)
                escalated = True
            elif self._status is SchedulerStatus.RUNNING and self._config.retry_delay_seconds > 0:
                self._schedule_retry()

        if escalated:
            logger.error(
                "Task escalated to ERROR task_id=%s consecutive_failures=%s error=%s",
                self.task_id,
                failures,
                error,
            )
        else:
            logger.warning(
                "Task run failed task_id=%s consecutive_failures=%s/%s error=%s",
                self.task_id,
                failures,
                self._config.max_retries,
                error,
            )
        self.emit(
            "task_failed",
            error=str(error),
            error_type=type(error).__name__,
            consecutive_failures=failures,
            duration_seconds=duration_seconds,
        )
        return RunOutcome(
            task_id=self.task_id,
            success=False,
            duration_seconds=duration_seconds,
            error=str(error),
        )

    def _schedule_retry(self) -> None:
        if self._scheduler is None:
            return
        run_date = datetime.now(timezone.utc) + timedelta(seconds=self._config.retry_delay_seconds)
        self._scheduler.add_job(
            self._run_scheduled,
            trigger="date",
            run_date=run_date,
            id=f"{self.task_id}:retry",
            name=f"{self.name} (retry)",
            replace_existing=True,
        )
        logger.info("Task retry scheduled task_id=%s run_date=%s", self.task_id, run_date.isoformat())

    def describe(self) -> dict[str, Any]:
        """
        Snapshot used by the admin API and the manager listing.
        """

        health = self.get_health_status()
        return {
            "task_id": self.task_id,
            "name": self.name,
            "status": self._status.value,
            "enabled": self._config.enabled,
            "interval": self._config.interval,
            "timeout_seconds": self._config.timeout_seconds,
            "max_retries": self._config.max_retries,
            "is_running": self.is_running,
            "healthy": health.healthy,
            "next_run_time": self.next_run_time(),
            "metrics": self.get_metrics().to_dict(),
        }


def _build_trigger(interval: str) -> CronTrigger:
    try:
        return CronTrigger.from_crontab(interval, timezone="UTC")
    except ValueError as exc:
        raise ValueError(f"Invalid cron interval {interval!r}: {exc}") from exc
