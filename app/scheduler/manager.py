"""
app/scheduler/manager.py

Registry that starts, stops and reports on a set of scheduled tasks.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from app.scheduler.base import (
    RunOutcome,
    ScheduledTask,
    SchedulerStatus,
    TaskEvent,
)

logger = logging.getLogger(__name__)


class TaskNotFoundError(LookupError):
    """
    Raised when a task id is not registered with the manager.
    """

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task '{task_id}' is not registered")
        self.task_id = task_id


@dataclass(frozen=True)
class TaskRegistration:
    task: ScheduledTask
    auto_start: bool = True
    critical: bool = False


@dataclass(frozen=True)
class TaskHealthSummary:
    status: SchedulerStatus
    healthy: bool
    last_success: datetime | None
    consecutive_failures: int


@dataclass(frozen=True)
class ManagerHealthStatus:
    healthy: bool
    total_tasks: int
    running_tasks: int
    error_tasks: int
    tasks: dict[str, TaskHealthSummary]


class SchedulerManager:
    """
    Owns the task registry for one process.

    With ``auto_restart`` enabled, a critical task that escalates to ERROR is
    restarted after ``restart_delay_seconds``, at most ``max_restart_attempts``
    times until it completes a run successfully again.
    """

    def __init__(
        self,
        *,
        enabled: bool = True,
        auto_restart: bool = False,
        max_restart_attempts: int = 3,
        restart_delay_seconds: float = 5.0,
    ) -> None:
        self._enabled = enabled
        self._auto_restart = auto_restart
        self._max_restart_attempts = max_restart_attempts
        self._restart_delay_seconds = restart_delay_seconds
        self._registrations: dict[str, TaskRegistration] = {}
        self._restart_attempts: dict[str, int] = {}
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self._enabled

    def register(self, task: ScheduledTask, *, auto_start: bool = True, critical: bool = False) -> None:
        with self._lock:
            if task.task_id in self._registrations:
                raise ValueError(f"Task '{task.task_id}' is already registered")
            self._registrations[task.task_id] = TaskRegistration(
                task=task,
                auto_start=auto_start,
                critical=critical,
            )
            self._restart_attempts[task.task_id] = 0
        task.subscribe(self._on_task_event)
        logger.info("Scheduler manager registered task_id=%s name=%r", task.task_id, task.name)

    def unregister(self, task_id: str) -> None:
        registration = self._get_registration(task_id)
        registration.task.stop()
        registration.task.unsubscribe(self._on_task_event)
        with self._lock:
            self._registrations.pop(task_id, None)
            self._restart_attempts.pop(task_id, None)
        logger.info("Scheduler manager unregistered task_id=%s", task_id)

    def get_task(self, task_id: str) -> ScheduledTask:
        return self._get_registration(task_id).task

    def task_ids(self) -> list[str]:
        with self._lock:
            return list(self._registrations)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start_all(self) -> None:
        if not self._enabled:
            logger.info("Scheduler manager disabled via configuration")
            return

        for registration in self._snapshot():
            if not registration.auto_start:
                continue
            try:
                registration.task.start()
            except Exception:  # noqa: BLE001
                logger.exception("Scheduler manager failed to start task_id=%s", registration.task.task_id)
        logger.info("Scheduler manager started tasks=%s", len(self._registrations))

    def stop_all(self) -> None:
        for registration in self._snapshot():
            try:
                registration.task.stop()
            except Exception:  # noqa: BLE001
                logger.exception("Scheduler manager failed to stop task_id=%s", registration.task.task_id)
        logger.info("Scheduler manager stopped all tasks")

    def start(self, task_id: str) -> None:
        self.get_task(task_id).start()

    def stop(self, task_id: str) -> None:
        self.get_task(task_id).stop()

    def pause(self, task_id: str) -> None:
        self.get_task(task_id).pause()

    def resume(self, task_id: str) -> None:
        self.get_task(task_id).resume()

    def trigger(self, task_id: str) -> RunOutcome:
        return self.get_task(task_id).trigger()

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def get_health_status(self) -> ManagerHealthStatus:
        """
        Aggregate health: no task in ERROR and at least one task RUNNING.
        """

        summaries: dict[str, TaskHealthSummary] = {}
        running = 0
        errored = 0
        for registration in self._snapshot():
            health = registration.task.get_health_status()
            summaries[registration.task.task_id] = TaskHealthSummary(
                status=health.status,
                healthy=health.healthy,
                last_success=health.last_success,
                consecutive_failures=health.consecutive_failures,
            )
            if health.status is SchedulerStatus.RUNNING:
                running += 1
            elif health.status is SchedulerStatus.ERROR:
                errored += 1

        return ManagerHealthStatus(
            healthy=errored == 0 and running > 0,
            total_tasks=len(summaries),
            running_tasks=running,
            error_tasks=errored,
            tasks=summaries,
        )

    def list_tasks(self) -> list[dict[str, Any]]:
        listing = []
        for registration in self._snapshot():
            entry = registration.task.describe()
            entry["critical"] = registration.critical
            entry["auto_start"] = registration.auto_start
            listing.append(entry)
        return listing

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _snapshot(self) -> list[TaskRegistration]:
        with self._lock:
            return list(self._registrations.values())

    def _get_registration(self, task_id: str) -> TaskRegistration:
        with self._lock:
            registration = self._registrations.get(task_id)
        if registration is None:
            raise TaskNotFoundError(task_id)
        return registration

    def _on_task_event(self, event: TaskEvent) -> None:
        if event.name == "task_completed":
            with self._lock:
                if event.task_id in self._restart_attempts:
                    self._restart_attempts[event.task_id] = 0
            return

        if event.name != "status_change" or event.payload.get("current") != SchedulerStatus.ERROR.value:
            return

        with self._lock:
            registration = self._registrations.get(event.task_id)
        if registration is None or not (registration.critical and self._auto_restart):
            return

        timer = threading.Timer(self._restart_delay_seconds, self._restart, args=(event.task_id,))
        timer.daemon = True
        timer.start()

    def _restart(self, task_id: str) -> None:
        with self._lock:
            registration = self._registrations.get(task_id)
            attempts = self._restart_attempts.get(task_id, 0)
            if registration is None:
                return
            if attempts >= self._max_restart_attempts:
                logger.error(
                    "Scheduler manager gave up restarting task_id=%s attempts=%s",
                    task_id,
                    attempts,
                )
                return
            self._restart_attempts[task_id] = attempts + 1

        logger.warning("Scheduler manager restarting task_id=%s attempt=%s", task_id, attempts + 1)
        try:
            registration.task.start()
        except Exception:  # noqa: BLE001
            logger.exception("Scheduler manager restart failed task_id=%s", task_id)
