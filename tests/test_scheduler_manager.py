"""
tests/test_scheduler_manager.py

Unit tests for SchedulerManager and the pipeline task wiring.

Coverage
--------
- Registration, lookup and duplicate protection
- start_all honours auto_start and the global enabled switch
- Aggregate health
- CsvImportTask events, cumulative metrics and manual tenant import
- build_scheduler_manager task filtering
"""

from __future__ import annotations

import uuid

import pytest

from app.domain.chat_import import CSVImportRunSummary, TenantImportResult
from app.scheduler.base import ScheduledTask, SchedulerStatus, TaskConfig
from app.scheduler.jobs import (
    BATCH_POLLING_TASK_ID,
    CSV_IMPORT_TASK_ID,
    CsvImportTask,
    build_scheduler_manager,
)
from app.scheduler.manager import SchedulerManager, TaskNotFoundError


class NoopTask(ScheduledTask):
    def __init__(self, task_id: str) -> None:
        super().__init__(task_id=task_id, name=task_id.title(), config=TaskConfig(interval="*/5 * * * *"))

    def execute_task(self):
        return None


class StubImportService:
    def __init__(self) -> None:
        self.tenant_id = uuid.uuid4()

    def run(self, *, progress=None) -> CSVImportRunSummary:
        if progress is not None:
            progress({"page": 1, "processed": 2, "imported": 5, "errors": 1})
        return CSVImportRunSummary(processed=2, imported=5, updated=1, errors=1, pages=1)

    def import_tenant_by_id(self, tenant_id: uuid.UUID) -> TenantImportResult:
        if tenant_id != self.tenant_id:
            raise LookupError(f"Tenant {tenant_id} not found")
        return TenantImportResult(tenant_id=tenant_id, rows_seen=3, imported=3)


@pytest.fixture()
def manager():
    manager = SchedulerManager()
    yield manager
    manager.stop_all()


class TestRegistry:
    def test_duplicate_registration_raises(self, manager) -> None:
        manager.register(NoopTask("alpha"))
        with pytest.raises(ValueError):
            manager.register(NoopTask("alpha"))

    def test_unknown_task_raises_not_found(self, manager) -> None:
        with pytest.raises(TaskNotFoundError):
            manager.trigger("missing")

    def test_unregister_removes_task(self, manager) -> None:
        manager.register(NoopTask("alpha"))
        manager.unregister("alpha")
        assert manager.task_ids() == []

    def test_list_tasks_includes_registration_flags(self, manager) -> None:
        manager.register(NoopTask("alpha"), critical=True)
        [entry] = manager.list_tasks()
        assert entry["task_id"] == "alpha"
        assert entry["critical"] is True
        assert entry["auto_start"] is True
        assert entry["status"] == "STOPPED"


class TestLifecycle:
    def test_start_all_skips_tasks_without_auto_start(self, manager) -> None:
        manager.register(NoopTask("alpha"))
        manager.register(NoopTask("beta"), auto_start=False)
        manager.start_all()
        assert manager.get_task("alpha").status is SchedulerStatus.RUNNING
        assert manager.get_task("beta").status is SchedulerStatus.STOPPED

    def test_disabled_manager_starts_nothing(self) -> None:
        manager = SchedulerManager(enabled=False)
        manager.register(NoopTask("alpha"))
        manager.start_all()
        assert manager.get_task("alpha").status is SchedulerStatus.STOPPED

    def test_stop_all_stops_every_task(self, manager) -> None:
        manager.register(NoopTask("alpha"))
        manager.register(NoopTask("beta"))
        manager.start_all()
        manager.stop_all()
        assert all(manager.get_task(task_id).status is SchedulerStatus.STOPPED for task_id in manager.task_ids())


class TestHealth:
    def test_healthy_when_running_and_no_errors(self, manager) -> None:
        manager.register(NoopTask("alpha"))
        manager.start_all()
        manager.trigger("alpha")
        health = manager.get_health_status()
        assert health.healthy
        assert health.running_tasks == 1
        assert health.tasks["alpha"].healthy

    def test_unhealthy_when_nothing_runs(self, manager) -> None:
        manager.register(NoopTask("alpha"))
        health = manager.get_health_status()
        assert not health.healthy
        assert health.total_tasks == 1


class TestCsvImportTask:
    def _task(self, service: StubImportService) -> CsvImportTask:
        return CsvImportTask(service=service, config=TaskConfig(interval="*/10 * * * *"))

    def test_run_emits_progress_and_batch_completed(self) -> None:
        task = self._task(StubImportService())
        events = []
        task.subscribe(events.append)
        task.trigger()
        names = [event.name for event in events]
        assert names == ["task_started", "progress", "batch_completed", "task_completed"]
        progress = events[1]
        assert progress.payload["imported"] == 5

    def test_metrics_accumulate_across_runs(self) -> None:
        task = self._task(StubImportService())
        task.trigger()
        task.trigger()
        metrics = task.get_csv_import_metrics()
        assert metrics.total_tenants_processed == 4
        assert metrics.total_rows_imported == 10
        assert metrics.error_rate == pytest.approx(0.5)

    def test_manual_tenant_import_counts_towards_metrics(self) -> None:
        service = StubImportService()
        task = self._task(service)
        result = task.trigger_tenant_import(service.tenant_id)
        assert result.imported == 3
        assert task.get_csv_import_metrics().total_rows_imported == 3

    def test_manual_import_of_unknown_tenant_raises(self) -> None:
        task = self._task(StubImportService())
        with pytest.raises(LookupError):
            task.trigger_tenant_import(uuid.uuid4())

    def test_metrics_are_zero_before_first_run(self) -> None:
        metrics = self._task(StubImportService()).get_csv_import_metrics()
        assert metrics.total_tenants_processed == 0
        assert metrics.error_rate == 0.0


class TestBuildSchedulerManager:
    def test_task_ids_filter_limits_registration(self) -> None:
        tasks = [NoopTask(CSV_IMPORT_TASK_ID), NoopTask(BATCH_POLLING_TASK_ID), NoopTask("other")]
        manager = build_scheduler_manager(task_ids=(CSV_IMPORT_TASK_ID,), tasks=tasks)
        assert manager.task_ids() == [CSV_IMPORT_TASK_ID]

    def test_csv_import_and_polling_are_critical(self) -> None:
        tasks = [NoopTask(CSV_IMPORT_TASK_ID), NoopTask(BATCH_POLLING_TASK_ID), NoopTask("other")]
        manager = build_scheduler_manager(tasks=tasks)
        flags = {entry["task_id"]: entry["critical"] for entry in manager.list_tasks()}
        assert flags == {CSV_IMPORT_TASK_ID: True, BATCH_POLLING_TASK_ID: True, "other": False}
