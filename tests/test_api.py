"""
tests/test_api.py

Admin endpoints exercised through FastAPI's TestClient.

Coverage
--------
- Task listing, aggregate health and per-task metrics
- Lifecycle actions report the resulting status
- Unknown tasks return 404, overlapping triggers return 409
- Manual tenant import maps LookupError to 404
- 503 when no scheduler manager is attached
- Batch statistics endpoint
"""

from __future__ import annotations

import threading
import uuid

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.api.dependencies import get_batch_service
from app.api.routers import batch_jobs_router, schedulers_router
from app.domain.batch_enrichment import BatchStats
from app.domain.chat_import import CSVImportRunSummary, TenantImportResult
from app.scheduler.base import ScheduledTask, TaskConfig
from app.scheduler.jobs import CsvImportTask
from app.scheduler.manager import SchedulerManager

CONFIG = TaskConfig(interval="0 3 * * *", timeout_seconds=5.0)


class BlockingTask(ScheduledTask):
    def __init__(self) -> None:
        super().__init__(task_id="blocking", name="Blocking", config=CONFIG)
        self.started = threading.Event()
        self.release = threading.Event()

    def execute_task(self):
        self.started.set()
        self.release.wait(timeout=5)
        return None


class StubImportService:
    def __init__(self) -> None:
        self.tenant_id = uuid.uuid4()

    def run(self, *, progress=None) -> CSVImportRunSummary:
        return CSVImportRunSummary(processed=1, imported=4, updated=0, errors=0, pages=1)

    def import_tenant_by_id(self, tenant_id: uuid.UUID) -> TenantImportResult:
        if tenant_id != self.tenant_id:
            raise LookupError(f"Tenant {tenant_id} not found")
        return TenantImportResult(tenant_id=tenant_id, rows_seen=2, imported=2)


class StubBatchService:
    def get_batch_stats(self) -> BatchStats:
        return BatchStats(
            jobs_by_status={"SUBMITTED": 1, "COMPLETED": 0, "FAILED": 2, "PROCESSED": 5},
            eligible_sessions=7,
            quarantined_sessions=1,
            in_flight_sessions=3,
        )


def _build_app(manager: SchedulerManager | None) -> FastAPI:
    application = FastAPI()
    application.state.scheduler_manager = manager
    application.include_router(schedulers_router)
    application.include_router(batch_jobs_router)
    application.dependency_overrides[get_batch_service] = StubBatchService
    return application


@pytest.fixture()
def import_service() -> StubImportService:
    return StubImportService()


@pytest.fixture()
def blocking_task() -> BlockingTask:
    return BlockingTask()


@pytest.fixture()
def manager(import_service, blocking_task):
    manager = SchedulerManager()
    manager.register(CsvImportTask(service=import_service, config=CONFIG), critical=True)
    manager.register(blocking_task)
    yield manager
    blocking_task.release.set()
    manager.stop_all()


@pytest.fixture()
def client(manager) -> TestClient:
    return TestClient(_build_app(manager))


# ---------------------------------------------------------------------------
# Listing, health, metrics
# ---------------------------------------------------------------------------


class TestReporting:
    def test_list_tasks(self, client) -> None:
        response = client.get("/schedulers")
        assert response.status_code == 200
        body = {entry["task_id"]: entry for entry in response.json()}
        assert set(body) == {"csv-import", "blocking"}
        assert body["csv-import"]["critical"] is True
        assert body["csv-import"]["status"] == "STOPPED"

    def test_health_unhealthy_when_nothing_running(self, client) -> None:
        body = client.get("/schedulers/health").json()
        assert body["healthy"] is False
        assert body["total_tasks"] == 2
        assert body["running_tasks"] == 0

    def test_health_after_start(self, client) -> None:
        client.post("/schedulers/csv-import/start")
        body = client.get("/schedulers/health").json()
        assert body["healthy"] is True
        assert body["tasks"]["csv-import"]["status"] == "RUNNING"

    def test_csv_import_metrics(self, client) -> None:
        client.post("/schedulers/csv-import/trigger")
        body = client.get("/schedulers/csv-import/metrics").json()
        assert body["metrics"]["total_runs"] == 1
        assert body["csv_import"]["total_rows_imported"] == 4
        assert body["csv_import"]["total_tenants_processed"] == 1

    def test_generic_task_has_no_csv_metrics(self, client) -> None:
        body = client.get("/schedulers/blocking/metrics").json()
        assert body["csv_import"] is None

    def test_unknown_task_is_404(self, client) -> None:
        assert client.get("/schedulers/nope/metrics").status_code == 404
        assert client.post("/schedulers/nope/trigger").status_code == 404


# ---------------------------------------------------------------------------
# Lifecycle and triggers
# ---------------------------------------------------------------------------


class TestActions:
    def test_start_pause_resume_stop(self, client) -> None:
        assert client.post("/schedulers/csv-import/start").json()["status"] == "RUNNING"
        assert client.post("/schedulers/csv-import/pause").json()["status"] == "PAUSED"
        assert client.post("/schedulers/csv-import/resume").json()["status"] == "RUNNING"
        assert client.post("/schedulers/csv-import/stop").json()["status"] == "STOPPED"

    def test_trigger_returns_outcome(self, client) -> None:
        body = client.post("/schedulers/csv-import/trigger").json()
        assert body["task_id"] == "csv-import"
        assert body["success"] is True
        assert body["error"] is None

    def test_overlapping_trigger_is_409(self, client, blocking_task) -> None:
        runner = threading.Thread(target=blocking_task.trigger)
        runner.start()
        assert blocking_task.started.wait(timeout=5)
        try:
            response = client.post("/schedulers/blocking/trigger")
        finally:
            blocking_task.release.set()
            runner.join(timeout=5)
        assert response.status_code == 409

    def test_manual_tenant_import(self, client, import_service) -> None:
        response = client.post(f"/schedulers/csv-import/tenants/{import_service.tenant_id}/import")
        assert response.status_code == 200
        assert response.json()["imported"] == 2

    def test_manual_tenant_import_unknown_tenant(self, client) -> None:
        response = client.post(f"/schedulers/csv-import/tenants/{uuid.uuid4()}/import")
        assert response.status_code == 404


def test_missing_manager_is_503() -> None:
    client = TestClient(_build_app(None))
    assert client.get("/schedulers").status_code == 503


def test_batch_stats(client) -> None:
    response = client.get("/batch-jobs/stats")
    assert response.status_code == 200
    body = response.json()
    assert body["eligible_sessions"] == 7
    assert body["jobs_by_status"]["PROCESSED"] == 5
    assert body["in_flight_sessions"] == 3
