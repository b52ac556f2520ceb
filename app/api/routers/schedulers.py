"""
app/api/routers/schedulers.py

Scheduler health, metrics and privileged lifecycle endpoints.

Authorization is enforced in front of this service, not here.
"""

from __future__ import annotations

import uuid
from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, status

from app.api.dependencies import get_scheduler_manager
from app.scheduler.base import TaskAlreadyRunningError
from app.scheduler.jobs import CsvImportTask
from app.scheduler.manager import SchedulerManager, TaskNotFoundError
from app.schemas.schedulers import (
    CSVImportMetricsResponse,
    RunOutcomeResponse,
    SchedulerHealthResponse,
    TaskActionResponse,
    TaskHealthResponse,
    TaskMetricsEnvelope,
    TaskMetricsResponse,
    TaskSummaryResponse,
    TenantImportResponse,
)

router = APIRouter(prefix="/schedulers", tags=["schedulers"])


def _task_or_404(manager: SchedulerManager, task_id: str):
    try:
        return manager.get_task(task_id)
    except TaskNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc


@router.get("", response_model=list[TaskSummaryResponse])
def list_schedulers(manager: SchedulerManager = Depends(get_scheduler_manager)) -> list[TaskSummaryResponse]:
    return [TaskSummaryResponse.model_validate(entry) for entry in manager.list_tasks()]


@router.get("/health", response_model=SchedulerHealthResponse)
def scheduler_health(manager: SchedulerManager = Depends(get_scheduler_manager)) -> SchedulerHealthResponse:
    health = manager.get_health_status()
    return SchedulerHealthResponse(
        healthy=health.healthy,
        total_tasks=health.total_tasks,
        running_tasks=health.running_tasks,
        error_tasks=health.error_tasks,
        tasks={
            task_id: TaskHealthResponse(
                status=summary.status.value,
                healthy=summary.healthy,
                last_success=summary.last_success,
                consecutive_failures=summary.consecutive_failures,
            )
            for task_id, summary in health.tasks.items()
        },
    )


@router.get("/{task_id}/metrics", response_model=TaskMetricsEnvelope)
def task_metrics(
    task_id: str,
    manager: SchedulerManager = Depends(get_scheduler_manager),
) -> TaskMetricsEnvelope:
    task = _task_or_404(manager, task_id)
    csv_import = None
    if isinstance(task, CsvImportTask):
        csv_import = CSVImportMetricsResponse(**asdict(task.get_csv_import_metrics()))
    return TaskMetricsEnvelope(
        task_id=task_id,
        metrics=TaskMetricsResponse(**task.get_metrics().to_dict()),
        csv_import=csv_import,
    )


@router.post("/{task_id}/start", response_model=TaskActionResponse)
def start_task(task_id: str, manager: SchedulerManager = Depends(get_scheduler_manager)) -> TaskActionResponse:
    task = _task_or_404(manager, task_id)
    task.start()
    return TaskActionResponse(task_id=task_id, status=task.status.value)


@router.post("/{task_id}/stop", response_model=TaskActionResponse)
def stop_task(task_id: str, manager: SchedulerManager = Depends(get_scheduler_manager)) -> TaskActionResponse:
    task = _task_or_404(manager, task_id)
    task.stop()
    return TaskActionResponse(task_id=task_id, status=task.status.value)


@router.post("/{task_id}/pause", response_model=TaskActionResponse)
def pause_task(task_id: str, manager: SchedulerManager = Depends(get_scheduler_manager)) -> TaskActionResponse:
    task = _task_or_404(manager, task_id)
    task.pause()
    return TaskActionResponse(task_id=task_id, status=task.status.value)


@router.post("/{task_id}/resume", response_model=TaskActionResponse)
def resume_task(task_id: str, manager: SchedulerManager = Depends(get_scheduler_manager)) -> TaskActionResponse:
    task = _task_or_404(manager, task_id)
    task.resume()
    return TaskActionResponse(task_id=task_id, status=task.status.value)


@router.post("/{task_id}/trigger", response_model=RunOutcomeResponse)
def trigger_task(task_id: str, manager: SchedulerManager = Depends(get_scheduler_manager)) -> RunOutcomeResponse:
    """
    Run the task once, synchronously. Returns 409 while a run is in flight.
    """

    task = _task_or_404(manager, task_id)
    try:
        outcome = task.trigger()
    except TaskAlreadyRunningError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return RunOutcomeResponse(
        task_id=outcome.task_id,
        success=outcome.success,
        duration_seconds=outcome.duration_seconds,
        error=outcome.error,
    )


@router.post("/csv-import/tenants/{tenant_id}/import", response_model=TenantImportResponse)
def import_tenant(
    tenant_id: uuid.UUID,
    manager: SchedulerManager = Depends(get_scheduler_manager),
) -> TenantImportResponse:
    task = _task_or_404(manager, "csv-import")
    try:
        result = task.trigger_tenant_import(tenant_id)
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return TenantImportResponse(
        tenant_id=result.tenant_id,
        success=result.success,
        rows_seen=result.rows_seen,
        imported=result.imported,
        updated=result.updated,
        failed_rows=result.failed_rows,
        error=result.error,
    )
