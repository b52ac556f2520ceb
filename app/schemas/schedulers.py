"""
app/schemas/schedulers.py

Response schemas for scheduler admin endpoints.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, Field


class TaskMetricsResponse(BaseModel):
    """
    Cumulative run counters for one task.
    """

    total_runs: int = Field(..., ge=0)
    successful_runs: int = Field(..., ge=0)
    failed_runs: int = Field(..., ge=0)
    consecutive_failures: int = Field(..., ge=0)
    average_run_time_seconds: float = Field(..., ge=0.0)
    last_run_at: datetime | None = None
    last_success_at: datetime | None = None
    last_error_at: datetime | None = None
    last_error: str | None = None


class CSVImportMetricsResponse(BaseModel):
    total_tenants_processed: int = Field(..., ge=0)
    total_rows_imported: int = Field(..., ge=0)
    total_errors: int = Field(..., ge=0)
    average_run_time_seconds: float = Field(..., ge=0.0)
    error_rate: float = Field(..., ge=0.0)


class TaskMetricsEnvelope(BaseModel):
    task_id: str
    metrics: TaskMetricsResponse
    csv_import: CSVImportMetricsResponse | None = None


class TaskSummaryResponse(BaseModel):
    """
    One entry of the scheduler task listing.
    """

    task_id: str
    name: str
    status: str
    enabled: bool
    interval: str
    timeout_seconds: float
    max_retries: int
    is_running: bool
    healthy: bool
    critical: bool
    auto_start: bool
    next_run_time: datetime | None = None
    metrics: TaskMetricsResponse


class TaskHealthResponse(BaseModel):
    status: str
    healthy: bool
    last_success: datetime | None = None
    consecutive_failures: int = Field(..., ge=0)


class SchedulerHealthResponse(BaseModel):
    """
    Aggregate health: no task in ERROR and at least one RUNNING.
    """

    healthy: bool
    total_tasks: int = Field(..., ge=0)
    running_tasks: int = Field(..., ge=0)
    error_tasks: int = Field(..., ge=0)
    tasks: dict[str, TaskHealthResponse] = Field(default_factory=dict)


class TaskActionResponse(BaseModel):
    task_id: str
    status: str


class RunOutcomeResponse(BaseModel):
    task_id: str
    success: bool
    duration_seconds: float = Field(..., ge=0.0)
    error: str | None = None


class TenantImportResponse(BaseModel):
    tenant_id: uuid.UUID
    success: bool
    rows_seen: int = Field(..., ge=0)
    imported: int = Field(..., ge=0)
    updated: int = Field(..., ge=0)
    failed_rows: int = Field(..., ge=0)
    error: str | None = None
