"""
app/schemas package marker.
"""

from app.schemas.batch_jobs import BatchStatsResponse
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

__all__ = [
    "BatchStatsResponse",
    "CSVImportMetricsResponse",
    "RunOutcomeResponse",
    "SchedulerHealthResponse",
    "TaskActionResponse",
    "TaskHealthResponse",
    "TaskMetricsEnvelope",
    "TaskMetricsResponse",
    "TaskSummaryResponse",
    "TenantImportResponse",
]
