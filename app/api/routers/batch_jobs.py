"""
app/api/routers/batch_jobs.py

Read-only batch enrichment statistics.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from app.api.dependencies import get_batch_service
from app.schemas.batch_jobs import BatchStatsResponse
from app.services.batch_enrichment_service import BatchEnrichmentService

router = APIRouter(prefix="/batch-jobs", tags=["batch-jobs"])


@router.get("/stats", response_model=BatchStatsResponse)
def batch_stats(service: BatchEnrichmentService = Depends(get_batch_service)) -> BatchStatsResponse:
    """
    Job counts per status plus eligible, quarantined and in-flight sessions.
    """

    stats = service.get_batch_stats()
    return BatchStatsResponse(
        jobs_by_status=stats.jobs_by_status,
        eligible_sessions=stats.eligible_sessions,
        quarantined_sessions=stats.quarantined_sessions,
        in_flight_sessions=stats.in_flight_sessions,
    )
