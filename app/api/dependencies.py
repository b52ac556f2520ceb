"""
app/api/dependencies.py

Shared FastAPI dependencies for the admin endpoints.
"""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from app.scheduler.manager import SchedulerManager
from app.services.batch_enrichment_service import BatchEnrichmentService, get_batch_enrichment_service


def get_scheduler_manager(request: Request) -> SchedulerManager:
    """
    Return the process scheduler manager created during app startup.
    """

    manager = getattr(request.app.state, "scheduler_manager", None)
    if manager is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Scheduler manager is not initialized.",
        )
    return manager


def get_batch_service() -> BatchEnrichmentService:
    return get_batch_enrichment_service()
