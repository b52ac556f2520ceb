"""
app/schemas/batch_jobs.py

Response schemas for batch enrichment statistics.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class BatchStatsResponse(BaseModel):
    jobs_by_status: dict[str, int] = Field(default_factory=dict)
    eligible_sessions: int = Field(..., ge=0)
    quarantined_sessions: int = Field(..., ge=0)
    in_flight_sessions: int = Field(..., ge=0)
