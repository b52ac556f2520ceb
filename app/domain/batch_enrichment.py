"""
app/domain/batch_enrichment.py

Domain models for the batch enrichment submit / poll / reconcile cycle.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class BatchRequestItem:
    """
    One sub-request inside a batch. ``custom_id`` is the session primary key.
    """

    custom_id: str
    body: dict[str, Any]

    def to_jsonl_record(self) -> dict[str, Any]:
        return {
            "custom_id": self.custom_id,
            "method": "POST",
            "url": "/v1/chat/completions",
            "body": self.body,
        }


@dataclass(frozen=True)
class BatchSubmission:
    """
    Provider acknowledgement of a submitted batch.
    """

    external_job_id: str
    input_file_id: str | None = None


@dataclass(frozen=True)
class BatchPollResult:
    """
    Provider status snapshot for one batch.
    """

    external_job_id: str
    provider_status: str
    output_ref: str | None = None
    error_ref: str | None = None
    error_message: str | None = None


@dataclass(frozen=True)
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass(frozen=True)
class BatchOutputRecord:
    """
    One line of the provider's output (or error) file.
    """

    custom_id: str | None
    content: str | None
    usage: TokenUsage
    model: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class BatchSubmissionSummary:
    batch_job_id: uuid.UUID | None = None
    external_job_id: str | None = None
    submitted: int = 0
    quarantined: int = 0


@dataclass(frozen=True)
class BatchPollSummary:
    polled: int = 0
    completed: int = 0
    failed: int = 0
    pending: int = 0
    errors: int = 0


@dataclass(frozen=True)
class ReconciliationSummary:
    jobs_processed: int = 0
    sessions_enriched: int = 0
    sessions_failed: int = 0
    sessions_skipped: int = 0


@dataclass(frozen=True)
class BatchStats:
    jobs_by_status: dict[str, int]
    eligible_sessions: int
    quarantined_sessions: int
    in_flight_sessions: int
