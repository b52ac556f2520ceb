"""
app/domain/chat_import.py

Domain models shared by CSV ingestion and import promotion.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class ParsedSessionRow:
    """
    One normalized CSV feed row, ready to be staged.
    """

    external_session_id: str
    raw_fields: dict[str, Any]
    start_time: datetime
    end_time: datetime | None
    ip_address: str | None
    country_code: str | None
    language: str | None
    messages_sent: int
    sentiment_score: float | None
    escalated: bool
    forwarded_hr: bool
    transcript_url: str | None
    avg_response_time: float | None
    tokens: int
    tokens_eur: float
    category: str | None
    initial_message: str | None


@dataclass(frozen=True)
class RowParseError:
    """
    One CSV row that could not be turned into a ``ParsedSessionRow``.
    """

    row_number: int
    message: str
    external_session_id: str | None = None


@dataclass(frozen=True)
class CSVParseResult:
    rows: list[ParsedSessionRow] = field(default_factory=list)
    errors: list[RowParseError] = field(default_factory=list)


@dataclass(frozen=True)
class ParsedTurn:
    """
    One transcript message after parsing, before persistence.
    """

    role: str
    content: str
    order: int
    timestamp: datetime | None = None


@dataclass(frozen=True)
class StagingResult:
    """
    Outcome of upserting one tenant's rows into the staging table.
    """

    inserted: int = 0
    updated: int = 0
    failed: int = 0


@dataclass(frozen=True)
class TenantImportResult:
    """
    Per-tenant outcome of one CSV ingestion pass.
    """

    tenant_id: uuid.UUID
    rows_seen: int = 0
    imported: int = 0
    updated: int = 0
    failed_rows: int = 0
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class CSVImportRunSummary:
    """
    End-of-run summary for the CSV ingestion task.
    """

    processed: int = 0
    imported: int = 0
    updated: int = 0
    errors: int = 0
    pages: int = 0
    results: list[TenantImportResult] = field(default_factory=list)


@dataclass(frozen=True)
class ImportProcessingSummary:
    """
    End-of-run summary for promoting staged rows into chat sessions.
    """

    claimed: int = 0
    processed: int = 0
    degraded: int = 0
    failed: int = 0


@dataclass(frozen=True)
class TenantFeed:
    """
    Detached snapshot of a tenant's feed configuration, safe to hand to
    worker threads.
    """

    tenant_id: uuid.UUID
    name: str
    csv_url: str
    username: str | None = None
    password: str | None = None
