"""
app/domain package marker.
"""

from app.domain.batch_enrichment import (
    BatchOutputRecord,
    BatchPollResult,
    BatchPollSummary,
    BatchRequestItem,
    BatchStats,
    BatchSubmission,
    BatchSubmissionSummary,
    ReconciliationSummary,
    TokenUsage,
)
from app.domain.chat_import import (
    CSVImportRunSummary,
    CSVParseResult,
    ImportProcessingSummary,
    ParsedSessionRow,
    ParsedTurn,
    RowParseError,
    StagingResult,
    TenantFeed,
    TenantImportResult,
)

__all__ = [
    "BatchOutputRecord",
    "BatchPollResult",
    "BatchPollSummary",
    "BatchRequestItem",
    "BatchStats",
    "BatchSubmission",
    "BatchSubmissionSummary",
    "CSVImportRunSummary",
    "CSVParseResult",
    "ImportProcessingSummary",
    "ParsedSessionRow",
    "ParsedTurn",
    "ReconciliationSummary",
    "RowParseError",
    "StagingResult",
    "TenantFeed",
    "TenantImportResult",
    "TokenUsage",
]
