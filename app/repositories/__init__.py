"""
app/repositories package marker.
"""

from app.repositories.batch_job_repository import BatchJobRepository
from app.repositories.chat_session_repository import BatchClaimConflictError, ChatSessionRepository
from app.repositories.enrichment_repository import EnrichmentRepository
from app.repositories.session_import_repository import SessionImportRepository
from app.repositories.tenant_repository import TenantRepository

__all__ = [
    "BatchClaimConflictError",
    "BatchJobRepository",
    "ChatSessionRepository",
    "EnrichmentRepository",
    "SessionImportRepository",
    "TenantRepository",
]
