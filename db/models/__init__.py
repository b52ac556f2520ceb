"""
Model package exports.

Import all SQLAlchemy models here so metadata registration and Alembic
autogeneration work without extra imports.
"""

from db.models.batch_job import BatchJob, BatchJobStatus, InvalidStatusTransitionError
from db.models.chat_session import ChatSession, SessionSentiment
from db.models.conversation_turn import ConversationTurn, TurnRole
from db.models.enrichment_audit import EnrichmentAuditRecord
from db.models.question import Question, SessionQuestion
from db.models.session_import import ImportStatus, SessionImport
from db.models.tenant import Tenant, TenantStatus

__all__ = [
    "BatchJob",
    "BatchJobStatus",
    "ChatSession",
    "ConversationTurn",
    "EnrichmentAuditRecord",
    "ImportStatus",
    "InvalidStatusTransitionError",
    "Question",
    "SessionImport",
    "SessionQuestion",
    "SessionSentiment",
    "Tenant",
    "TenantStatus",
    "TurnRole",
]
