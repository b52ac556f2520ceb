"""
db/models/chat_session.py

Canonical chat session promoted from a staged import row.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db.base import Base, TimestampMixin

if TYPE_CHECKING:
    from db.models.conversation_turn import ConversationTurn


class SessionSentiment(str, enum.Enum):
    POSITIVE = "POSITIVE"
    NEUTRAL = "NEUTRAL"
    NEGATIVE = "NEGATIVE"


class ChatSession(Base, TimestampMixin):
    """
    Analyzable support conversation.

    Created once per staged row by import processing. Afterwards only batch
    enrichment mutates it: the enrichment fields, ``retry_count`` and
    ``batch_job_id``. ``batch_job_id`` is non-null only while a live batch
    job owns the session; ``retry_count`` only ever grows.
    """

    __tablename__ = "chat_sessions"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
    )
    import_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("session_imports.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    country: Mapped[str | None] = mapped_column(String(2), nullable=True)
    language: Mapped[str | None] = mapped_column(String(2), nullable=True)
    messages_sent: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sentiment_score: Mapped[float | None] = mapped_column(
        Float,
        nullable=True,
        comment="Score mapped from the feed's sentiment column",
    )
    escalated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    forwarded_hr: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    transcript_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    avg_response_time: Mapped[float | None] = mapped_column(Float, nullable=True)
    tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tokens_eur: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    initial_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Enrichment fields, written by batch reconciliation.
    category: Mapped[str | None] = mapped_column(String(64), nullable=True)
    sentiment: Mapped[SessionSentiment | None] = mapped_column(
        Enum(SessionSentiment, native_enum=False, length=16),
        nullable=True,
    )
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    enriched_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    batch_job_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("batch_jobs.id", ondelete="SET NULL"),
        nullable=True,
    )

    turns: Mapped[list["ConversationTurn"]] = relationship(
        "ConversationTurn",
        back_populates="session",
        order_by="ConversationTurn.order",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("ix_chat_sessions_tenant_id", "tenant_id"),
        Index("ix_chat_sessions_batch_job_id", "batch_job_id"),
        Index("ix_chat_sessions_enrichment", "enriched_at", "batch_job_id", "retry_count"),
    )

    @property
    def is_enriched(self) -> bool:
        return self.enriched_at is not None

    def __repr__(self) -> str:
        return (
            f"<ChatSession id={self.id} retry_count={self.retry_count} "
            f"batch_job_id={self.batch_job_id}>"
        )
