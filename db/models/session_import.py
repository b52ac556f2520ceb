"""
db/models/session_import.py

Staged CSV row captured for a tenant before promotion into a chat session.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import Any

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
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, JSONType, TimestampMixin


class ImportStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSED = "PROCESSED"
    ERROR = "ERROR"

    @property
    def is_terminal(self) -> bool:
        return self is not ImportStatus.PENDING


class SessionImport(Base, TimestampMixin):
    """
    One raw CSV row for a tenant, keyed by the feed's own session id.

    ``raw_fields`` keeps the untouched column values; the typed columns hold
    the normalized values computed at ingestion time. Re-ingesting the same
    ``(tenant_id, external_session_id)`` updates the row in place.
    """

    __tablename__ = "session_imports"

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
    external_session_id: Mapped[str] = mapped_column(String(255), nullable=False)
    raw_fields: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        comment="Positional CSV columns keyed by column name, unmodified",
    )

    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    country_code: Mapped[str | None] = mapped_column(String(2), nullable=True)
    language: Mapped[str | None] = mapped_column(String(2), nullable=True)
    messages_sent: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sentiment_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    escalated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    forwarded_hr: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    transcript_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    avg_response_time: Mapped[float | None] = mapped_column(Float, nullable=True)
    tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tokens_eur: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    category: Mapped[str | None] = mapped_column(String(64), nullable=True)
    initial_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    raw_transcript_content: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        comment="Fetched transcript body, kept so promotion never re-fetches",
    )
    status: Mapped[ImportStatus] = mapped_column(
        Enum(ImportStatus, native_enum=False, length=16),
        nullable=False,
        default=ImportStatus.PENDING,
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "tenant_id",
            "external_session_id",
            name="uq_session_imports_tenant_external_id",
        ),
        Index("ix_session_imports_status", "status"),
        Index("ix_session_imports_status_created_at", "status", "created_at"),
    )
