"""
db/models/batch_job.py

One submission to the external batch inference API.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, Enum, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, TimestampMixin


class BatchJobStatus(str, enum.Enum):
    """
    Lifecycle of a batch job. Transitions only move forward:

        SUBMITTED -> COMPLETED -> PROCESSED
        SUBMITTED -> FAILED
    """

    SUBMITTED = "SUBMITTED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    PROCESSED = "PROCESSED"

    @property
    def is_terminal(self) -> bool:
        return not _ALLOWED_TRANSITIONS[self]

    def can_transition_to(self, target: "BatchJobStatus") -> bool:
        return target in _ALLOWED_TRANSITIONS[self]


_ALLOWED_TRANSITIONS: dict[BatchJobStatus, frozenset[BatchJobStatus]] = {
    BatchJobStatus.SUBMITTED: frozenset({BatchJobStatus.COMPLETED, BatchJobStatus.FAILED}),
    BatchJobStatus.COMPLETED: frozenset({BatchJobStatus.PROCESSED}),
    BatchJobStatus.FAILED: frozenset(),
    BatchJobStatus.PROCESSED: frozenset(),
}


class InvalidStatusTransitionError(ValueError):
    """
    Raised when a batch job status change would move backwards or skip a state.
    """

    def __init__(self, current: BatchJobStatus, target: BatchJobStatus) -> None:
        super().__init__(f"Invalid batch job transition {current.value} -> {target.value}")
        self.current = current
        self.target = target


class BatchJob(Base, TimestampMixin):
    """
    Audit trail and ownership anchor for one provider batch.

    Member sessions point at the job through ``chat_sessions.batch_job_id``
    until reconciliation releases them. Rows are never deleted.
    """

    __tablename__ = "batch_jobs"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    external_job_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
        comment="Provider batch identifier",
    )
    input_file_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[BatchJobStatus] = mapped_column(
        Enum(BatchJobStatus, native_enum=False, length=16),
        nullable=False,
        default=BatchJobStatus.SUBMITTED,
    )
    request_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    output_ref: Mapped[str | None] = mapped_column(String(255), nullable=True)
    error_ref: Mapped[str | None] = mapped_column(String(255), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_batch_jobs_status", "status"),
        Index("ix_batch_jobs_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<BatchJob id={self.id} external_job_id={self.external_job_id!r} status={self.status.value}>"
