"""
db/models/tenant.py

Tenant model: one customer account that owns a CSV feed and its sessions.
"""

from __future__ import annotations

import enum
import uuid

from sqlalchemy import Enum, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, TimestampMixin


class TenantStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class Tenant(Base, TimestampMixin):
    """
    Represents a customer account with an externally hosted CSV export.

    Only ACTIVE tenants with a configured ``csv_url`` are polled. The feed
    credentials are reused for transcript downloads from the same host.
    """

    __tablename__ = "tenants"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    csv_url: Mapped[str | None] = mapped_column(
        String(2048),
        nullable=True,
        comment="HTTP(S) location of the session CSV export",
    )
    csv_username: Mapped[str | None] = mapped_column(String(255), nullable=True)
    csv_password: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[TenantStatus] = mapped_column(
        Enum(TenantStatus, native_enum=False, length=16),
        nullable=False,
        default=TenantStatus.ACTIVE,
    )

    __table_args__ = (
        Index("ix_tenants_status", "status"),
        Index("ix_tenants_created_at", "created_at"),
    )

    @property
    def has_credentials(self) -> bool:
        return bool(self.csv_username and self.csv_password)

    def __repr__(self) -> str:
        return f"<Tenant id={self.id} name={self.name!r} status={self.status.value}>"
