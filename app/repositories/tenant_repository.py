"""
app/repositories/tenant_repository.py

Read access to tenants and their CSV feed configuration.
"""

from __future__ import annotations

import uuid

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from db.models.tenant import Tenant, TenantStatus


class TenantRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, tenant_id: uuid.UUID) -> Tenant | None:
        return self._session.get(Tenant, tenant_id)

    def list_importable(self, *, limit: int, offset: int = 0) -> list[Tenant]:
        """
        One page of ACTIVE tenants with a configured feed URL, stable order.
        """

        stmt = (
            select(Tenant)
            .where(
                Tenant.status == TenantStatus.ACTIVE,
                Tenant.csv_url.is_not(None),
                Tenant.csv_url != "",
            )
            .order_by(Tenant.created_at, Tenant.id)
            .limit(limit)
            .offset(offset)
        )
        return list(self._session.scalars(stmt).all())

    def count_importable(self) -> int:
        stmt = select(func.count(Tenant.id)).where(
            Tenant.status == TenantStatus.ACTIVE,
            Tenant.csv_url.is_not(None),
            Tenant.csv_url != "",
        )
        return int(self._session.scalar(stmt) or 0)
