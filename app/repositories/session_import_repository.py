"""
app/repositories/session_import_repository.py

Staging-table persistence: idempotent upserts and promotion status flips.
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from app.domain.chat_import import ParsedSessionRow, StagingResult
from app.repositories.upsert import dialect_insert
from db.models.session_import import ImportStatus, SessionImport
from db.models.tenant import Tenant, TenantStatus

_UPSERT_KEY = ("tenant_id", "external_session_id")

# Columns refreshed in place when a row is re-imported.
_UPDATABLE_COLUMNS: tuple[str, ...] = (
    "raw_fields",
    "start_time",
    "end_time",
    "ip_address",
    "country_code",
    "language",
    "messages_sent",
    "sentiment_score",
    "escalated",
    "forwarded_hr",
    "transcript_url",
    "avg_response_time",
    "tokens",
    "tokens_eur",
    "category",
    "initial_message",
)


class SessionImportRepository:
    """
    Repository for staged CSV rows. Callers own the transaction.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, import_id: uuid.UUID) -> SessionImport | None:
        return self._session.get(SessionImport, import_id)

    def upsert_rows(self, tenant_id: uuid.UUID, rows: Sequence[ParsedSessionRow]) -> StagingResult:
        """
        Insert new rows and overwrite existing ones keyed by
        ``(tenant_id, external_session_id)``. Duplicate ids inside one feed
        collapse to the last occurrence.
        """

        if not rows:
            return StagingResult()

        latest: dict[str, ParsedSessionRow] = {}
        for row in rows:
            latest[row.external_session_id] = row

        existing = set(
            self._session.scalars(
                select(SessionImport.external_session_id).where(
                    SessionImport.tenant_id == tenant_id,
                    SessionImport.external_session_id.in_(list(latest)),
                )
            ).all()
        )

        payloads = [self._payload(tenant_id, row) for row in latest.values()]
        stmt = dialect_insert(self._session, SessionImport).values(payloads)
        stmt = stmt.on_conflict_do_update(
            index_elements=list(_UPSERT_KEY),
            set_={
                **{column: getattr(stmt.excluded, column) for column in _UPDATABLE_COLUMNS},
                "updated_at": func.now(),
            },
        )
        self._session.execute(stmt)

        updated = len(existing)
        return StagingResult(inserted=len(latest) - updated, updated=updated)

    def list_pending_ids(self, *, limit: int) -> list[uuid.UUID]:
        """
        Oldest PENDING rows belonging to ACTIVE tenants.
        """

        stmt = (
            select(SessionImport.id)
            .join(Tenant, Tenant.id == SessionImport.tenant_id)
            .where(
                SessionImport.status == ImportStatus.PENDING,
                Tenant.status == TenantStatus.ACTIVE,
            )
            .order_by(SessionImport.created_at, SessionImport.id)
            .limit(limit)
        )
        return list(self._session.scalars(stmt).all())

    def lock_pending(self, import_id: uuid.UUID) -> SessionImport | None:
        """
        Row-lock one PENDING import; ``None`` when another worker holds or
        already retired it.
        """

        stmt = (
            select(SessionImport)
            .where(
                SessionImport.id == import_id,
                SessionImport.status == ImportStatus.PENDING,
            )
            .with_for_update(skip_locked=True)
        )
        return self._session.scalars(stmt).first()

    def store_transcript(self, import_id: uuid.UUID, content: str) -> None:
        self._session.execute(
            update(SessionImport)
            .where(SessionImport.id == import_id)
            .values(raw_transcript_content=content, updated_at=func.now())
            .execution_options(synchronize_session=False)
        )

    def mark_retired(
        self,
        import_id: uuid.UUID,
        status: ImportStatus,
        *,
        error_message: str | None = None,
    ) -> bool:
        """
        PENDING -> PROCESSED | ERROR. Returns False when the row was not
        PENDING any more.
        """

        if not status.is_terminal:
            raise ValueError(f"Cannot retire an import into {status.value}")

        result = self._session.execute(
            update(SessionImport)
            .where(
                SessionImport.id == import_id,
                SessionImport.status == ImportStatus.PENDING,
            )
            .values(
                status=status,
                error_message=error_message,
                processed_at=datetime.now(timezone.utc),
                updated_at=func.now(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def count_by_status(self) -> dict[str, int]:
        stmt = select(SessionImport.status, func.count(SessionImport.id)).group_by(SessionImport.status)
        counts = {status.value: 0 for status in ImportStatus}
        for status, count in self._session.execute(stmt).all():
            counts[ImportStatus(status).value] = int(count)
        return counts

    @staticmethod
    def _payload(tenant_id: uuid.UUID, row: ParsedSessionRow) -> dict[str, Any]:
        return {
            "id": uuid.uuid4(),
            "tenant_id": tenant_id,
            "external_session_id": row.external_session_id,
            "raw_fields": row.raw_fields,
            "start_time": row.start_time,
            "end_time": row.end_time,
            "ip_address": row.ip_address,
            "country_code": row.country_code,
            "language": row.language,
            "messages_sent": row.messages_sent,
            "sentiment_score": row.sentiment_score,
            "escalated": row.escalated,
            "forwarded_hr": row.forwarded_hr,
            "transcript_url": row.transcript_url,
            "avg_response_time": row.avg_response_time,
            "tokens": row.tokens,
            "tokens_eur": row.tokens_eur,
            "category": row.category,
            "initial_message": row.initial_message,
            "status": ImportStatus.PENDING,
        }
