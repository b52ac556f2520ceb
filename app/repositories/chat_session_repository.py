"""
app/repositories/chat_session_repository.py

Persistence for chat sessions, their turns, and batch ownership claims.
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from datetime import datetime, timezone

from sqlalchemy import exists, func, select, update
from sqlalchemy.orm import Session

from app.domain.chat_import import ParsedTurn
from db.models.chat_session import ChatSession, SessionSentiment
from db.models.conversation_turn import ConversationTurn, TurnRole
from db.models.session_import import SessionImport
from db.models.tenant import Tenant, TenantStatus


class BatchClaimConflictError(RuntimeError):
    """
    Raised when fewer sessions than expected could be attached to a batch.
    """

    def __init__(self, expected: int, claimed: int) -> None:
        super().__init__(f"Expected to claim {expected} sessions, claimed {claimed}")
        self.expected = expected
        self.claimed = claimed


class ChatSessionRepository:
    """
    Repository for canonical chat sessions. Callers own the transaction.

    Batch ownership changes are single conditional UPDATEs so two workers
    can never both attach the same session to a live batch.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, session_id: uuid.UUID) -> ChatSession | None:
        return self._session.get(ChatSession, session_id)

    def get_by_import(self, import_id: uuid.UUID) -> ChatSession | None:
        return self._session.scalars(select(ChatSession).where(ChatSession.import_id == import_id)).first()

    # ------------------------------------------------------------------
    # Promotion
    # ------------------------------------------------------------------

    def create_from_import(self, staged: SessionImport) -> ChatSession:
        chat_session = ChatSession(
            id=uuid.uuid4(),
            tenant_id=staged.tenant_id,
            import_id=staged.id,
            start_time=staged.start_time,
            end_time=staged.end_time,
            ip_address=staged.ip_address,
            country=staged.country_code,
            language=staged.language,
            messages_sent=staged.messages_sent,
            sentiment_score=staged.sentiment_score,
            escalated=staged.escalated,
            forwarded_hr=staged.forwarded_hr,
            transcript_url=staged.transcript_url,
            avg_response_time=staged.avg_response_time,
            tokens=staged.tokens,
            tokens_eur=staged.tokens_eur,
            initial_message=staged.initial_message,
            category=staged.category,
            retry_count=0,
        )
        self._session.add(chat_session)
        self._session.flush()
        return chat_session

    def add_turns(self, session_id: uuid.UUID, turns: Sequence[ParsedTurn]) -> int:
        for turn in turns:
            self._session.add(
                ConversationTurn(
                    id=uuid.uuid4(),
                    session_id=session_id,
                    role=TurnRole(turn.role),
                    content=turn.content,
                    order=turn.order,
                    timestamp=turn.timestamp,
                )
            )
        self._session.flush()
        return len(turns)

    def list_turns(self, session_id: uuid.UUID) -> list[ConversationTurn]:
        stmt = (
            select(ConversationTurn)
            .where(ConversationTurn.session_id == session_id)
            .order_by(ConversationTurn.order)
        )
        return list(self._session.scalars(stmt).all())

    # ------------------------------------------------------------------
    # Batch selection and ownership
    # ------------------------------------------------------------------

    def _eligibility_filters(self, max_retries: int) -> tuple:
        has_turns = exists().where(ConversationTurn.session_id == ChatSession.id)
        return (
            ChatSession.enriched_at.is_(None),
            ChatSession.batch_job_id.is_(None),
            ChatSession.retry_count < max_retries,
            has_turns,
            Tenant.status == TenantStatus.ACTIVE,
        )

    def lock_eligible(self, *, max_retries: int, limit: int) -> list[ChatSession]:
        """
        Row-lock up to ``limit`` unclaimed, unenriched sessions with
        transcript turns and ``retry_count < max_retries``. Rows locked by
        another worker are skipped.
        """

        stmt = (
            select(ChatSession)
            .join(Tenant, Tenant.id == ChatSession.tenant_id)
            .where(*self._eligibility_filters(max_retries))
            .order_by(ChatSession.created_at, ChatSession.id)
            .limit(limit)
            .with_for_update(skip_locked=True, of=ChatSession)
        )
        return list(self._session.scalars(stmt).all())

    def attach_to_batch(self, session_ids: Sequence[uuid.UUID], batch_job_id: uuid.UUID) -> int:
        """
        Claim sessions for a batch and count the attempt. Raises
        ``BatchClaimConflictError`` when any session was already claimed.
        """

        if not session_ids:
            return 0
        result = self._session.execute(
            update(ChatSession)
            .where(
                ChatSession.id.in_(list(session_ids)),
                ChatSession.batch_job_id.is_(None),
            )
            .values(
                batch_job_id=batch_job_id,
                retry_count=ChatSession.retry_count + 1,
                updated_at=func.now(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != len(session_ids):
            raise BatchClaimConflictError(expected=len(session_ids), claimed=result.rowcount)
        return result.rowcount

    def release_batch(self, batch_job_id: uuid.UUID) -> int:
        result = self._session.execute(
            update(ChatSession)
            .where(ChatSession.batch_job_id == batch_job_id)
            .values(batch_job_id=None, updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def lock_claimed(self, session_id: uuid.UUID, batch_job_id: uuid.UUID) -> ChatSession | None:
        """
        Row-lock a session only while ``batch_job_id`` still owns it.
        """

        stmt = (
            select(ChatSession)
            .where(
                ChatSession.id == session_id,
                ChatSession.batch_job_id == batch_job_id,
            )
            .with_for_update()
        )
        return self._session.scalars(stmt).first()

    def list_claimed_ids(self, batch_job_id: uuid.UUID) -> list[uuid.UUID]:
        stmt = select(ChatSession.id).where(ChatSession.batch_job_id == batch_job_id)
        return list(self._session.scalars(stmt).all())

    def apply_enrichment(
        self,
        chat_session: ChatSession,
        *,
        sentiment: SessionSentiment,
        category: str,
        summary: str,
        language: str | None,
        escalated: bool,
        forwarded_hr: bool,
    ) -> None:
        chat_session.sentiment = sentiment
        chat_session.category = category
        chat_session.summary = summary
        if language:
            chat_session.language = language
        chat_session.escalated = escalated
        chat_session.forwarded_hr = forwarded_hr
        chat_session.enriched_at = datetime.now(timezone.utc)
        chat_session.batch_job_id = None

    def release(self, chat_session: ChatSession) -> None:
        chat_session.batch_job_id = None

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def count_eligible(self, *, max_retries: int) -> int:
        stmt = (
            select(func.count(ChatSession.id))
            .join(Tenant, Tenant.id == ChatSession.tenant_id)
            .where(*self._eligibility_filters(max_retries))
        )
        return int(self._session.scalar(stmt) or 0)

    def count_quarantined(self, *, max_retries: int) -> int:
        stmt = select(func.count(ChatSession.id)).where(
            ChatSession.enriched_at.is_(None),
            ChatSession.batch_job_id.is_(None),
            ChatSession.retry_count >= max_retries,
        )
        return int(self._session.scalar(stmt) or 0)

    def count_in_flight(self) -> int:
        stmt = select(func.count(ChatSession.id)).where(ChatSession.batch_job_id.is_not(None))
        return int(self._session.scalar(stmt) or 0)
