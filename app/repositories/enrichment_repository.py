"""
app/repositories/enrichment_repository.py

Questions, session-question links, and enrichment audit records.
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from app.domain.batch_enrichment import TokenUsage
from app.repositories.upsert import dialect_insert
from db.models.enrichment_audit import EnrichmentAuditRecord
from db.models.question import Question, SessionQuestion

_MAX_QUESTION_LENGTH = 1000


class EnrichmentRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def replace_session_questions(self, session_id: uuid.UUID, questions: Sequence[str]) -> int:
        """
        Make ``questions`` the complete, ordered question set of a session.

        Re-applying the same list leaves exactly one link per question.
        """

        self._session.execute(delete(SessionQuestion).where(SessionQuestion.session_id == session_id))

        linked: set[uuid.UUID] = set()
        for order, text in enumerate(questions):
            question_id = self._get_or_create_question(text[:_MAX_QUESTION_LENGTH])
            if question_id in linked:
                continue
            linked.add(question_id)
            self._session.add(
                SessionQuestion(
                    id=uuid.uuid4(),
                    session_id=session_id,
                    question_id=question_id,
                    order=order,
                )
            )
        self._session.flush()
        return len(linked)

    def _get_or_create_question(self, content: str) -> uuid.UUID:
        stmt = (
            dialect_insert(self._session, Question)
            .values(id=uuid.uuid4(), content=content)
            .on_conflict_do_nothing(index_elements=["content"])
        )
        self._session.execute(stmt)
        return self._session.scalars(select(Question.id).where(Question.content == content)).one()

    def add_audit(
        self,
        *,
        session_id: uuid.UUID,
        batch_job_id: uuid.UUID | None,
        success: bool,
        usage: TokenUsage | None = None,
        model: str | None = None,
        error_message: str | None = None,
    ) -> EnrichmentAuditRecord:
        usage = usage or TokenUsage()
        record = EnrichmentAuditRecord(
            id=uuid.uuid4(),
            session_id=session_id,
            batch_job_id=batch_job_id,
            success=success,
            model=model,
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
            total_tokens=usage.total_tokens,
            error_message=error_message,
        )
        self._session.add(record)
        self._session.flush()
        return record

    def list_audits(self, session_id: uuid.UUID) -> list[EnrichmentAuditRecord]:
        stmt = (
            select(EnrichmentAuditRecord)
            .where(EnrichmentAuditRecord.session_id == session_id)
            .order_by(EnrichmentAuditRecord.created_at)
        )
        return list(self._session.scalars(stmt).all())
