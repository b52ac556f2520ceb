"""
app/repositories/batch_job_repository.py

Batch job persistence with forward-only status transitions.
"""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from db.models.batch_job import BatchJob, BatchJobStatus, InvalidStatusTransitionError


class BatchJobRepository:
    """
    Repository for batch jobs. Rows are never deleted.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, batch_job_id: uuid.UUID) -> BatchJob | None:
        return self._session.get(BatchJob, batch_job_id)

    def create(self, *, external_job_id: str, input_file_id: str | None, request_count: int) -> BatchJob:
        job = BatchJob(
            id=uuid.uuid4(),
            external_job_id=external_job_id,
            input_file_id=input_file_id,
            status=BatchJobStatus.SUBMITTED,
            request_count=request_count,
        )
        self._session.add(job)
        self._session.flush()
        return job

    def list_by_status(self, status: BatchJobStatus, *, limit: int | None = None) -> list[BatchJob]:
        stmt = select(BatchJob).where(BatchJob.status == status).order_by(BatchJob.created_at, BatchJob.id)
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self._session.scalars(stmt).all())

    def transition(
        self,
        batch_job_id: uuid.UUID,
        *,
        current: BatchJobStatus,
        target: BatchJobStatus,
        **values: Any,
    ) -> bool:
        """
        Move a job from ``current`` to ``target`` with one conditional UPDATE.

        Raises ``InvalidStatusTransitionError`` for a backwards or skipping
        transition. Returns False when the row was no longer in ``current``
        (another worker got there first).
        """

        if not current.can_transition_to(target):
            raise InvalidStatusTransitionError(current, target)

        result = self._session.execute(
            update(BatchJob)
            .where(BatchJob.id == batch_job_id, BatchJob.status == current)
            .values(status=target, updated_at=func.now(), **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def count_by_status(self) -> dict[str, int]:
        stmt = select(BatchJob.status, func.count(BatchJob.id)).group_by(BatchJob.status)
        counts = {status.value: 0 for status in BatchJobStatus}
        for status, count in self._session.execute(stmt).all():
            counts[BatchJobStatus(status).value] = int(count)
        return counts
