"""
tests/test_batch_job_status.py

Forward-only batch job lifecycle.

Coverage
--------
- Allowed and forbidden transitions on BatchJobStatus
- Repository.transition is a conditional update guarded by the current status
- Backwards or skipping transitions raise InvalidStatusTransitionError
- count_by_status reports every status, including empty ones
"""

from __future__ import annotations

import pytest

from app.repositories.batch_job_repository import BatchJobRepository
from db.models.batch_job import BatchJobStatus, InvalidStatusTransitionError


@pytest.mark.parametrize(
    ("current", "target", "allowed"),
    [
        (BatchJobStatus.SUBMITTED, BatchJobStatus.COMPLETED, True),
        (BatchJobStatus.SUBMITTED, BatchJobStatus.FAILED, True),
        (BatchJobStatus.COMPLETED, BatchJobStatus.PROCESSED, True),
        (BatchJobStatus.SUBMITTED, BatchJobStatus.PROCESSED, False),
        (BatchJobStatus.COMPLETED, BatchJobStatus.SUBMITTED, False),
        (BatchJobStatus.COMPLETED, BatchJobStatus.FAILED, False),
        (BatchJobStatus.PROCESSED, BatchJobStatus.COMPLETED, False),
        (BatchJobStatus.FAILED, BatchJobStatus.SUBMITTED, False),
    ],
)
def test_can_transition_to(current, target, allowed) -> None:
    assert current.can_transition_to(target) is allowed


def test_terminal_statuses() -> None:
    assert BatchJobStatus.FAILED.is_terminal
    assert BatchJobStatus.PROCESSED.is_terminal
    assert not BatchJobStatus.SUBMITTED.is_terminal


class TestRepositoryTransition:
    def _create(self, session_factory):
        with session_factory() as db:
            job = BatchJobRepository(db).create(external_job_id="batch_abc", input_file_id="file_1", request_count=3)
            db.commit()
            return job.id

    def test_forward_transition_updates_row(self, session_factory) -> None:
        job_id = self._create(session_factory)
        with session_factory() as db:
            moved = BatchJobRepository(db).transition(
                job_id,
                current=BatchJobStatus.SUBMITTED,
                target=BatchJobStatus.COMPLETED,
                output_ref="file_out",
            )
            db.commit()
        assert moved is True

        with session_factory() as db:
            job = BatchJobRepository(db).get(job_id)
            assert job.status is BatchJobStatus.COMPLETED
            assert job.output_ref == "file_out"

    def test_stale_current_status_returns_false(self, session_factory) -> None:
        job_id = self._create(session_factory)
        with session_factory() as db:
            moved = BatchJobRepository(db).transition(
                job_id,
                current=BatchJobStatus.COMPLETED,
                target=BatchJobStatus.PROCESSED,
            )
            db.commit()
        assert moved is False

        with session_factory() as db:
            assert BatchJobRepository(db).get(job_id).status is BatchJobStatus.SUBMITTED

    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (BatchJobStatus.COMPLETED, BatchJobStatus.SUBMITTED),
            (BatchJobStatus.PROCESSED, BatchJobStatus.COMPLETED),
            (BatchJobStatus.SUBMITTED, BatchJobStatus.PROCESSED),
        ],
    )
    def test_invalid_transition_raises(self, session_factory, current, target) -> None:
        job_id = self._create(session_factory)
        with session_factory() as db:
            with pytest.raises(InvalidStatusTransitionError):
                BatchJobRepository(db).transition(job_id, current=current, target=target)

    def test_count_by_status(self, session_factory) -> None:
        self._create(session_factory)
        with session_factory() as db:
            counts = BatchJobRepository(db).count_by_status()
        assert counts == {"SUBMITTED": 1, "COMPLETED": 0, "FAILED": 0, "PROCESSED": 0}
