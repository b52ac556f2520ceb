"""
app/services/batch_enrichment_service.py

Submit / poll / reconcile cycle for session enrichment through a batch
inference provider.
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any

from sqlalchemy.orm import Session

from app.config import BatchEnrichmentSettings, get_batch_enrichment_settings, get_openai_settings
from app.connectors.batch_inference import (
    COMPLETED_PROVIDER_STATUSES,
    FAILED_PROVIDER_STATUSES,
    BatchApiError,
    BatchInferenceClient,
    MockBatchClient,
    OpenAIBatchClient,
)
from app.domain.batch_enrichment import (
    BatchOutputRecord,
    BatchPollSummary,
    BatchRequestItem,
    BatchStats,
    BatchSubmissionSummary,
    ReconciliationSummary,
    TokenUsage,
)
from app.repositories.batch_job_repository import BatchJobRepository
from app.repositories.chat_session_repository import ChatSessionRepository
from app.repositories.enrichment_repository import EnrichmentRepository
from db.models.batch_job import BatchJobStatus
from db.models.chat_session import SessionSentiment
from db.session import SessionLocal
from enrichment.prompt_builder import EnrichmentPromptBuilder
from enrichment.validator import EnrichmentOutputError, validate_enrichment_output

logger = logging.getLogger(__name__)

MISSING_OUTPUT_MESSAGE = "missing output record"

_ENRICHED = "enriched"
_FAILED = "failed"
_SKIPPED = "skipped"


def parse_output_file(text: str) -> list[BatchOutputRecord]:
    """
    Parse a provider output or error file (one JSON object per line).

    Lines that are not JSON objects are logged and dropped; their sessions
    are picked up by the missing-record sweep. Objects with malformed
    fields still produce a record, carrying an error, so only that session
    is failed.
    """

    records: list[BatchOutputRecord] = []
    for line_number, line in enumerate(text.splitlines(), start=1):
        if not line.strip():
            continue
        try:
            raw = json.loads(line)
        except json.JSONDecodeError as exc:
            logger.warning("Unparseable batch output line line=%s error=%s", line_number, exc)
            continue
        if not isinstance(raw, dict):
            logger.warning("Batch output line is not an object line=%s", line_number)
            continue
        records.append(_to_output_record(raw))
    return records


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value)
    return None


def _to_output_record(raw: dict[str, Any]) -> BatchOutputRecord:
    custom_id = raw.get("custom_id")
    response = raw.get("response")
    body = _as_dict(_as_dict(response).get("body"))
    usage = _as_dict(body.get("usage"))

    status_code = _as_dict(response).get("status_code")
    code = _as_int(status_code)

    error: str | None = None
    if raw.get("error"):
        err = raw["error"]
        if isinstance(err, dict):
            error = str(err.get("message") or err.get("code") or "provider error")
        else:
            error = str(err)
    elif response is not None and not isinstance(response, dict):
        error = "malformed output record: response is not an object"
    elif status_code is not None and code is None:
        error = f"malformed output record: status_code={status_code!r}"
    elif code is not None and code >= 400:
        error = f"provider status_code={code}"

    content: str | None = None
    choices = body.get("choices")
    if isinstance(choices, list) and choices:
        message_content = _as_dict(_as_dict(choices[0]).get("message")).get("content")
        content = message_content if isinstance(message_content, str) else None

    model = body.get("model")
    return BatchOutputRecord(
        custom_id=str(custom_id) if custom_id is not None else None,
        content=content,
        usage=TokenUsage(
            prompt_tokens=_as_int(usage.get("prompt_tokens")) or 0,
            completion_tokens=_as_int(usage.get("completion_tokens")) or 0,
            total_tokens=_as_int(usage.get("total_tokens")) or 0,
        ),
        model=model if isinstance(model, str) else None,
        error=error,
    )


class BatchEnrichmentService:
    """
    Drives the three enrichment phases. Each phase is safe to re-run after a
    crash because it is driven only by persisted batch job and session state.

    Sessions are claimed by setting ``batch_job_id`` and counting the attempt
    at submission. Reconciliation writes one audit record per claimed session
    and releases the claim, so a reconciled session is never touched twice.
    """

    def __init__(
        self,
        *,
        settings: BatchEnrichmentSettings,
        client: BatchInferenceClient,
        prompt_builder: EnrichmentPromptBuilder | None = None,
        session_factory: Callable[[], Session] = SessionLocal,
    ) -> None:
        self._settings = settings
        self._client = client
        self._prompt_builder = prompt_builder or EnrichmentPromptBuilder(
            model=settings.model,
            max_tokens=settings.max_tokens,
            temperature=settings.temperature,
        )
        self._session_factory = session_factory

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit_batch(self) -> BatchSubmissionSummary:
        max_retries = self._settings.max_session_retries

        with self._session_factory() as db:
            sessions = ChatSessionRepository(db)
            quarantined = sessions.count_quarantined(max_retries=max_retries)
            if quarantined:
                logger.warning(
                    "Sessions quarantined after reaching retry ceiling count=%s max_retries=%s",
                    quarantined,
                    max_retries,
                )

            eligible = sessions.lock_eligible(
                max_retries=max_retries,
                limit=self._settings.max_requests_per_batch,
            )
            if not eligible:
                db.rollback()
                logger.info("No sessions eligible for enrichment")
                return BatchSubmissionSummary(quarantined=quarantined)

            requests = [
                BatchRequestItem(
                    custom_id=str(chat_session.id),
                    body=self._prompt_builder.build_request_body(sessions.list_turns(chat_session.id)),
                )
                for chat_session in eligible
            ]

            try:
                submission = self._client.submit(requests)
            except BatchApiError:
                db.rollback()
                logger.exception("Batch submission rejected sessions=%s", len(requests))
                raise

            try:
                job = BatchJobRepository(db).create(
                    external_job_id=submission.external_job_id,
                    input_file_id=submission.input_file_id,
                    request_count=len(requests),
                )
                sessions.attach_to_batch([chat_session.id for chat_session in eligible], job.id)
                db.commit()
            except Exception:
                db.rollback()
                logger.error(
                    "Batch accepted by provider but not recorded external_job_id=%s",
                    submission.external_job_id,
                )
                raise

            logger.info(
                "Batch job submitted batch_job_id=%s external_job_id=%s sessions=%s",
                job.id,
                submission.external_job_id,
                len(requests),
            )
            return BatchSubmissionSummary(
                batch_job_id=job.id,
                external_job_id=submission.external_job_id,
                submitted=len(requests),
                quarantined=quarantined,
            )

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    def poll_batches(self) -> BatchPollSummary:
        with self._session_factory() as db:
            submitted = BatchJobRepository(db).list_by_status(BatchJobStatus.SUBMITTED)
            jobs = [(job.id, job.external_job_id) for job in submitted]

        completed = failed = pending = errors = 0
        for batch_job_id, external_job_id in jobs:
            try:
                result = self._client.poll(external_job_id)
            except BatchApiError as exc:
                errors += 1
                logger.warning("Batch poll failed batch_job_id=%s error=%s", batch_job_id, exc)
                continue

            now = datetime.now(timezone.utc)
            with self._session_factory() as db:
                repository = BatchJobRepository(db)
                if result.provider_status in COMPLETED_PROVIDER_STATUSES:
                    moved = repository.transition(
                        batch_job_id,
                        current=BatchJobStatus.SUBMITTED,
                        target=BatchJobStatus.COMPLETED,
                        output_ref=result.output_ref,
                        error_ref=result.error_ref,
                        completed_at=now,
                    )
                    db.commit()
                    if moved:
                        completed += 1
                        logger.info("Batch job completed batch_job_id=%s", batch_job_id)
                elif result.provider_status in FAILED_PROVIDER_STATUSES:
                    moved = repository.transition(
                        batch_job_id,
                        current=BatchJobStatus.SUBMITTED,
                        target=BatchJobStatus.FAILED,
                        error_message=result.error_message or result.provider_status,
                        completed_at=now,
                    )
                    released = ChatSessionRepository(db).release_batch(batch_job_id) if moved else 0
                    db.commit()
                    if moved:
                        failed += 1
                        logger.warning(
                            "Batch job failed batch_job_id=%s provider_status=%s released_sessions=%s",
                            batch_job_id,
                            result.provider_status,
                            released,
                        )
                else:
                    pending += 1

        return BatchPollSummary(
            polled=len(jobs),
            completed=completed,
            failed=failed,
            pending=pending,
            errors=errors,
        )

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def reconcile_batches(self) -> ReconciliationSummary:
        with self._session_factory() as db:
            job_ids = [job.id for job in BatchJobRepository(db).list_by_status(BatchJobStatus.COMPLETED)]

        jobs_processed = enriched = failed = skipped = 0
        for batch_job_id in job_ids:
            try:
                counts, finished = self.reconcile_job(batch_job_id)
            except BatchApiError as exc:
                logger.warning("Batch output unavailable batch_job_id=%s error=%s", batch_job_id, exc)
                continue
            except Exception:  # noqa: BLE001
                # The job stays COMPLETED and is retried on the next run.
                logger.exception("Batch job reconciliation failed batch_job_id=%s", batch_job_id)
                continue
            enriched += counts[_ENRICHED]
            failed += counts[_FAILED]
            skipped += counts[_SKIPPED]
            jobs_processed += int(finished)

        return ReconciliationSummary(
            jobs_processed=jobs_processed,
            sessions_enriched=enriched,
            sessions_failed=failed,
            sessions_skipped=skipped,
        )

    def reconcile_job(self, batch_job_id: uuid.UUID) -> tuple[dict[str, int], bool]:
        """
        Apply every output record of one COMPLETED job.

        Returns per-outcome session counts and whether the job reached
        PROCESSED. Raises ``BatchApiError`` when an output file cannot be
        downloaded; the job stays COMPLETED and is retried on the next run.
        """

        with self._session_factory() as db:
            job = BatchJobRepository(db).get(batch_job_id)
            if job is None or job.status is not BatchJobStatus.COMPLETED:
                return {_ENRICHED: 0, _FAILED: 0, _SKIPPED: 0}, False
            output_ref, error_ref = job.output_ref, job.error_ref

        records: list[BatchOutputRecord] = []
        for ref in (output_ref, error_ref):
            if ref:
                records.extend(parse_output_file(self._client.fetch_output(ref)))

        counts = {_ENRICHED: 0, _FAILED: 0, _SKIPPED: 0}
        for record in records:
            try:
                counts[self._reconcile_record(batch_job_id, record)] += 1
            except Exception:  # noqa: BLE001
                # The claim is kept, so the missing-record sweep below fails
                # and releases the session.
                logger.exception(
                    "Batch output record could not be applied batch_job_id=%s custom_id=%s",
                    batch_job_id,
                    record.custom_id,
                )

        counts[_FAILED] += self._release_unanswered(batch_job_id)

        with self._session_factory() as db:
            if ChatSessionRepository(db).list_claimed_ids(batch_job_id):
                logger.warning("Batch job still has claimed sessions batch_job_id=%s", batch_job_id)
                return counts, False
            finished = BatchJobRepository(db).transition(
                batch_job_id,
                current=BatchJobStatus.COMPLETED,
                target=BatchJobStatus.PROCESSED,
                processed_at=datetime.now(timezone.utc),
            )
            db.commit()

        logger.info(
            "Batch job reconciled batch_job_id=%s enriched=%s failed=%s skipped=%s",
            batch_job_id,
            counts[_ENRICHED],
            counts[_FAILED],
            counts[_SKIPPED],
        )
        return counts, finished

    def _reconcile_record(self, batch_job_id: uuid.UUID, record: BatchOutputRecord) -> str:
        try:
            session_id = uuid.UUID(record.custom_id or "")
        except ValueError:
            logger.warning("Batch output record with unknown custom_id=%r", record.custom_id)
            return _SKIPPED

        with self._session_factory() as db:
            sessions = ChatSessionRepository(db)
            audits = EnrichmentRepository(db)

            chat_session = sessions.lock_claimed(session_id, batch_job_id)
            if chat_session is None:
                # Already reconciled, or claimed by a different job.
                db.rollback()
                return _SKIPPED

            model = record.model or self._settings.model
            error = record.error
            payload = None
            if error is None:
                try:
                    payload = validate_enrichment_output(record.content or "")
                except EnrichmentOutputError as exc:
                    error = str(exc)

            if payload is None:
                audits.add_audit(
                    session_id=session_id,
                    batch_job_id=batch_job_id,
                    success=False,
                    usage=record.usage,
                    model=model,
                    error_message=error,
                )
                sessions.release(chat_session)
                db.commit()
                logger.warning(
                    "Session enrichment failed session_id=%s batch_job_id=%s retry_count=%s error=%s",
                    session_id,
                    batch_job_id,
                    chat_session.retry_count,
                    error,
                )
                return _FAILED

            sessions.apply_enrichment(
                chat_session,
                sentiment=SessionSentiment[payload.sentiment.upper()],
                category=payload.category,
                summary=payload.summary,
                language=payload.language,
                escalated=payload.escalated,
                forwarded_hr=payload.forwarded_hr,
            )
            audits.replace_session_questions(session_id, payload.question_list())
            audits.add_audit(
                session_id=session_id,
                batch_job_id=batch_job_id,
                success=True,
                usage=record.usage,
                model=model,
            )
            db.commit()
            return _ENRICHED

    def _release_unanswered(self, batch_job_id: uuid.UUID) -> int:
        with self._session_factory() as db:
            leftover = ChatSessionRepository(db).list_claimed_ids(batch_job_id)

        released = 0
        for session_id in leftover:
            with self._session_factory() as db:
                sessions = ChatSessionRepository(db)
                chat_session = sessions.lock_claimed(session_id, batch_job_id)
                if chat_session is None:
                    db.rollback()
                    continue
                EnrichmentRepository(db).add_audit(
                    session_id=session_id,
                    batch_job_id=batch_job_id,
                    success=False,
                    model=self._settings.model,
                    error_message=MISSING_OUTPUT_MESSAGE,
                )
                sessions.release(chat_session)
                db.commit()
                released += 1

        if released:
            logger.warning(
                "Sessions without output record released batch_job_id=%s count=%s",
                batch_job_id,
                released,
            )
        return released

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def get_batch_stats(self) -> BatchStats:
        max_retries = self._settings.max_session_retries
        with self._session_factory() as db:
            sessions = ChatSessionRepository(db)
            return BatchStats(
                jobs_by_status=BatchJobRepository(db).count_by_status(),
                eligible_sessions=sessions.count_eligible(max_retries=max_retries),
                quarantined_sessions=sessions.count_quarantined(max_retries=max_retries),
                in_flight_sessions=sessions.count_in_flight(),
            )


@lru_cache(maxsize=1)
def get_batch_inference_client() -> BatchInferenceClient:
    """
    Return the configured batch provider; the mock when ``OPENAI_MOCK_MODE`` is set.
    """

    openai_settings = get_openai_settings()
    settings = get_batch_enrichment_settings()
    if openai_settings.mock_mode:
        logger.info("Using mock batch inference client")
        return MockBatchClient(model=settings.model)
    return OpenAIBatchClient(
        api_key=openai_settings.api_key,
        base_url=openai_settings.base_url,
        completion_window=settings.completion_window,
        timeout_seconds=openai_settings.timeout_seconds,
        max_retries=openai_settings.max_retries,
    )


@lru_cache(maxsize=1)
def get_batch_enrichment_service() -> BatchEnrichmentService:
    return BatchEnrichmentService(
        settings=get_batch_enrichment_settings(),
        client=get_batch_inference_client(),
    )
