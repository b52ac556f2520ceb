"""
app/services/import_processing_service.py

Promotes PENDING staged rows into chat sessions with parsed transcript turns.
"""

from __future__ import annotations

import enum
import logging
import uuid
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from functools import lru_cache

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import ImportProcessingSettings, get_external_http_settings, get_import_processing_settings
from app.connectors.transcript_connector import TranscriptConnector
from app.domain.chat_import import ImportProcessingSummary
from app.mappers.transcript_parser import parse_transcript
from app.repositories.chat_session_repository import ChatSessionRepository
from app.repositories.session_import_repository import SessionImportRepository
from app.services.csv_import_service import chunked
from db.models.session_import import ImportStatus
from db.models.tenant import Tenant
from db.session import SessionLocal

logger = logging.getLogger(__name__)


class PromotionOutcome(str, enum.Enum):
    PROCESSED = "PROCESSED"
    DEGRADED = "DEGRADED"
    SKIPPED = "SKIPPED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class _TranscriptSource:
    url: str | None
    content: str | None
    username: str | None
    password: str | None


class ImportProcessingService:
    """
    Converts staged rows into ``ChatSession`` + ``ConversationTurn`` rows.

    Each row is promoted in its own transaction: the row is locked, the
    session and its turns are created, and the row is retired as PROCESSED
    (or ERROR when the transcript could not be fetched). Transcript fetches
    happen before the lock is taken.
    """

    def __init__(
        self,
        *,
        settings: ImportProcessingSettings,
        transcript_connector: TranscriptConnector,
        session_factory: Callable[[], Session] = SessionLocal,
        max_pages: int = 100,
    ) -> None:
        self._settings = settings
        self._transcript_connector = transcript_connector
        self._session_factory = session_factory
        self._max_pages = max(1, max_pages)

    def run(self) -> ImportProcessingSummary:
        counts = {outcome: 0 for outcome in PromotionOutcome}
        claimed = 0

        for page_number in range(1, self._max_pages + 1):
            with self._session_factory() as db:
                import_ids = SessionImportRepository(db).list_pending_ids(limit=self._settings.batch_size)
            if not import_ids:
                break

            claimed += len(import_ids)
            page_outcomes: list[PromotionOutcome] = []
            for chunk in chunked(import_ids, self._settings.concurrency):
                with ThreadPoolExecutor(max_workers=len(chunk), thread_name_prefix="import-promote") as pool:
                    page_outcomes.extend(pool.map(self.promote, chunk))

            for outcome in page_outcomes:
                counts[outcome] += 1
            logger.info(
                "Import processing page finished page=%s rows=%s processed=%s degraded=%s failed=%s",
                page_number,
                len(import_ids),
                page_outcomes.count(PromotionOutcome.PROCESSED),
                page_outcomes.count(PromotionOutcome.DEGRADED),
                page_outcomes.count(PromotionOutcome.FAILED),
            )

            if len(import_ids) < self._settings.batch_size:
                break
            retired = sum(
                1
                for outcome in page_outcomes
                if outcome in (PromotionOutcome.PROCESSED, PromotionOutcome.DEGRADED)
            )
            if retired == 0:
                # Every row in the page failed or was taken by another worker.
                break

        return ImportProcessingSummary(
            claimed=claimed,
            processed=counts[PromotionOutcome.PROCESSED],
            degraded=counts[PromotionOutcome.DEGRADED],
            failed=counts[PromotionOutcome.FAILED],
        )

    def promote(self, import_id: uuid.UUID) -> PromotionOutcome:
        """
        Promote one staged row. Never raises; unexpected errors retire the
        row as ERROR so it is not picked up again.
        """

        try:
            return self._promote(import_id)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Import promotion failed import_id=%s", import_id)
            self._retire_as_error(import_id, f"promotion failed: {exc}")
            return PromotionOutcome.FAILED

    def _promote(self, import_id: uuid.UUID) -> PromotionOutcome:
        source = self._load_transcript_source(import_id)
        if source is None:
            return PromotionOutcome.SKIPPED

        content = source.content
        fetched_content: str | None = None
        fetch_error: str | None = None
        if content is None and source.url:
            fetched = self._transcript_connector.fetch(
                source.url,
                username=source.username,
                password=source.password,
            )
            if fetched.success:
                content = fetched_content = fetched.content
            else:
                fetch_error = f"{fetched.failure.value}: {fetched.error}"
                logger.warning(
                    "Transcript unavailable, promoting without turns import_id=%s failure=%s",
                    import_id,
                    fetched.failure.value,
                )

        with self._session_factory() as db:
            imports = SessionImportRepository(db)
            sessions = ChatSessionRepository(db)

            staged = imports.lock_pending(import_id)
            if staged is None:
                db.rollback()
                return PromotionOutcome.SKIPPED

            if fetched_content is not None:
                imports.store_transcript(import_id, fetched_content)

            session_id = sessions.create_from_import(staged).id
            turns = []
            if content:
                turns = parse_transcript(content, start_time=staged.start_time, end_time=staged.end_time)
                sessions.add_turns(session_id, turns)

            status = ImportStatus.ERROR if fetch_error else ImportStatus.PROCESSED
            if not imports.mark_retired(import_id, status, error_message=fetch_error):
                db.rollback()
                return PromotionOutcome.SKIPPED
            db.commit()

        logger.debug(
            "Import promoted import_id=%s session_id=%s turns=%s status=%s",
            import_id,
            session_id,
            len(turns),
            status.value,
        )
        return PromotionOutcome.DEGRADED if fetch_error else PromotionOutcome.PROCESSED

    def _load_transcript_source(self, import_id: uuid.UUID) -> _TranscriptSource | None:
        with self._session_factory() as db:
            staged = SessionImportRepository(db).get(import_id)
            if staged is None or staged.status is not ImportStatus.PENDING:
                return None
            tenant = db.get(Tenant, staged.tenant_id)
            return _TranscriptSource(
                url=staged.transcript_url,
                content=staged.raw_transcript_content,
                username=tenant.csv_username if tenant else None,
                password=tenant.csv_password if tenant else None,
            )

    def _retire_as_error(self, import_id: uuid.UUID, message: str) -> None:
        with self._session_factory() as db:
            try:
                SessionImportRepository(db).mark_retired(import_id, ImportStatus.ERROR, error_message=message)
                db.commit()
            except SQLAlchemyError as exc:
                db.rollback()
                logger.error("Could not retire import as ERROR import_id=%s error=%s", import_id, exc)


@lru_cache(maxsize=1)
def get_import_processing_service() -> ImportProcessingService:
    """
    Build and cache the import processing service.
    """

    settings = get_import_processing_settings()
    return ImportProcessingService(
        settings=settings,
        transcript_connector=TranscriptConnector(
            http_settings=get_external_http_settings(),
            timeout_seconds=settings.transcript_timeout_seconds,
        ),
    )
