"""
app/services/csv_import_service.py

Pulls every importable tenant's CSV feed and stages its rows idempotently.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Iterator, Sequence
from concurrent.futures import ThreadPoolExecutor
from functools import lru_cache
from typing import Any, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import CSVImportSettings, get_csv_import_settings, get_external_http_settings
from app.connectors.csv_feed_connector import CSVFeedConnector, CSVFeedError
from app.domain.chat_import import (
    CSVImportRunSummary,
    ParsedSessionRow,
    StagingResult,
    TenantFeed,
    TenantImportResult,
)
from app.repositories.session_import_repository import SessionImportRepository
from app.repositories.tenant_repository import TenantRepository
from db.models.tenant import Tenant
from db.session import SessionLocal

logger = logging.getLogger(__name__)

T = TypeVar("T")

ProgressCallback = Callable[[dict[str, Any]], None]


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    for start in range(0, len(items), max(1, size)):
        yield items[start : start + size]


class CSVImportService:
    """
    Coordinates feed fetching and staging for all tenants.

    Tenants are read in pages of ``batch_size``; each page is processed in
    chunks of ``max_concurrent_imports`` worker threads and every chunk is
    waited on in full before the next starts. A failing tenant is recorded
    in the summary and never stops its siblings.
    """

    def __init__(
        self,
        *,
        settings: CSVImportSettings,
        feed_connector: CSVFeedConnector,
        session_factory: Callable[[], Session] = SessionLocal,
    ) -> None:
        self._settings = settings
        self._feed_connector = feed_connector
        self._session_factory = session_factory

    def run(self, *, progress: ProgressCallback | None = None) -> CSVImportRunSummary:
        batch_size = self._settings.batch_size
        offset = 0
        pages = 0
        results: list[TenantImportResult] = []

        while True:
            page = self._load_page(offset=offset, limit=batch_size)
            if not page:
                break
            pages += 1

            for chunk in chunked(page, self._settings.max_concurrent_imports):
                results.extend(self._import_chunk(chunk))

            if progress is not None:
                progress(
                    {
                        "page": pages,
                        "processed": len(results),
                        "imported": sum(result.imported for result in results),
                        "errors": sum(1 for result in results if not result.success),
                    }
                )

            if len(page) < batch_size:
                break
            offset += batch_size

        summary = CSVImportRunSummary(
            processed=len(results),
            imported=sum(result.imported for result in results),
            updated=sum(result.updated for result in results),
            errors=sum(1 for result in results if not result.success),
            pages=pages,
            results=results,
        )
        logger.info(
            "CSV import run finished tenants=%s imported=%s updated=%s errors=%s pages=%s",
            summary.processed,
            summary.imported,
            summary.updated,
            summary.errors,
            summary.pages,
        )
        return summary

    def import_tenant_by_id(self, tenant_id: uuid.UUID) -> TenantImportResult:
        """
        Import a single tenant outside the paging loop.

        Raises ``LookupError`` for an unknown tenant or one without a feed.
        """

        with self._session_factory() as db:
            tenant = TenantRepository(db).get(tenant_id)
            if tenant is None:
                raise LookupError(f"Tenant {tenant_id} not found")
            if not tenant.csv_url:
                raise LookupError(f"Tenant {tenant_id} has no CSV feed configured")
            feed = self._to_feed(tenant)
        return self.import_tenant(feed)

    def import_tenant(self, feed: TenantFeed) -> TenantImportResult:
        try:
            parsed = self._feed_connector.fetch(
                feed.csv_url,
                username=feed.username,
                password=feed.password,
            )
        except CSVFeedError as exc:
            logger.warning("CSV feed fetch failed tenant_id=%s error=%s", feed.tenant_id, exc)
            return TenantImportResult(tenant_id=feed.tenant_id, error=str(exc))

        staged = self._stage_rows(feed.tenant_id, parsed.rows)
        result = TenantImportResult(
            tenant_id=feed.tenant_id,
            rows_seen=len(parsed.rows) + len(parsed.errors),
            imported=staged.inserted,
            updated=staged.updated,
            failed_rows=staged.failed + len(parsed.errors),
        )
        logger.info(
            "CSV feed staged tenant_id=%s rows=%s imported=%s updated=%s failed_rows=%s",
            feed.tenant_id,
            result.rows_seen,
            result.imported,
            result.updated,
            result.failed_rows,
        )
        return result

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _load_page(self, *, offset: int, limit: int) -> list[TenantFeed]:
        with self._session_factory() as db:
            tenants = TenantRepository(db).list_importable(limit=limit, offset=offset)
            return [self._to_feed(tenant) for tenant in tenants]

    def _import_chunk(self, chunk: Sequence[TenantFeed]) -> list[TenantImportResult]:
        with ThreadPoolExecutor(max_workers=len(chunk), thread_name_prefix="csv-import") as pool:
            futures = [pool.submit(self.import_tenant, feed) for feed in chunk]

        results: list[TenantImportResult] = []
        for feed, future in zip(chunk, futures):
            try:
                results.append(future.result())
            except Exception as exc:  # noqa: BLE001
                logger.exception("CSV import failed tenant_id=%s", feed.tenant_id)
                results.append(TenantImportResult(tenant_id=feed.tenant_id, error=str(exc)))
        return results

    def _stage_rows(self, tenant_id: uuid.UUID, rows: Sequence[ParsedSessionRow]) -> StagingResult:
        if not rows:
            return StagingResult()

        with self._session_factory() as db:
            repository = SessionImportRepository(db)
            try:
                staged = repository.upsert_rows(tenant_id, rows)
                db.commit()
                return staged
            except SQLAlchemyError as exc:
                db.rollback()
                logger.warning(
                    "Bulk staging failed, retrying row by row tenant_id=%s rows=%s error=%s",
                    tenant_id,
                    len(rows),
                    exc,
                )

            inserted = updated = failed = 0
            for row in rows:
                try:
                    staged = repository.upsert_rows(tenant_id, [row])
                    db.commit()
                except SQLAlchemyError as exc:
                    db.rollback()
                    failed += 1
                    logger.warning(
                        "Failed to stage row tenant_id=%s external_session_id=%s error=%s",
                        tenant_id,
                        row.external_session_id,
                        exc,
                    )
                    continue
                inserted += staged.inserted
                updated += staged.updated
            return StagingResult(inserted=inserted, updated=updated, failed=failed)

    @staticmethod
    def _to_feed(tenant: Tenant) -> TenantFeed:
        return TenantFeed(
            tenant_id=tenant.id,
            name=tenant.name,
            csv_url=tenant.csv_url or "",
            username=tenant.csv_username,
            password=tenant.csv_password,
        )


@lru_cache(maxsize=1)
def get_csv_import_service() -> CSVImportService:
    """
    Build and cache the CSV import service.
    """

    settings = get_csv_import_settings()
    return CSVImportService(
        settings=settings,
        feed_connector=CSVFeedConnector(
            http_settings=get_external_http_settings(),
            timeout_seconds=settings.fetch_timeout_seconds,
        ),
    )
