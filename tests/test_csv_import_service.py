"""
tests/test_csv_import_service.py

CSV ingestion across tenants against a SQLite database and a fake feed
server.

Coverage
--------
- Re-importing a feed updates existing rows in place and inserts new ones
- A failing tenant is counted and never stops its siblings
- Tenant paging and progress callbacks
- Inactive tenants and tenants without a feed are not imported
- import_tenant_by_id raises LookupError for unknown or unconfigured tenants
"""

from __future__ import annotations

import uuid

import pytest
import requests
from sqlalchemy import select

from app.config import CSVImportSettings
from app.connectors.csv_feed_connector import CSVFeedConnector
from app.services.csv_import_service import CSVImportService, chunked
from db.models.session_import import ImportStatus, SessionImport
from db.models.tenant import TenantStatus


def _feed(*rows: tuple[str, int]) -> str:
    return "\n".join(f"{session_id},01.06.2024 10:00:00,,,,,{messages}" for session_id, messages in rows) + "\n"


def _service(session_factory, fake_http, http_settings, **settings) -> CSVImportService:
    return CSVImportService(
        settings=CSVImportSettings(**{"max_concurrent_imports": 1, **settings}),
        feed_connector=CSVFeedConnector(http_settings=http_settings, session=fake_http),
        session_factory=session_factory,
    )


def _staged(session_factory, tenant_id: uuid.UUID) -> dict[str, SessionImport]:
    with session_factory() as db:
        rows = db.scalars(select(SessionImport).where(SessionImport.tenant_id == tenant_id)).all()
        return {row.external_session_id: row for row in rows}


def test_chunked_splits_sequence() -> None:
    assert [list(chunk) for chunk in chunked([1, 2, 3, 4, 5], 2)] == [[1, 2], [3, 4], [5]]


# ---------------------------------------------------------------------------
# Idempotent staging
# ---------------------------------------------------------------------------


class TestIdempotentStaging:
    def test_reimport_updates_changed_rows_and_inserts_new(
        self, session_factory, make_tenant, fake_http, fake_response, http_settings
    ) -> None:
        tenant_id = make_tenant("Acme", csv_url="https://feeds.example.com/acme.csv")
        service = _service(session_factory, fake_http, http_settings)

        fake_http.routes["https://feeds.example.com/acme.csv"] = fake_response(text=_feed(("s-1", 2), ("s-2", 2)))
        first = service.run()
        assert first.imported == 2
        assert first.updated == 0

        fake_http.routes["https://feeds.example.com/acme.csv"] = fake_response(
            text=_feed(("s-1", 7), ("s-2", 9), ("s-3", 1), ("s-4", 1), ("s-5", 1))
        )
        second = service.run()

        assert second.imported == 3
        assert second.updated == 2
        assert second.errors == 0

        staged = _staged(session_factory, tenant_id)
        assert sorted(staged) == ["s-1", "s-2", "s-3", "s-4", "s-5"]
        assert staged["s-1"].messages_sent == 7
        assert staged["s-2"].messages_sent == 9
        assert all(row.status is ImportStatus.PENDING for row in staged.values())

    def test_duplicate_ids_in_one_feed_collapse_to_last(
        self, session_factory, make_tenant, fake_http, fake_response, http_settings
    ) -> None:
        tenant_id = make_tenant()
        fake_http.routes["https://feeds.example.com/acme.csv"] = fake_response(text=_feed(("s-1", 1), ("s-1", 4)))

        summary = _service(session_factory, fake_http, http_settings).run()

        assert summary.imported == 1
        assert _staged(session_factory, tenant_id)["s-1"].messages_sent == 4

    def test_credentials_are_forwarded(
        self, session_factory, make_tenant, fake_http, fake_response, http_settings
    ) -> None:
        make_tenant(username="acme", password="secret")
        fake_http.routes["https://feeds.example.com/acme.csv"] = fake_response(text=_feed(("s-1", 1)))

        _service(session_factory, fake_http, http_settings).run()

        assert fake_http.calls[0]["auth"].username == "acme"


# ---------------------------------------------------------------------------
# Tenant isolation and paging
# ---------------------------------------------------------------------------


class TestTenantIsolation:
    def test_failing_tenant_does_not_stop_siblings(
        self, session_factory, make_tenant, fake_http, fake_response, http_settings
    ) -> None:
        good_a = make_tenant("A", csv_url="https://a.example.com/feed.csv")
        broken = make_tenant("B", csv_url="https://missing.invalid/feed.csv")
        good_c = make_tenant("C", csv_url="https://c.example.com/feed.csv")
        fake_http.routes["https://a.example.com/feed.csv"] = fake_response(text=_feed(("a-1", 1)))
        fake_http.routes["https://missing.invalid/feed.csv"] = requests.ConnectionError(
            "Failed to resolve 'missing.invalid'"
        )
        fake_http.routes["https://c.example.com/feed.csv"] = fake_response(text=_feed(("c-1", 1), ("c-2", 1)))

        summary = _service(session_factory, fake_http, http_settings).run()

        assert summary.processed == 3
        assert summary.errors == 1
        assert summary.imported == 3
        by_tenant = {result.tenant_id: result for result in summary.results}
        assert by_tenant[good_a].success
        assert by_tenant[good_c].success
        assert not by_tenant[broken].success
        assert _staged(session_factory, broken) == {}

    def test_inactive_and_unconfigured_tenants_are_skipped(
        self, session_factory, make_tenant, fake_http, fake_response, http_settings
    ) -> None:
        make_tenant("Active")
        make_tenant("Dormant", csv_url="https://dormant.example.com/feed.csv", status=TenantStatus.INACTIVE)
        make_tenant("No feed", csv_url=None)
        fake_http.routes["https://feeds.example.com/acme.csv"] = fake_response(text=_feed(("s-1", 1)))

        summary = _service(session_factory, fake_http, http_settings).run()

        assert summary.processed == 1
        assert [call["url"] for call in fake_http.calls] == ["https://feeds.example.com/acme.csv"]

    def test_tenants_are_read_in_pages(
        self, session_factory, make_tenant, fake_http, fake_response, http_settings
    ) -> None:
        for index in range(3):
            url = f"https://t{index}.example.com/feed.csv"
            make_tenant(f"T{index}", csv_url=url)
            fake_http.routes[url] = fake_response(text=_feed((f"t{index}-1", 1)))
        progress: list[dict] = []

        summary = _service(session_factory, fake_http, http_settings, batch_size=2).run(progress=progress.append)

        assert summary.pages == 2
        assert summary.processed == 3
        assert [event["processed"] for event in progress] == [2, 3]

    def test_empty_tenant_table(self, session_factory, fake_http, http_settings) -> None:
        summary = _service(session_factory, fake_http, http_settings).run()
        assert summary.processed == 0
        assert summary.pages == 0


# ---------------------------------------------------------------------------
# Single-tenant import
# ---------------------------------------------------------------------------


class TestImportTenantById:
    def test_imports_one_tenant(self, session_factory, make_tenant, fake_http, fake_response, http_settings) -> None:
        tenant_id = make_tenant()
        fake_http.routes["https://feeds.example.com/acme.csv"] = fake_response(text=_feed(("s-1", 1), ("s-2", 1)))

        result = _service(session_factory, fake_http, http_settings).import_tenant_by_id(tenant_id)

        assert result.success
        assert result.imported == 2
        assert result.rows_seen == 2

    def test_unknown_tenant(self, session_factory, fake_http, http_settings) -> None:
        with pytest.raises(LookupError):
            _service(session_factory, fake_http, http_settings).import_tenant_by_id(uuid.uuid4())

    def test_tenant_without_feed(self, session_factory, make_tenant, fake_http, http_settings) -> None:
        tenant_id = make_tenant(csv_url=None)
        with pytest.raises(LookupError):
            _service(session_factory, fake_http, http_settings).import_tenant_by_id(tenant_id)
