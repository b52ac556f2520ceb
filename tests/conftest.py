"""
tests/conftest.py

Shared fixtures: a file-backed SQLite database per test, tenant and session
factories, and a fake ``requests`` session for connector tests.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
import requests
from sqlalchemy.orm import sessionmaker

import db.models  # noqa: F401  registers all ORM models on Base.metadata
from app.config import ExternalHTTPSettings
from db.base import Base
from db.models.chat_session import ChatSession
from db.models.conversation_turn import ConversationTurn, TurnRole
from db.models.session_import import ImportStatus, SessionImport
from db.models.tenant import Tenant, TenantStatus
from db.session import create_db_engine


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest.fixture()
def engine(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'pipeline.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture()
def make_tenant(session_factory):
    def _make(
        name: str = "Acme",
        *,
        csv_url: str | None = "https://feeds.example.com/acme.csv",
        status: TenantStatus = TenantStatus.ACTIVE,
        username: str | None = None,
        password: str | None = None,
    ) -> uuid.UUID:
        tenant_id = uuid.uuid4()
        with session_factory() as db:
            db.add(
                Tenant(
                    id=tenant_id,
                    name=name,
                    csv_url=csv_url,
                    csv_username=username,
                    csv_password=password,
                    status=status,
                )
            )
            db.commit()
        return tenant_id

    return _make


@pytest.fixture()
def make_chat_session(session_factory):
    """
    Create a promoted session directly, bypassing ingestion.
    """

    counter = {"value": 0}

    def _make(
        tenant_id: uuid.UUID,
        *,
        turns: int = 2,
        retry_count: int = 0,
        batch_job_id: uuid.UUID | None = None,
        enriched: bool = False,
    ) -> uuid.UUID:
        counter["value"] += 1
        start = datetime(2024, 6, 1, 10, 0, tzinfo=timezone.utc) + timedelta(minutes=counter["value"])
        import_id = uuid.uuid4()
        session_id = uuid.uuid4()
        with session_factory() as db:
            db.add(
                SessionImport(
                    id=import_id,
                    tenant_id=tenant_id,
                    external_session_id=f"ext-{counter['value']}",
                    raw_fields={},
                    start_time=start,
                    messages_sent=turns,
                    escalated=False,
                    forwarded_hr=False,
                    tokens=0,
                    tokens_eur=0.0,
                    status=ImportStatus.PROCESSED,
                )
            )
            db.add(
                ChatSession(
                    id=session_id,
                    tenant_id=tenant_id,
                    import_id=import_id,
                    start_time=start,
                    messages_sent=turns,
                    escalated=False,
                    forwarded_hr=False,
                    tokens=0,
                    tokens_eur=0.0,
                    retry_count=retry_count,
                    batch_job_id=batch_job_id,
                    enriched_at=start if enriched else None,
                )
            )
            for order in range(turns):
                db.add(
                    ConversationTurn(
                        id=uuid.uuid4(),
                        session_id=session_id,
                        role=TurnRole.USER if order % 2 == 0 else TurnRole.ASSISTANT,
                        content=f"message {order}",
                        order=order,
                        timestamp=start + timedelta(seconds=order),
                    )
                )
            db.commit()
        return session_id

    return _make


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


class FakeResponse:
    def __init__(self, status_code: int = 200, text: str = "") -> None:
        self.status_code = status_code
        self.text = text

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}", response=self)


class FakeHTTPSession:
    """
    Stand-in for ``requests.Session``. ``routes`` maps a URL to a response
    or to an exception instance to raise.
    """

    def __init__(self) -> None:
        self.routes: dict[str, Any] = {}
        self.calls: list[dict[str, Any]] = []

    def request(self, method, url, params=None, headers=None, auth=None, timeout=None):
        self.calls.append({"method": method, "url": url, "auth": auth, "timeout": timeout})
        outcome = self.routes.get(url)
        if outcome is None:
            return FakeResponse(status_code=404)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture()
def fake_http() -> FakeHTTPSession:
    return FakeHTTPSession()


@pytest.fixture()
def fake_response():
    return FakeResponse


@pytest.fixture()
def http_settings() -> ExternalHTTPSettings:
    return ExternalHTTPSettings(
        timeout_seconds=5.0,
        max_retries=0,
        backoff_initial_seconds=0.1,
        backoff_multiplier=1.0,
        rate_limit_per_second=0.0,
    )
