"""
db/session.py

Engine and session factory shared by the pipeline services.

Nothing connects at import time; the engine is built on the first
``SessionLocal()`` call so the API and the scheduler runner can load
their settings first.
"""

from __future__ import annotations

import os
from functools import lru_cache

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from db.config import resolve_database_url

_TRUTHY = {"1", "true", "yes", "on"}


def _pool_option(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    return int(raw) if raw.isdigit() else default


def create_db_engine(database_url: str | None = None) -> Engine:
    """
    Build an engine for ``database_url`` (or the resolved environment URL).

    SQLite is allowed for tests and local tooling. Import runs reach it
    from worker threads, so same-thread checks are disabled and no pool
    sizing is applied.
    """

    url = database_url or resolve_database_url()
    echo = (os.getenv("SQL_ECHO") or "").strip().lower() in _TRUTHY

    if url.startswith("sqlite"):
        return create_engine(url, echo=echo, connect_args={"check_same_thread": False})
    if not url.startswith("postgresql"):
        raise RuntimeError(f"Unsupported database URL scheme: {url.split(':', 1)[0]}")

    return create_engine(
        url,
        echo=echo,
        pool_pre_ping=True,
        pool_size=_pool_option("DB_POOL_SIZE", 5),
        max_overflow=_pool_option("DB_MAX_OVERFLOW", 10),
        pool_recycle=_pool_option("DB_POOL_RECYCLE", 1800),
    )


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_session_factory() -> sessionmaker[Session]:
    # Services hand detached rows between transactions, so nothing expires
    # on commit.
    return sessionmaker(bind=get_engine(), autoflush=False, expire_on_commit=False)


def SessionLocal() -> Session:
    """Open a session on the shared engine."""
    return get_session_factory()()
