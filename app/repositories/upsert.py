"""
app/repositories/upsert.py

Dialect-aware ``INSERT ... ON CONFLICT`` construction.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session


def dialect_insert(session: Session, model: Any) -> Any:
    """
    Return an insert construct that supports ``on_conflict_do_*`` for the
    bound dialect. PostgreSQL in production, SQLite for tests.
    """

    dialect_name = session.get_bind().dialect.name
    if dialect_name == "postgresql":
        return postgresql.insert(model)
    if dialect_name == "sqlite":
        return sqlite.insert(model)
    raise RuntimeError(f"Upserts are not supported on dialect '{dialect_name}'.")
