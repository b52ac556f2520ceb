"""
db/config.py

Database URL resolution for the API, the scheduler runner and Alembic.
"""

from __future__ import annotations

import os
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
ENV_FILENAMES = (".env", ".env.local")

# Deployed environments read CLOUD_DATABASE_URL before the local fallback.
DEPLOYED_ENVIRONMENTS = frozenset({"prod", "production", "staging", "cloud"})

_DRIVER_PREFIXES = {
    "postgres://": "postgresql+psycopg://",
    "postgresql://": "postgresql+psycopg://",
}


def _parse_env_line(raw_line: str) -> tuple[str, str] | None:
    line = raw_line.strip()
    if not line or line.startswith("#"):
        return None
    key, sep, value = line.partition("=")
    key = key.strip()
    if not sep or not key:
        return None
    return key, value.strip().strip("\"'")


def load_env_files(root: Path = PROJECT_ROOT) -> None:
    """
    Seed ``os.environ`` from ``.env`` then ``.env.local`` under ``root``.

    Variables already present in the process environment win; the files
    only fill gaps.
    """

    for env_path in (root / name for name in ENV_FILENAMES):
        if not env_path.is_file():
            continue
        for raw_line in env_path.read_text(encoding="utf-8").splitlines():
            parsed = _parse_env_line(raw_line)
            if parsed is not None:
                os.environ.setdefault(*parsed)


def normalize_postgres_url(url: str) -> str:
    """
    Pin bare postgres URLs to the psycopg driver. Other URLs are returned
    unchanged.
    """

    for prefix, replacement in _DRIVER_PREFIXES.items():
        if url.startswith(prefix):
            return replacement + url[len(prefix):]
    return url


def database_url_candidates() -> list[str]:
    """
    Environment variable names consulted for the database URL, in order.
    """

    environment = os.getenv("ENVIRONMENT", "local").strip().lower()
    names = ["DATABASE_URL"]
    if environment in DEPLOYED_ENVIRONMENTS:
        names.append("CLOUD_DATABASE_URL")
    names.append("LOCAL_DATABASE_URL")
    return names


def resolve_database_url() -> str:
    """
    Return the first configured database URL, normalised for psycopg.

    Raises ``RuntimeError`` when none of the candidate variables is set.
    """

    load_env_files()
    for name in database_url_candidates():
        value = (os.getenv(name) or "").strip()
        if value:
            return normalize_postgres_url(value)

    raise RuntimeError(
        "No database URL configured. Set one of: " + ", ".join(database_url_candidates()) + "."
    )
