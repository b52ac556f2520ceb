"""
app/main.py

FastAPI entrypoint hosting the admin API and, in-process, the pipeline
scheduler tasks.
"""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.scheduler.manager import SchedulerManager

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def _validate_env() -> None:
    """
    Fail fast on configuration the pipeline cannot start without.

    All problems are collected before raising so one restart fixes them.
    """

    from app.config import get_openai_settings
    from db.config import resolve_database_url

    problems: list[str] = []
    try:
        resolve_database_url()
    except RuntimeError as exc:
        problems.append(str(exc))

    openai_settings = get_openai_settings()
    if not (openai_settings.mock_mode or openai_settings.api_key):
        problems.append("OPENAI_API_KEY is not set. Provide it or enable OPENAI_MOCK_MODE=true.")

    if problems:
        raise RuntimeError("Startup validation failed:\n" + "\n".join(f"  - {p}" for p in problems))


def _configure_logging() -> None:
    level_name = os.getenv("LOG_LEVEL", "INFO").strip().upper()
    logging.basicConfig(level=getattr(logging, level_name, logging.INFO), format=LOG_FORMAT)


def _verify_database() -> None:
    """
    Probe the database and require every ORM table to exist.

    Migrations are never applied from here; a missing table means
    ``alembic upgrade head`` has not been run.
    """

    from sqlalchemy import inspect, text

    import db.models  # noqa: F401  registers all ORM models on Base.metadata
    from db.base import Base
    from db.session import get_engine

    engine = get_engine()
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
            present = set(inspect(connection).get_table_names())
    except Exception as exc:
        raise RuntimeError("Database unavailable.") from exc

    missing = sorted(set(Base.metadata.tables) - present)
    if missing:
        logger.critical("Pipeline tables missing from database tables=%s", ",".join(missing))
        raise RuntimeError(f"Missing tables: {', '.join(missing)}. Run 'alembic upgrade head' and restart.")
    logger.info("Database reachable and schema present tables=%d", len(present))


@asynccontextmanager
async def _lifespan(application: FastAPI) -> AsyncIterator[None]:
    _verify_database()

    manager: SchedulerManager | None = application.state.scheduler_manager
    if manager is None:
        from app.scheduler.jobs import build_scheduler_manager

        manager = application.state.scheduler_manager = build_scheduler_manager()

    manager.start_all()
    logger.info("Scheduler manager started enabled=%s tasks=%d", manager.enabled, len(manager.task_ids()))
    try:
        yield
    finally:
        manager.stop_all()
        logger.info("Scheduler manager stopped")


def create_app(
    *,
    scheduler_manager: SchedulerManager | None = None,
    validate_env: bool = True,
) -> FastAPI:
    """
    Build the API. A prebuilt ``scheduler_manager`` replaces the default
    task wiring done at startup.
    """

    if validate_env:
        _validate_env()
    _configure_logging()

    from app.api.routers import batch_jobs_router, schedulers_router

    application = FastAPI(title="Chat Insights Pipeline API", version="1.0.0", lifespan=_lifespan)
    application.state.scheduler_manager = scheduler_manager
    application.include_router(schedulers_router)
    application.include_router(batch_jobs_router)

    @application.get("/health")
    def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    return application


app = create_app()
