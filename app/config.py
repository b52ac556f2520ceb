"""
app/config.py

Environment-driven settings for the pipeline tasks, the batch provider and
outbound HTTP. Every reader falls back to its default on a missing, blank
or unparseable value, so a bad env var never stops the process.
"""

from __future__ import annotations

import os
from collections.abc import Callable
from dataclasses import dataclass
from functools import lru_cache
from typing import TypeVar

from db.config import load_env_files

_T = TypeVar("_T")


@lru_cache(maxsize=1)
def _load_env_once() -> None:
    load_env_files()


def _env_value(name: str) -> str | None:
    _load_env_once()
    value = (os.getenv(name) or "").strip()
    return value or None


def _parsed_env(name: str, default: _T, parse: Callable[[str], _T]) -> _T:
    value = _env_value(name)
    if value is None:
        return default
    try:
        return parse(value)
    except ValueError:
        return default


def _get_bool_env(name: str, default: bool) -> bool:
    return _parsed_env(name, default, lambda value: value.lower() in {"1", "true", "yes", "on"})


def _get_int_env(name: str, default: int) -> int:
    return _parsed_env(name, default, int)


def _get_float_env(name: str, default: float) -> float:
    return _parsed_env(name, default, float)


def _get_str_env(name: str, default: str) -> str:
    return _env_value(name) or default


def _get_optional_str_env(name: str) -> str | None:
    return _env_value(name)


@dataclass(frozen=True)
class SchedulerSettings:
    """
    Settings shared by every scheduled task.
    """

    enabled: bool = True
    max_retries: int = 3
    retry_delay_seconds: float = 0.0


@dataclass(frozen=True)
class ExternalHTTPSettings:
    """
    Timeouts, retries and throttling for the feed and transcript fetchers.
    """

    timeout_seconds: float = 15.0
    max_retries: int = 3
    backoff_initial_seconds: float = 0.5
    backoff_multiplier: float = 2.0
    rate_limit_per_second: float = 0.0


@dataclass(frozen=True)
class CSVImportSettings:
    """
    Runtime settings for the CSV ingestion task.
    """

    interval: str = "*/10 * * * *"
    timeout_seconds: float = 300.0
    batch_size: int = 10
    max_concurrent_imports: int = 5
    fetch_timeout_seconds: float = 60.0


@dataclass(frozen=True)
class ImportProcessingSettings:
    """
    Runtime settings for promoting staged rows into chat sessions.
    """

    interval: str = "*/5 * * * *"
    timeout_seconds: float = 300.0
    batch_size: int = 50
    concurrency: int = 5
    transcript_timeout_seconds: float = 30.0


@dataclass(frozen=True)
class BatchEnrichmentSettings:
    """
    Runtime settings for the batch enrichment submit/poll/reconcile cycle.
    """

    submission_interval: str = "*/5 * * * *"
    polling_interval: str = "*/2 * * * *"
    reconciliation_interval: str = "*/5 * * * *"
    timeout_seconds: float = 600.0
    max_requests_per_batch: int = 1000
    max_session_retries: int = 3
    model: str = "gpt-4o-mini"
    completion_window: str = "24h"
    max_tokens: int = 1000
    temperature: float = 0.2


@dataclass(frozen=True)
class OpenAISettings:
    """
    Batch inference provider credentials.
    """

    api_key: str | None = None
    base_url: str | None = None
    mock_mode: bool = False
    # Claimed session rows stay locked across the file upload and batch create.
    timeout_seconds: float = 60.0
    max_retries: int = 2


@lru_cache(maxsize=1)
def get_scheduler_settings() -> SchedulerSettings:
    """
    Return scheduler defaults from environment variables.
    """

    return SchedulerSettings(
        enabled=_get_bool_env("SCHEDULER_ENABLED", True),
        max_retries=max(1, _get_int_env("SCHEDULER_MAX_RETRIES", 3)),
        retry_delay_seconds=max(0.0, _get_float_env("SCHEDULER_RETRY_DELAY_SECONDS", 0.0)),
    )


@lru_cache(maxsize=1)
def get_external_http_settings() -> ExternalHTTPSettings:
    """
    Outbound HTTP settings from EXTERNAL_HTTP_* variables.
    """

    return ExternalHTTPSettings(
        timeout_seconds=max(1.0, _get_float_env("EXTERNAL_HTTP_TIMEOUT_SECONDS", 15.0)),
        max_retries=max(0, _get_int_env("EXTERNAL_HTTP_MAX_RETRIES", 3)),
        backoff_initial_seconds=max(0.1, _get_float_env("EXTERNAL_HTTP_BACKOFF_INITIAL_SECONDS", 0.5)),
        backoff_multiplier=max(1.0, _get_float_env("EXTERNAL_HTTP_BACKOFF_MULTIPLIER", 2.0)),
        rate_limit_per_second=max(0.0, _get_float_env("EXTERNAL_HTTP_RATE_LIMIT_PER_SECOND", 0.0)),
    )


@lru_cache(maxsize=1)
def get_csv_import_settings() -> CSVImportSettings:
    """
    Return CSV ingestion task settings from environment variables.
    """

    return CSVImportSettings(
        interval=_get_str_env("CSV_IMPORT_INTERVAL", "*/10 * * * *"),
        timeout_seconds=max(1.0, _get_float_env("CSV_IMPORT_TIMEOUT_SECONDS", 300.0)),
        batch_size=max(1, _get_int_env("CSV_IMPORT_BATCH_SIZE", 10)),
        max_concurrent_imports=max(1, _get_int_env("CSV_IMPORT_MAX_CONCURRENT", 5)),
        fetch_timeout_seconds=max(1.0, _get_float_env("CSV_FETCH_TIMEOUT_SECONDS", 60.0)),
    )


@lru_cache(maxsize=1)
def get_import_processing_settings() -> ImportProcessingSettings:
    """
    Return import promotion settings from environment variables.
    """

    return ImportProcessingSettings(
        interval=_get_str_env("IMPORT_PROCESSING_INTERVAL", "*/5 * * * *"),
        timeout_seconds=max(1.0, _get_float_env("IMPORT_PROCESSING_TIMEOUT_SECONDS", 300.0)),
        batch_size=max(1, _get_int_env("IMPORT_PROCESSING_BATCH_SIZE", 50)),
        concurrency=max(1, _get_int_env("IMPORT_PROCESSING_CONCURRENCY", 5)),
        transcript_timeout_seconds=max(1.0, _get_float_env("TRANSCRIPT_FETCH_TIMEOUT_SECONDS", 30.0)),
    )


@lru_cache(maxsize=1)
def get_batch_enrichment_settings() -> BatchEnrichmentSettings:
    """
    Return batch enrichment settings from environment variables.
    """

    return BatchEnrichmentSettings(
        submission_interval=_get_str_env("BATCH_SUBMISSION_INTERVAL", "*/5 * * * *"),
        polling_interval=_get_str_env("BATCH_POLLING_INTERVAL", "*/2 * * * *"),
        reconciliation_interval=_get_str_env("BATCH_RECONCILIATION_INTERVAL", "*/5 * * * *"),
        timeout_seconds=max(1.0, _get_float_env("BATCH_TASK_TIMEOUT_SECONDS", 600.0)),
        max_requests_per_batch=max(1, _get_int_env("BATCH_MAX_REQUESTS", 1000)),
        max_session_retries=max(1, _get_int_env("BATCH_MAX_RETRIES", 3)),
        model=_get_str_env("BATCH_MODEL", "gpt-4o-mini"),
        completion_window=_get_str_env("BATCH_COMPLETION_WINDOW", "24h"),
        max_tokens=max(1, _get_int_env("BATCH_MAX_TOKENS", 1000)),
        temperature=max(0.0, _get_float_env("BATCH_TEMPERATURE", 0.2)),
    )


@lru_cache(maxsize=1)
def get_openai_settings() -> OpenAISettings:
    """
    Return batch inference provider settings from environment variables.
    """

    return OpenAISettings(
        api_key=_get_optional_str_env("OPENAI_API_KEY"),
        base_url=_get_optional_str_env("OPENAI_BASE_URL"),
        mock_mode=_get_bool_env("OPENAI_MOCK_MODE", False),
        timeout_seconds=max(1.0, _get_float_env("OPENAI_TIMEOUT_SECONDS", 60.0)),
        max_retries=max(0, _get_int_env("OPENAI_MAX_RETRIES", 2)),
    )
