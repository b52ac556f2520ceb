"""
app/connectors/transcript_connector.py

Fetches plain-text chat transcripts and classifies transport failures.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from urllib.parse import urlparse

import requests

from app.config import ExternalHTTPSettings
from app.connectors.base import BaseConnector, ConnectorRequestError, basic_auth

logger = logging.getLogger(__name__)

USER_AGENT = "chat-pipeline-transcript-fetcher/1.0"

_DNS_MARKERS = (
    "nameresolutionerror",
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo failed",
    "temporary failure in name resolution",
    "no address associated with hostname",
    "failed to resolve",
)
_REFUSED_MARKERS = ("connection refused", "connectionrefusederror", "errno 111", "errno 61")


class TranscriptFailureKind(str, enum.Enum):
    DNS_NOT_FOUND = "DNS_NOT_FOUND"
    CONNECTION_REFUSED = "CONNECTION_REFUSED"
    TIMEOUT = "TIMEOUT"
    HTTP_ERROR = "HTTP_ERROR"
    EMPTY_CONTENT = "EMPTY_CONTENT"
    INVALID_URL = "INVALID_URL"
    OTHER = "OTHER"


@dataclass(frozen=True)
class TranscriptFetchResult:
    content: str | None = None
    failure: TranscriptFailureKind | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.failure is None


def is_valid_transcript_url(url: str | None) -> bool:
    if not url or not url.strip():
        return False
    parsed = urlparse(url.strip())
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


def classify_network_error(error: BaseException) -> TranscriptFailureKind:
    """
    Map a transport exception onto the failure taxonomy.
    """

    if isinstance(error, requests.Timeout):
        return TranscriptFailureKind.TIMEOUT
    if isinstance(error, requests.HTTPError):
        return TranscriptFailureKind.HTTP_ERROR
    message = f"{type(error).__name__}: {error}".lower()
    if any(marker in message for marker in _DNS_MARKERS):
        return TranscriptFailureKind.DNS_NOT_FOUND
    if any(marker in message for marker in _REFUSED_MARKERS):
        return TranscriptFailureKind.CONNECTION_REFUSED
    if "timed out" in message or "timeout" in message:
        return TranscriptFailureKind.TIMEOUT
    return TranscriptFailureKind.OTHER


class TranscriptConnector(BaseConnector):
    """
    Never raises for transport problems: every outcome is a
    ``TranscriptFetchResult``.
    """

    def __init__(
        self,
        *,
        http_settings: ExternalHTTPSettings,
        timeout_seconds: float = 30.0,
        session: requests.Session | None = None,
    ) -> None:
        super().__init__(
            source="transcript",
            http_settings=http_settings,
            timeout_seconds=timeout_seconds,
            session=session,
        )

    def fetch(
        self,
        url: str | None,
        *,
        username: str | None = None,
        password: str | None = None,
    ) -> TranscriptFetchResult:
        if not is_valid_transcript_url(url):
            return TranscriptFetchResult(
                failure=TranscriptFailureKind.INVALID_URL,
                error=f"Invalid transcript URL: {url!r}",
            )

        try:
            text = self._request_text(
                method="GET",
                url=url.strip(),
                headers={"User-Agent": USER_AGENT},
                auth=basic_auth(username, password),
            )
        except ConnectorRequestError as exc:
            cause = exc.__cause__ or exc
            kind = (
                TranscriptFailureKind.HTTP_ERROR
                if exc.status_code is not None
                else classify_network_error(cause)
            )
            logger.warning("Transcript fetch failed url=%s kind=%s error=%s", url, kind.value, cause)
            return TranscriptFetchResult(failure=kind, error=str(cause))

        content = text.strip()
        if not content:
            return TranscriptFetchResult(
                failure=TranscriptFailureKind.EMPTY_CONTENT,
                error="Empty transcript content",
            )
        return TranscriptFetchResult(content=content)
