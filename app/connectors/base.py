"""
app/connectors/base.py

Retry, backoff and throttling shared by the CSV feed and transcript fetchers.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Iterator
from typing import Any

import requests
from requests.auth import HTTPBasicAuth

from app.config import ExternalHTTPSettings

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


class ConnectorRequestError(RuntimeError):
    """
    A fetch that could not be completed. ``status_code`` is set when the
    last attempt got an HTTP response, ``None`` for transport failures.
    """

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def basic_auth(username: str | None, password: str | None) -> HTTPBasicAuth | None:
    """Basic credentials, or ``None`` unless both parts are set."""
    if username and password:
        return HTTPBasicAuth(username, password)
    return None


class _Throttle:
    """
    Keeps at least ``1 / per_second`` seconds between requests across every
    thread sharing the connector.
    """

    def __init__(self, per_second: float) -> None:
        self._min_gap = 1.0 / per_second if per_second > 0 else 0.0
        self._last_sent = 0.0
        self._lock = threading.Lock()

    def wait(self) -> None:
        if self._min_gap <= 0:
            return
        with self._lock:
            remaining = self._min_gap - (time.monotonic() - self._last_sent)
            if remaining > 0:
                time.sleep(remaining)
            self._last_sent = time.monotonic()


class BaseConnector:
    """
    HTTP GET-style fetches with exponential backoff.

    Transport errors and ``RETRYABLE_STATUS_CODES`` are retried up to
    ``max_retries`` times; any other HTTP error fails on the first attempt.
    Every failure surfaces as ``ConnectorRequestError`` chained to the
    underlying ``requests`` exception.
    """

    def __init__(
        self,
        *,
        source: str,
        http_settings: ExternalHTTPSettings,
        timeout_seconds: float | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.source = source
        self._shared_session = session
        self._local = threading.local()
        self._settings = http_settings
        self._timeout_seconds = timeout_seconds or http_settings.timeout_seconds
        self._throttle = _Throttle(http_settings.rate_limit_per_second)

    def _request_text(self, *, method: str, url: str, **request_kwargs: Any) -> str:
        return self._request(method=method, url=url, **request_kwargs).text

    def _request(
        self,
        *,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        auth: HTTPBasicAuth | None = None,
    ) -> requests.Response:
        delays = self._retry_delays()
        while True:
            try:
                return self._send(method, url, params=params, headers=headers, auth=auth)
            except requests.HTTPError as exc:
                status_code = exc.response.status_code if exc.response is not None else None
                if status_code not in RETRYABLE_STATUS_CODES:
                    logger.error(
                        "Connector request rejected source=%s status=%s url=%s",
                        self.source,
                        status_code,
                        url,
                    )
                    raise ConnectorRequestError(
                        f"{self.source}: HTTP {status_code} from {url}",
                        status_code=status_code,
                    ) from exc
                failure: requests.RequestException = exc
            except (requests.Timeout, requests.ConnectionError) as exc:
                status_code = None
                failure = exc

            delay = next(delays, None)
            if delay is None:
                logger.error(
                    "Connector request gave up source=%s attempts=%s url=%s error=%s",
                    self.source,
                    self._settings.max_retries + 1,
                    url,
                    failure,
                )
                raise ConnectorRequestError(
                    f"{self.source}: request failed after retries.",
                    status_code=status_code,
                ) from failure

            logger.warning(
                "Connector request retrying source=%s wait_seconds=%.2f url=%s error=%s",
                self.source,
                delay,
                url,
                failure,
            )
            time.sleep(delay)

    @property
    def _http(self) -> requests.Session:
        # requests.Session is not thread-safe: one per worker thread unless
        # a session was injected.
        if self._shared_session is not None:
            return self._shared_session
        session = getattr(self._local, "session", None)
        if session is None:
            session = self._local.session = requests.Session()
        return session

    def _send(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        self._throttle.wait()
        response = self._http.request(method=method, url=url, timeout=self._timeout_seconds, **kwargs)
        response.raise_for_status()
        return response

    def _retry_delays(self) -> Iterator[float]:
        initial = self._settings.backoff_initial_seconds
        multiplier = self._settings.backoff_multiplier
        for attempt in range(self._settings.max_retries):
            yield initial * multiplier**attempt
