"""
tests/test_connectors.py

HTTP connectors against a fake requests session.

Coverage
--------
- Basic auth is sent only with both credentials
- CSV feed parsing and CSVFeedError on transport failure
- Retry on 5xx, fail-fast on 4xx
- Rate limit shared by concurrent workers
- Transcript failure taxonomy (DNS, refused, timeout, HTTP, empty, invalid URL)
"""

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor

import pytest
import requests

from app.config import ExternalHTTPSettings
from app.connectors.base import basic_auth
from app.connectors.csv_feed_connector import CSVFeedConnector, CSVFeedError
from app.connectors.transcript_connector import (
    TranscriptConnector,
    TranscriptFailureKind,
    classify_network_error,
    is_valid_transcript_url,
)

FEED_URL = "https://feeds.example.com/acme.csv"
TRANSCRIPT_URL = "https://transcripts.example.com/s-1.txt"


class TestBasicAuth:
    def test_requires_both_parts(self) -> None:
        assert basic_auth("user", None) is None
        assert basic_auth(None, "secret") is None

    def test_builds_http_basic_auth(self) -> None:
        auth = basic_auth("user", "secret")
        assert auth.username == "user"
        assert auth.password == "secret"


class TestCSVFeedConnector:
    def test_fetch_parses_rows_and_sends_credentials(self, fake_http, fake_response, http_settings) -> None:
        fake_http.routes[FEED_URL] = fake_response(text="s-1,01.06.2024 10:00:00\ns-2,01.06.2024 11:00:00\n")
        connector = CSVFeedConnector(http_settings=http_settings, session=fake_http, timeout_seconds=60)

        result = connector.fetch(FEED_URL, username="acme", password="pw")

        assert [row.external_session_id for row in result.rows] == ["s-1", "s-2"]
        assert fake_http.calls[0]["auth"].username == "acme"
        assert fake_http.calls[0]["timeout"] == 60

    def test_transport_failure_raises_feed_error(self, fake_http, http_settings) -> None:
        fake_http.routes[FEED_URL] = requests.ConnectionError("Failed to resolve 'feeds.example.com'")
        connector = CSVFeedConnector(http_settings=http_settings, session=fake_http)

        with pytest.raises(CSVFeedError):
            connector.fetch(FEED_URL)

    def test_client_error_fails_fast_with_status(self, fake_http, fake_response) -> None:
        settings = ExternalHTTPSettings(max_retries=3, backoff_initial_seconds=0.1, backoff_multiplier=1.0)
        fake_http.routes[FEED_URL] = fake_response(status_code=401)
        connector = CSVFeedConnector(http_settings=settings, session=fake_http)

        with pytest.raises(CSVFeedError) as excinfo:
            connector.fetch(FEED_URL)

        assert excinfo.value.status_code == 401
        assert len(fake_http.calls) == 1

    def test_server_error_is_retried(self, fake_http, fake_response, monkeypatch) -> None:
        monkeypatch.setattr("app.connectors.base.time.sleep", lambda _seconds: None)
        settings = ExternalHTTPSettings(max_retries=2, backoff_initial_seconds=0.1, backoff_multiplier=1.0)
        fake_http.routes[FEED_URL] = fake_response(status_code=503)
        connector = CSVFeedConnector(http_settings=settings, session=fake_http)

        with pytest.raises(CSVFeedError) as excinfo:
            connector.fetch(FEED_URL)

        assert excinfo.value.status_code == 503
        assert len(fake_http.calls) == 3


class TestRateLimit:
    def test_rate_limit_holds_across_threads(self, fake_response) -> None:
        sent_at: list[float] = []

        class RecordingSession:
            def request(self, method, url, **kwargs):
                sent_at.append(time.monotonic())
                return fake_response(status_code=200, text="")

        settings = ExternalHTTPSettings(max_retries=0, rate_limit_per_second=20.0)
        connector = TranscriptConnector(http_settings=settings, session=RecordingSession())

        with ThreadPoolExecutor(max_workers=4) as pool:
            list(pool.map(connector.fetch, [TRANSCRIPT_URL] * 4))

        gaps = [later - earlier for earlier, later in zip(sorted(sent_at), sorted(sent_at)[1:])]
        assert len(sent_at) == 4
        assert min(gaps) >= 0.045


class TestTranscriptConnector:
    def _connector(self, fake_http, http_settings) -> TranscriptConnector:
        return TranscriptConnector(http_settings=http_settings, session=fake_http, timeout_seconds=30)

    def test_success_returns_stripped_content(self, fake_http, fake_response, http_settings) -> None:
        fake_http.routes[TRANSCRIPT_URL] = fake_response(text="\nUser: hi\n")
        result = self._connector(fake_http, http_settings).fetch(TRANSCRIPT_URL)
        assert result.success
        assert result.content == "User: hi"
        assert fake_http.calls[0]["timeout"] == 30

    @pytest.mark.parametrize(
        ("error", "expected"),
        [
            (requests.ConnectionError("NameResolutionError: Failed to resolve host"), TranscriptFailureKind.DNS_NOT_FOUND),
            (requests.ConnectionError("[Errno 111] Connection refused"), TranscriptFailureKind.CONNECTION_REFUSED),
            (requests.Timeout("read timed out"), TranscriptFailureKind.TIMEOUT),
            (requests.ConnectionError("something odd"), TranscriptFailureKind.OTHER),
        ],
    )
    def test_network_failures_are_classified(self, fake_http, http_settings, error, expected) -> None:
        fake_http.routes[TRANSCRIPT_URL] = error
        result = self._connector(fake_http, http_settings).fetch(TRANSCRIPT_URL)
        assert not result.success
        assert result.failure is expected

    def test_http_error_status(self, fake_http, fake_response, http_settings) -> None:
        fake_http.routes[TRANSCRIPT_URL] = fake_response(status_code=404)
        result = self._connector(fake_http, http_settings).fetch(TRANSCRIPT_URL)
        assert result.failure is TranscriptFailureKind.HTTP_ERROR

    def test_empty_body(self, fake_http, fake_response, http_settings) -> None:
        fake_http.routes[TRANSCRIPT_URL] = fake_response(text="   \n")
        result = self._connector(fake_http, http_settings).fetch(TRANSCRIPT_URL)
        assert result.failure is TranscriptFailureKind.EMPTY_CONTENT

    def test_non_http_url_is_not_fetched(self, fake_http, http_settings) -> None:
        result = self._connector(fake_http, http_settings).fetch("ftp://files.example.com/s-1.txt")
        assert result.failure is TranscriptFailureKind.INVALID_URL
        assert fake_http.calls == []


@pytest.mark.parametrize(
    ("url", "valid"),
    [
        ("https://a.example.com/x", True),
        ("http://a.example.com/x", True),
        ("ftp://a.example.com/x", False),
        ("not a url", False),
        ("", False),
        (None, False),
    ],
)
def test_is_valid_transcript_url(url, valid) -> None:
    assert is_valid_transcript_url(url) is valid


def test_classify_plain_os_error_mentioning_timeout() -> None:
    assert classify_network_error(OSError("socket timeout")) is TranscriptFailureKind.TIMEOUT
