"""
app/connectors/csv_feed_connector.py

Fetches a tenant's session CSV export and maps it into normalized rows.
"""

from __future__ import annotations

import logging

import requests

from app.config import ExternalHTTPSettings
from app.connectors.base import BaseConnector, ConnectorRequestError, basic_auth
from app.domain.chat_import import CSVParseResult
from app.mappers.session_row_mapper import SessionRowMapper

logger = logging.getLogger(__name__)


class CSVFeedError(ConnectorRequestError):
    """
    Raised when a tenant feed cannot be fetched or contains no usable data.
    """


class CSVFeedConnector(BaseConnector):
    def __init__(
        self,
        *,
        http_settings: ExternalHTTPSettings,
        timeout_seconds: float | None = None,
        session: requests.Session | None = None,
        row_mapper: SessionRowMapper | None = None,
    ) -> None:
        super().__init__(
            source="csv_feed",
            http_settings=http_settings,
            timeout_seconds=timeout_seconds,
            session=session,
        )
        self._row_mapper = row_mapper or SessionRowMapper()

    def fetch(
        self,
        url: str,
        *,
        username: str | None = None,
        password: str | None = None,
    ) -> CSVParseResult:
        """
        Download and parse one feed. Row-level problems are reported in the
        result; transport failures raise ``CSVFeedError``.
        """

        try:
            text = self._request_text(
                method="GET",
                url=url,
                auth=basic_auth(username, password),
                headers={"Accept": "text/csv, text/plain;q=0.9, */*;q=0.1"},
            )
        except ConnectorRequestError as exc:
            raise CSVFeedError(f"Failed to fetch CSV feed {url}: {exc}", status_code=exc.status_code) from exc

        result = self._row_mapper.parse(text)
        logger.info(
            "CSV feed parsed url=%s rows=%s row_errors=%s",
            url,
            len(result.rows),
            len(result.errors),
        )
        return result
