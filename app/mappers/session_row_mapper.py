"""
app/mappers/session_row_mapper.py

Positional mapping of the headerless 16-column session feed.
"""

from __future__ import annotations

import csv
import io
import logging
from typing import Sequence

from app.domain.chat_import import CSVParseResult, ParsedSessionRow, RowParseError
from app.mappers.field_normalizers import (
    is_truthy,
    normalize_category,
    normalize_country,
    normalize_language,
    parse_float,
    parse_int,
    parse_timestamp,
    parse_timestamp_or_now,
    sentiment_to_score,
)

logger = logging.getLogger(__name__)

FEED_COLUMNS: tuple[str, ...] = (
    "session_id",
    "start_time",
    "end_time",
    "ip_address",
    "country",
    "language",
    "messages_sent",
    "sentiment",
    "escalated",
    "forwarded_hr",
    "full_transcript_url",
    "avg_response_time",
    "tokens",
    "tokens_eur",
    "category",
    "initial_msg",
)


class SessionRowMapper:
    """
    Turns raw feed text into normalized rows.

    Rows may be shorter than 16 columns (missing trailing values are empty);
    extra columns are ignored. A row without a session id is reported as an
    error and skipped.
    """

    def parse(self, text: str) -> CSVParseResult:
        rows: list[ParsedSessionRow] = []
        errors: list[RowParseError] = []

        reader = csv.reader(io.StringIO(text.lstrip("\ufeff")), delimiter=",")
        for row_number, values in enumerate(reader, start=1):
            if not any(value.strip() for value in values):
                continue
            try:
                rows.append(self.map_row(values))
            except ValueError as exc:
                logger.warning("Skipping feed row row_number=%s error=%s", row_number, exc)
                errors.append(
                    RowParseError(
                        row_number=row_number,
                        message=str(exc),
                        external_session_id=values[0].strip() if values else None,
                    )
                )

        return CSVParseResult(rows=rows, errors=errors)

    def map_row(self, values: Sequence[str]) -> ParsedSessionRow:
        raw = {
            column: (values[index].strip() if index < len(values) else "")
            for index, column in enumerate(FEED_COLUMNS)
        }

        session_id = raw["session_id"]
        if not session_id:
            raise ValueError("missing session_id")

        return ParsedSessionRow(
            external_session_id=session_id,
            raw_fields=raw,
            start_time=parse_timestamp_or_now(raw["start_time"], field_name="start_time"),
            end_time=parse_timestamp(raw["end_time"]),
            ip_address=raw["ip_address"] or None,
            country_code=normalize_country(raw["country"]),
            language=normalize_language(raw["language"]),
            messages_sent=parse_int(raw["messages_sent"]),
            sentiment_score=sentiment_to_score(raw["sentiment"]),
            escalated=is_truthy(raw["escalated"]),
            forwarded_hr=is_truthy(raw["forwarded_hr"]),
            transcript_url=raw["full_transcript_url"] or None,
            avg_response_time=parse_float(raw["avg_response_time"]),
            tokens=parse_int(raw["tokens"]),
            tokens_eur=parse_float(raw["tokens_eur"], default=0.0) or 0.0,
            category=normalize_category(raw["category"]),
            initial_message=raw["initial_msg"] or None,
        )
