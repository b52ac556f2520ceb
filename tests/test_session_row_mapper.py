"""
tests/test_session_row_mapper.py

Positional CSV feed parsing.
"""

from __future__ import annotations

from datetime import datetime, timezone

from app.mappers.session_row_mapper import FEED_COLUMNS, SessionRowMapper

ROW = (
    "sess-1,01.06.2024 10:00:00,01.06.2024 10:05:00,10.0.0.1,Nederland,Dutch,4,happy,ja,no,"
    "https://transcripts.example.com/sess-1.txt,2.5,120,0.02,loonstrook,Hallo daar"
)


def test_feed_has_sixteen_columns() -> None:
    assert len(FEED_COLUMNS) == 16


def test_full_row_is_normalized() -> None:
    result = SessionRowMapper().parse(ROW)
    assert result.errors == []
    [row] = result.rows
    assert row.external_session_id == "sess-1"
    assert row.start_time == datetime(2024, 6, 1, 10, 0, tzinfo=timezone.utc)
    assert row.end_time == datetime(2024, 6, 1, 10, 5, tzinfo=timezone.utc)
    assert row.country_code == "NL"
    assert row.language == "nl"
    assert row.messages_sent == 4
    assert row.sentiment_score == 1.0
    assert row.escalated is True
    assert row.forwarded_hr is False
    assert row.transcript_url == "https://transcripts.example.com/sess-1.txt"
    assert row.tokens == 120
    assert row.tokens_eur == 0.02
    assert row.category == "HR & Payroll"
    assert row.initial_message == "Hallo daar"
    assert row.raw_fields["country"] == "Nederland"


def test_short_row_fills_missing_columns() -> None:
    [row] = SessionRowMapper().parse("sess-2,01.06.2024 10:00:00").rows
    assert row.end_time is None
    assert row.transcript_url is None
    assert row.tokens == 0
    assert row.tokens_eur == 0.0
    assert row.category is None


def test_row_without_session_id_is_reported_and_skipped() -> None:
    text = f"{ROW}\n,01.06.2024 10:00:00,,,,,,,,,,,,,,\n"
    result = SessionRowMapper().parse(text)
    assert len(result.rows) == 1
    assert len(result.errors) == 1
    assert result.errors[0].row_number == 2


def test_blank_lines_and_bom_are_ignored() -> None:
    result = SessionRowMapper().parse("\ufeff" + ROW + "\n\n  \n")
    assert [row.external_session_id for row in result.rows] == ["sess-1"]
    assert result.errors == []


def test_quoted_field_with_comma() -> None:
    text = 'sess-3,01.06.2024 10:00:00,,,,,,,,,,,,,,"Hi, I need help"'
    [row] = SessionRowMapper().parse(text).rows
    assert row.initial_message == "Hi, I need help"
