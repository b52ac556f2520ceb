"""
app/mappers package marker.
"""

from app.mappers.field_normalizers import (
    is_truthy,
    normalize_category,
    normalize_country,
    normalize_language,
    parse_timestamp,
    sentiment_to_score,
)
from app.mappers.session_row_mapper import FEED_COLUMNS, SessionRowMapper
from app.mappers.transcript_parser import parse_transcript

__all__ = [
    "FEED_COLUMNS",
    "SessionRowMapper",
    "is_truthy",
    "normalize_category",
    "normalize_country",
    "normalize_language",
    "parse_timestamp",
    "parse_transcript",
    "sentiment_to_score",
]
