"""
app/mappers/transcript_parser.py

Line-prefix parser for plain-text chat transcripts.

Expected layout, one message per line, continuation lines allowed::

    [01.06.2024 10:15:02] User: hello
    Assistant: hi, how can I help?
    I can also do this.

Lines before the first role prefix are ignored.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone

from app.domain.chat_import import ParsedTurn
from app.mappers.field_normalizers import EUROPEAN_TIMESTAMP_FORMAT

_MESSAGE_PATTERN = re.compile(
    r"^(?:\[(?P<timestamp>\d{2}\.\d{2}\.\d{4} \d{2}:\d{2}:\d{2})\]\s*)?"
    r"(?P<role>user|assistant|system):\s*(?P<content>.*)$",
    re.IGNORECASE,
)


@dataclass
class _PendingTurn:
    role: str
    content: str
    timestamp: datetime | None


def parse_transcript(
    content: str,
    *,
    start_time: datetime,
    end_time: datetime | None = None,
) -> list[ParsedTurn]:
    """
    Parse transcript text into ordered turns.

    Turns without an inline timestamp are spread evenly between
    ``start_time`` and ``end_time`` by position. Returns an empty list when
    no role-prefixed line is found.
    """

    pending: list[_PendingTurn] = []
    current: _PendingTurn | None = None

    for line in content.splitlines():
        stripped = line.strip()
        if not stripped:
            continue

        match = _MESSAGE_PATTERN.match(stripped)
        if match:
            current = _PendingTurn(
                role=match.group("role").capitalize(),
                content=match.group("content"),
                timestamp=_parse_inline_timestamp(match.group("timestamp")),
            )
            pending.append(current)
        elif current is not None:
            current.content = f"{current.content}\n{stripped}"

    if not pending:
        return []

    end = end_time if end_time is not None and end_time >= start_time else start_time
    step = (end - start_time) / (len(pending) - 1) if len(pending) > 1 else end - start_time

    turns: list[ParsedTurn] = []
    for order, turn in enumerate(pending):
        text = turn.content.strip()
        turns.append(
            ParsedTurn(
                role=turn.role,
                content=text,
                order=order,
                timestamp=turn.timestamp or start_time + step * order,
            )
        )
    return turns


def _parse_inline_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.strptime(value, EUROPEAN_TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError:
        return None
