"""
app/mappers/field_normalizers.py

Normalizers for the free-text columns of the session CSV feed.

Every function is lenient: unknown input maps to ``None`` (or a documented
default) rather than raising, so one odd value never rejects a whole row.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

import pycountry

logger = logging.getLogger(__name__)

COUNTRY_ALIASES: dict[str, str] = {
    "usa": "US",
    "uk": "GB",
    "nederland": "NL",
    "netherlands": "NL",
    "netherland": "NL",
    "holland": "NL",
    "germany": "DE",
    "deutschland": "DE",
    "belgium": "BE",
    "belgië": "BE",
    "belgique": "BE",
    "france": "FR",
    "frankreich": "FR",
    "united states": "US",
    "united states of america": "US",
    "bosnia": "BA",
    "bosnia and herzegovina": "BA",
    "bosnia & herzegovina": "BA",
}

LANGUAGE_ALIASES: dict[str, str] = {
    "english": "en",
    "dutch": "nl",
    "nederlands": "nl",
    "bosnian": "bs",
    "turkish": "tr",
    "german": "de",
    "deutsch": "de",
    "french": "fr",
    "français": "fr",
    "spanish": "es",
    "español": "es",
    "italian": "it",
    "italiano": "it",
    "nizozemski": "nl",
}

SENTIMENT_SCORES: dict[str, float] = {
    "happy": 1.0,
    "excited": 1.5,
    "positive": 0.8,
    "neutral": 0.0,
    "playful": 0.7,
    "negative": -0.8,
    "angry": -1.0,
    "sad": -0.7,
    "frustrated": -0.9,
    # Dutch
    "positief": 0.8,
    "neutraal": 0.0,
    "negatief": -0.8,
    # Spanish / Italian
    "positivo": 0.8,
    "neutro": 0.0,
    "negativo": -0.8,
    "yes": 0.5,
    "no": -0.5,
}

OTHER_CATEGORY = "Other"

# Checked in order; first bucket with a keyword contained in the value wins.
CATEGORY_KEYWORDS: dict[str, tuple[str, ...]] = {
    "Onboarding": (
        "onboarding", "start", "begin", "new", "orientation", "welcome", "intro",
        "getting started", "documents", "documenten", "first day", "eerste dag",
    ),
    "General Information": (
        "general", "algemeen", "info", "information", "informatie", "question",
        "vraag", "inquiry", "chat", "conversation", "gesprek", "talk",
    ),
    "Greeting": (
        "greeting", "greet", "hello", "hi", "hey", "welcome", "hallo", "hoi", "greetings",
    ),
    "HR & Payroll": (
        "salary", "salaris", "pay", "payroll", "loon", "loonstrook", "hr",
        "human resources", "benefits", "vacation", "leave", "verlof",
        "maaltijdvergoeding", "vergoeding",
    ),
    "Schedules & Hours": (
        "schedule", "hours", "tijd", "time", "roster", "rooster", "planning",
        "shift", "dienst", "working hours", "werktijden", "openingstijden",
    ),
    "Role & Responsibilities": (
        "role", "job", "function", "functie", "task", "taak", "responsibilities",
        "leidinggevende", "manager", "teamleider", "supervisor", "team", "lead",
    ),
    "Technical Support": (
        "technical", "tech", "support", "laptop", "computer", "system", "systeem",
        "it", "software", "hardware",
    ),
    "Offboarding": (
        "offboarding", "leave", "exit", "quit", "resign", "resignation", "ontslag",
        "vertrek", "afsluiting",
    ),
}

TRUTHY_TOKENS: frozenset[str] = frozenset({"1", "true", "yes", "y", "ja", "si", "oui", "да", "はい"})

EUROPEAN_TIMESTAMP_FORMAT = "%d.%m.%Y %H:%M:%S"

_FALLBACK_TIMESTAMP_FORMATS: tuple[str, ...] = (
    "%d.%m.%Y %H:%M",
    "%d.%m.%Y",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%d-%m-%Y %H:%M:%S",
    "%d/%m/%Y %H:%M:%S",
    "%d/%m/%Y",
)


def normalize_country(value: str | None) -> str | None:
    """
    Map a country code or name to an ISO 3166-1 alpha-2 code.
    """

    if value is None:
        return None
    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) == 2 and normalized.isupper():
        return normalized if pycountry.countries.get(alpha_2=normalized) is not None else None

    alias = COUNTRY_ALIASES.get(normalized.lower())
    if alias is not None:
        return alias

    try:
        return pycountry.countries.lookup(normalized).alpha_2
    except LookupError:
        return None


def normalize_language(value: str | None) -> str | None:
    """
    Map a language code or name (English or native) to an ISO 639-1 code.
    """

    if value is None:
        return None
    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) == 2 and normalized.islower():
        return normalized if pycountry.languages.get(alpha_2=normalized) is not None else None

    alias = LANGUAGE_ALIASES.get(normalized.lower())
    if alias is not None:
        return alias

    try:
        language = pycountry.languages.lookup(normalized)
    except LookupError:
        return None
    return getattr(language, "alpha_2", None)


def sentiment_to_score(value: str | None) -> float | None:
    if not value or not value.strip():
        return None
    token = value.strip().lower()
    if token in SENTIMENT_SCORES:
        return SENTIMENT_SCORES[token]
    return _parse_optional_float(token)


def normalize_category(value: str | None) -> str | None:
    """
    Bucket a free-text category into a fixed set; unmatched text is "Other".
    """

    if not value or not value.strip():
        return None
    normalized = value.strip().lower()
    for category, keywords in CATEGORY_KEYWORDS.items():
        if any(keyword in normalized for keyword in keywords):
            return category
    return OTHER_CATEGORY


def is_truthy(value: str | None) -> bool:
    if not value:
        return False
    return value.strip().lower() in TRUTHY_TOKENS


def parse_timestamp(value: str | None) -> datetime | None:
    """
    Parse a feed timestamp into an aware UTC datetime.

    ``DD.MM.YYYY HH:MM:SS`` is tried first, then ISO-8601 and a few common
    layouts. Naive values are taken as UTC.
    """

    if value is None:
        return None
    text = value.strip()
    if not text:
        return None

    for fmt in (EUROPEAN_TIMESTAMP_FORMAT, *_FALLBACK_TIMESTAMP_FORMATS):
        try:
            return datetime.strptime(text, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue

    iso_text = text[:-1] + "+00:00" if text.endswith("Z") else text
    try:
        parsed = datetime.fromisoformat(iso_text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def parse_timestamp_or_now(value: str | None, *, field_name: str) -> datetime:
    """
    Like ``parse_timestamp`` but falls back to the current time.

    The fallback is lossy; it is logged so bad feeds are visible.
    """

    parsed = parse_timestamp(value)
    if parsed is not None:
        return parsed
    logger.warning("Unparseable timestamp, using now field=%s value=%r", field_name, value)
    return datetime.now(timezone.utc)


def parse_int(value: str | None, default: int = 0) -> int:
    parsed = _parse_optional_float(value)
    if parsed is None:
        return default
    return int(parsed)


def parse_float(value: str | None, default: float | None = None) -> float | None:
    parsed = _parse_optional_float(value)
    return default if parsed is None else parsed


def _parse_optional_float(value: str | None) -> float | None:
    if value is None:
        return None
    text = value.strip()
    if not text:
        return None
    try:
        parsed = float(text)
    except ValueError:
        return None
    if parsed != parsed or parsed in (float("inf"), float("-inf")):
        return None
    return parsed
