"""Resolve the delivery date customers type into an absolute timestamp.

Patterns are tried in a fixed order and the first match wins: today phrases,
tomorrow phrases, "dans N jours" / "après-demain", day + French month name,
ISO ``YYYY-MM-DD``, ``DD/MM/YYYY`` and ``DD-MM-YYYY``. Each may carry an hour
("à 15h", "15h30", "15:30"); without one the delivery defaults to
``DEFAULT_DELIVERY_HOUR`` local time. Timestamps are aware, in ``APP_TIMEZONE``.
"""
from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from app.core.config import APP_TIMEZONE, DEFAULT_DELIVERY_HOUR
from app.conversation.text import fold

MONTHS = {
    "janvier": 1,
    "fevrier": 2,
    "mars": 3,
    "avril": 4,
    "mai": 5,
    "juin": 6,
    "juillet": 7,
    "aout": 8,
    "septembre": 9,
    "octobre": 10,
    "novembre": 11,
    "decembre": 12,
}

_NUMBER_WORDS = {
    "un": 1,
    "une": 1,
    "deux": 2,
    "trois": 3,
    "quatre": 4,
    "cinq": 5,
    "six": 6,
    "sept": 7,
}

_TODAY = re.compile(r"\b(aujourd'hui|aujourdhui|aujourd hui|auj|ce soir|ce matin|ce midi|cet apres[ -]midi)\b")
_TOMORROW = re.compile(r"(?<!apres[ -])\bdemain\b")
_AFTER_TOMORROW = re.compile(r"\bapres[ -]demain\b")
_IN_DAYS = re.compile(r"\bdans\s+(\d{1,2}|un|une|deux|trois|quatre|cinq|six|sept)\s+jours?\b")
_DAY_MONTH = re.compile(
    r"\b(\d{1,2})(?:er)?\s+(" + "|".join(MONTHS) + r")\b(?:\s+(\d{4})\b)?"
)
_ISO = re.compile(r"\b(\d{4})-(\d{1,2})-(\d{1,2})(?:[ t]+(\d{1,2})(?:[:h](\d{2}))?)?")
_SLASHED = re.compile(r"\b(\d{1,2})/(\d{1,2})/(\d{4})(?:\s+(\d{1,2})(?:[:h](\d{2}))?)?")
_DASHED = re.compile(r"\b(\d{1,2})-(\d{1,2})-(\d{4})(?:\s+(\d{1,2})(?:[:h](\d{2}))?)?")
_HOUR = re.compile(r"\b(\d{1,2})\s*(?:heures?|h|:)\s*(\d{2})?")

_LEXICAL_PATTERNS = (_TODAY, _TOMORROW, _AFTER_TOMORROW, _IN_DAYS, _DAY_MONTH, _ISO, _SLASHED, _DASHED)


def local_zone() -> ZoneInfo:
    return ZoneInfo(APP_TIMEZONE)


def local_now(now: datetime | None = None) -> datetime:
    zone = local_zone()
    if now is None:
        return datetime.now(zone)
    if now.tzinfo is None:
        return now.replace(tzinfo=zone)
    return now.astimezone(zone)


def looks_like_delivery(raw_text: str | None) -> bool:
    text = fold(raw_text)
    return any(pattern.search(text) for pattern in _LEXICAL_PATTERNS)


def _hour_outside(text: str, match: re.Match) -> tuple[int | None, int | None]:
    rest = f"{text[:match.start()]} {text[match.end():]}"
    hour_match = _HOUR.search(rest)
    if not hour_match:
        return None, None
    minute = hour_match.group(2)
    return int(hour_match.group(1)), int(minute) if minute else None


def _hour_inside(match: re.Match) -> tuple[int | None, int | None]:
    hour, minute = match.group(4), match.group(5)
    return (int(hour) if hour else None), (int(minute) if minute else None)


def _combine(day: date, hour: int | None, minute: int | None) -> datetime:
    if hour is None:
        hour, minute = DEFAULT_DELIVERY_HOUR, 0
    return datetime.combine(day, time(hour, minute or 0, 0), tzinfo=local_zone())


def _resolve(text: str, now: datetime) -> datetime | None:
    today = now.date()

    match = _TODAY.search(text)
    if match:
        return _combine(today, *_hour_outside(text, match))

    match = _TOMORROW.search(text)
    if match:
        return _combine(today + timedelta(days=1), *_hour_outside(text, match))

    match = _AFTER_TOMORROW.search(text)
    if match:
        return _combine(today + timedelta(days=2), *_hour_outside(text, match))

    match = _IN_DAYS.search(text)
    if match:
        amount = match.group(1)
        days = int(amount) if amount.isdigit() else _NUMBER_WORDS[amount]
        return _combine(today + timedelta(days=days), *_hour_outside(text, match))

    match = _DAY_MONTH.search(text)
    if match:
        day, month = int(match.group(1)), MONTHS[match.group(2)]
        hour, minute = _hour_outside(text, match)
        if match.group(3):
            return _combine(date(int(match.group(3)), month, day), hour, minute)
        resolved = _combine(date(today.year, month, day), hour, minute)
        if resolved < now:
            resolved = _combine(date(today.year + 1, month, day), hour, minute)
        return resolved

    match = _ISO.search(text)
    if match:
        year, month, day = int(match.group(1)), int(match.group(2)), int(match.group(3))
        return _combine(date(year, month, day), *_hour_inside(match))

    for pattern in (_SLASHED, _DASHED):
        match = pattern.search(text)
        if match:
            day, month, year = int(match.group(1)), int(match.group(2)), int(match.group(3))
            return _combine(date(year, month, day), *_hour_inside(match))

    return None


def parse_delivery_date(raw_text: str | None, now: datetime | None = None) -> datetime | None:
    text = fold(raw_text)
    if not text:
        return None
    try:
        return _resolve(text, local_now(now))
    except ValueError:
        # 31/02, 25h, ...
        return None


def parse_stored_timestamp(value: datetime | str | None) -> datetime | None:
    """The ISO timestamp kept in ``delivery_requested_at``. Anything else is None."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=local_zone())
    return parsed


def is_past(value: datetime | str | None, now: datetime | None = None) -> bool:
    """True when ``value`` is before ``now``. Missing or unreadable input counts as past."""
    parsed = parse_stored_timestamp(value)
    if parsed is None:
        return True
    return parsed < local_now(now)
