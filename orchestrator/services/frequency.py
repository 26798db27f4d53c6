"""
orchestrator/services/frequency.py

Re-scrape frequency parsing.

A target's frequency override is either one of a handful of short ISO-8601
tokens (looked up directly) or any other duration string, which goes through
the generic parsers below. All functions are pure; unparseable input yields
``None`` and the caller decides the fallback.
"""

from __future__ import annotations

import re
from datetime import timedelta

SHORT_TOKEN_FREQUENCIES: dict[str, timedelta] = {
    "PT1H": timedelta(hours=1),
    "PT2H": timedelta(hours=2),
    "PT4H": timedelta(hours=4),
    "PT6H": timedelta(hours=6),
    "PT12H": timedelta(hours=12),
    "P1D": timedelta(days=1),
    "P2D": timedelta(days=2),
    "P7D": timedelta(days=7),
}

_NUMBER = r"\d+(?:[.,]\d+)?"

# Years and months are rejected: their length depends on the calendar.
_ISO_DURATION = re.compile(
    rf"^P(?:(?P<weeks>{_NUMBER})W)?(?:(?P<days>{_NUMBER})D)?"
    rf"(?:T(?:(?P<hours>{_NUMBER})H)?(?:(?P<minutes>{_NUMBER})M)?(?:(?P<seconds>{_NUMBER})S)?)?$",
    re.IGNORECASE,
)

# [d.]hh:mm[:ss[.fffffff]] or a bare day count, as accepted by time-span parsers.
_TIME_SPAN = re.compile(
    r"^(?:(?P<days>\d+)\.)?(?P<hours>\d{1,2}):(?P<minutes>\d{1,2})"
    r"(?::(?P<seconds>\d{1,2})(?:\.(?P<fraction>\d{1,7}))?)?$"
)
_BARE_DAYS = re.compile(r"^\d+$")


def _to_float(value: str | None) -> float:
    if not value:
        return 0.0
    return float(value.replace(",", "."))


def parse_iso8601_duration(raw: str) -> timedelta | None:
    match = _ISO_DURATION.match(raw)
    if match is None:
        return None
    parts = match.groupdict()
    if all(value is None for value in parts.values()):
        return None
    if raw.upper().endswith("T"):
        return None
    try:
        return timedelta(
            weeks=_to_float(parts["weeks"]),
            days=_to_float(parts["days"]),
            hours=_to_float(parts["hours"]),
            minutes=_to_float(parts["minutes"]),
            seconds=_to_float(parts["seconds"]),
        )
    except (OverflowError, ValueError):
        # beyond timedelta.max
        return None


def parse_time_span(raw: str) -> timedelta | None:
    if _BARE_DAYS.match(raw):
        try:
            return timedelta(days=int(raw))
        except (OverflowError, ValueError):
            return None

    match = _TIME_SPAN.match(raw)
    if match is None:
        return None
    hours = int(match["hours"])
    minutes = int(match["minutes"])
    seconds = int(match["seconds"] or 0)
    if hours > 23 or minutes > 59 or seconds > 59:
        return None
    fraction = match["fraction"]
    microseconds = int(fraction.ljust(7, "0")[:6]) if fraction else 0
    try:
        return timedelta(
            days=int(match["days"] or 0),
            hours=hours,
            minutes=minutes,
            seconds=seconds,
            microseconds=microseconds,
        )
    except (OverflowError, ValueError):
        return None


_PARSERS = (parse_iso8601_duration, parse_time_span)


def parse_frequency(raw: str | None) -> timedelta | None:
    """
    Resolve a frequency override to a positive duration, or None.
    """

    if raw is None:
        return None
    token = raw.strip()
    if not token:
        return None

    known = SHORT_TOKEN_FREQUENCIES.get(token.upper())
    if known is not None:
        return known

    for parser in _PARSERS:
        parsed = parser(token)
        if parsed is not None:
            return parsed if parsed > timedelta(0) else None
    return None
