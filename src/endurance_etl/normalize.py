"""Normalization functions for timing CSV ingestion.

Tolerant parsers (trim, parse_int, parse_decimal) accept str | None and
return None for blank or unparsable input.  Time parsers are strict: a value
of the wrong shape raises the matching error from endurance_etl.errors.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation

from endurance_etl.errors import (
    MalformedElapsedTime,
    MalformedLapTime,
    MalformedSectorTime,
    MalformedTimestamp,
)

_MICROS = Decimal("0.000001")

_LAP_TIME_SHORT_RE = re.compile(r"^(\d+):(\d{1,2}\.\d+)$")
_LAP_TIME_LONG_RE = re.compile(r"^(\d+):(\d{1,2}):(\d{1,2}(?:\.\d+)?)$")
_SECTOR_TIME_RE = re.compile(r"^(\d{1,2}):(\d{1,2}\.\d+)$")
_ELAPSED_SHORT_RE = re.compile(r"^(\d{1,2}):(\d{2}(?:\.\d+)?)$")
_ELAPSED_LONG_RE = re.compile(r"^(\d{1,2}):(\d{2}):(\d{2}(?:\.\d+)?)$")
_WALL_CLOCK_LONG_RE = re.compile(r"^(\d{1,2}):(\d{2}):(\d{2})(?:\.(\d{1,6}))?$")
_WALL_CLOCK_SHORT_RE = re.compile(r"^(\d{1,2}):(\d{2})(?:\.(\d{1,6}))?$")


# ---------------------------------------------------------------------------
# Rule 1: trim
# ---------------------------------------------------------------------------

def trim(value: str | None) -> str | None:
    """Strip leading/trailing whitespace; treat empty string as None."""
    if value is None:
        return None
    v = value.strip()
    return v if v else None


# ---------------------------------------------------------------------------
# Rule 2: normalize_space
# ---------------------------------------------------------------------------

def normalize_space(value: str | None) -> str | None:
    """Collapse internal runs of whitespace to single spaces, then trim."""
    v = trim(value)
    if v is None:
        return None
    return re.sub(r"\s+", " ", v)


# ---------------------------------------------------------------------------
# Rule 3: tolerant numeric parsing (optional columns)
# ---------------------------------------------------------------------------

def parse_int(value: str | None) -> int | None:
    """Parse an integer, returning None on blank or unparsable input."""
    v = trim(value)
    if v is None:
        return None
    try:
        return int(v)
    except ValueError:
        return None


def parse_decimal(value: str | None) -> Decimal | None:
    """Parse a decimal number from a string, returning None on failure."""
    v = trim(value)
    if v is None:
        return None
    try:
        d = Decimal(v)
    except InvalidOperation:
        return None
    return d if d.is_finite() else None


# ---------------------------------------------------------------------------
# Rule 4: lap time  ("1:48.656" / "4:30:00.623")
# ---------------------------------------------------------------------------

def parse_lap_time(value: str | None) -> Decimal:
    """Return lap time in seconds.

    Accepts mm:ss.sss (two parts, seconds carry a decimal point) or
    h:mm:ss.sss (three parts).  Raises MalformedLapTime otherwise.
    """
    v = trim(value)
    if v is None:
        raise MalformedLapTime("lap time is blank")
    m = _LAP_TIME_SHORT_RE.match(v)
    if m:
        return int(m.group(1)) * 60 + Decimal(m.group(2))
    m = _LAP_TIME_LONG_RE.match(v)
    if m:
        return int(m.group(1)) * 3600 + int(m.group(2)) * 60 + Decimal(m.group(3))
    raise MalformedLapTime(f"malformed lap time: {v!r}")


# ---------------------------------------------------------------------------
# Rule 5: sector time  (S{n}_LARGE, "0:31.582")
# ---------------------------------------------------------------------------

def parse_large_sector_time(value: str | None) -> Decimal:
    """Return sector time in seconds from mm:ss.sss.  No hour component."""
    v = trim(value)
    if v is None:
        raise MalformedSectorTime("sector time is blank")
    m = _SECTOR_TIME_RE.match(v)
    if not m:
        raise MalformedSectorTime(f"malformed sector time: {v!r}")
    return int(m.group(1)) * 60 + Decimal(m.group(2))


# ---------------------------------------------------------------------------
# Rule 6: elapsed time → seconds
# ---------------------------------------------------------------------------

def parse_elapsed_seconds(value: str | None) -> Decimal:
    """Return elapsed session time in seconds with six fractional digits."""
    v = trim(value)
    if v is None:
        raise MalformedElapsedTime("elapsed time is blank")
    m = _ELAPSED_SHORT_RE.match(v)
    if m:
        total = int(m.group(1)) * 60 + Decimal(m.group(2))
        return total.quantize(_MICROS)
    m = _ELAPSED_LONG_RE.match(v)
    if m:
        total = int(m.group(1)) * 3600 + int(m.group(2)) * 60 + Decimal(m.group(3))
        return total.quantize(_MICROS)
    raise MalformedElapsedTime(f"malformed elapsed time: {v!r}")


# ---------------------------------------------------------------------------
# Rule 7: wall-clock reconstruction
# ---------------------------------------------------------------------------

def _fraction_to_micros(fraction: str | None) -> int:
    if not fraction:
        return 0
    return int(fraction.ljust(6, "0"))


def parse_wall_clock(
    value: str | None,
    elapsed_seconds: Decimal,
    session_start: datetime,
) -> datetime:
    """Rebuild an absolute timestamp from a time-of-day reading.

    Timing exports carry only the wall-clock time, so the calendar date comes
    from session_start + elapsed_seconds.  HH:MM:SS.mmm overlays hour, minute
    and second onto that estimate; MM:SS.mmm keeps the estimate's hour.  A
    result more than half a period from the estimate is moved one period
    toward it (readings either side of midnight, or of the hour).
    """
    v = trim(value)
    if v is None:
        raise MalformedTimestamp("timestamp is blank")

    long_match = _WALL_CLOCK_LONG_RE.match(v)
    short_match = None if long_match else _WALL_CLOCK_SHORT_RE.match(v)
    if long_match is None and short_match is None:
        raise MalformedTimestamp(f"malformed timestamp: {v!r}")

    estimate = session_start + timedelta(seconds=float(elapsed_seconds))
    try:
        if long_match:
            candidate = estimate.replace(
                hour=int(long_match.group(1)),
                minute=int(long_match.group(2)),
                second=int(long_match.group(3)),
                microsecond=_fraction_to_micros(long_match.group(4)),
            )
            period = timedelta(days=1)
        else:
            candidate = estimate.replace(
                minute=int(short_match.group(1)),
                second=int(short_match.group(2)),
                microsecond=_fraction_to_micros(short_match.group(3)),
            )
            period = timedelta(hours=1)
    except ValueError as exc:
        # hour/minute/second out of range
        raise MalformedTimestamp(f"malformed timestamp: {v!r}") from exc

    if candidate - estimate > period / 2:
        candidate -= period
    elif estimate - candidate > period / 2:
        candidate += period
    return candidate


# ---------------------------------------------------------------------------
# Helper: split_wec_name
# ---------------------------------------------------------------------------

def split_wec_name(full_name: str | None) -> tuple[str, str]:
    """Split a WEC driver name into (first_name, last_name).

    WEC prints family names in capitals: "Connor DE PHILLIPPI" →
    ("Connor", "DE PHILLIPPI").  A name written entirely in capitals lands
    wholly in the last name: "JEAN-ERIC VERGNE" → ("", "JEAN-ERIC VERGNE").
    """
    first: list[str] = []
    last: list[str] = []
    for token in (full_name or "").split():
        if token == token.upper():
            last.append(token)
        else:
            first.append(token)
    return " ".join(first), " ".join(last)


# ---------------------------------------------------------------------------
# Helper: format_lap_time
# ---------------------------------------------------------------------------

def format_lap_time(seconds: Decimal | None) -> str:
    """Format seconds as m:ss.SSS (milliseconds truncated)."""
    if seconds is None:
        return "0:00.000"
    seconds = Decimal(seconds)
    whole = int(seconds)
    millis = int((seconds - whole) * 1000)
    return f"{whole // 60}:{whole % 60:02d}.{millis:03d}"
