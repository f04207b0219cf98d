"""Timestamp helpers for comparing records from independently clocked sources."""

import re
from datetime import datetime, timezone
from typing import Optional

# Proxy timestamps may carry nanoseconds; datetime keeps exactly microseconds.
_FRACTION_RE = re.compile(r"\.(\d+)")


def _normalize_fraction(match: re.Match) -> str:
    return "." + match.group(1)[:6].ljust(6, "0")


def parse_iso_date(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp (``Z`` suffix allowed) into an aware UTC datetime."""
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    text = _FRACTION_RE.sub(_normalize_fraction, text, count=1)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return to_utc(parsed)


def to_utc(value: datetime) -> datetime:
    """Normalize to UTC. Naive datetimes are treated as local time."""
    return value.astimezone(timezone.utc)


def seconds_between(a: datetime, b: datetime) -> float:
    """Absolute distance in seconds, safe for naive/aware mixes."""
    return abs((to_utc(a) - to_utc(b)).total_seconds())
