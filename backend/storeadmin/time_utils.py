# Overview: UTC clock and timestamp conversions shared by models, tokens and the rate limiter.

"""
All timestamps are stored as naive datetimes that mean UTC. Anything leaving
the process (JSON, JWT claims) is converted here.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _as_aware(dt: datetime) -> datetime:
    return dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Read an ISO-8601 string from a query parameter or request body.

    Blank means absent. A trailing 'Z' or explicit offset is honoured and the
    result is shifted to naive UTC; input without an offset is taken as UTC.
    Raises ValueError on anything fromisoformat rejects.
    """
    if value is None or not value.strip():
        return None
    text = value.strip()
    if text[-1] in "zZ":
        text = f"{text[:-1]}+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Second-precision ISO-8601 with a 'Z' suffix, for JSON responses."""
    if dt is None:
        return None
    stamp = _as_aware(dt).astimezone(timezone.utc).replace(microsecond=0)
    return stamp.strftime("%Y-%m-%dT%H:%M:%SZ")


def epoch_seconds(dt: datetime) -> int:
    return int(_as_aware(dt).timestamp())


def seconds_between(earlier: datetime, later: datetime) -> float:
    return (later - earlier).total_seconds()
