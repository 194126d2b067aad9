"""
Timestamps.

The database stores naive datetimes that are always UTC. Anything coming in
with an offset is converted; anything going out gets a trailing 'Z'.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def epoch_millis(dt: Optional[datetime] = None) -> int:
    return int(_as_utc(dt or utcnow()).timestamp() * 1000)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    "2026-03-01T10:00", "...Z" and "...+03:00" all become naive UTC.
    Blank input is None; anything else unparsable raises ValueError.
    """
    text = (value or "").strip()
    if not text:
        return None
    if text[-1] in "zZ":
        text = text[:-1] + "+00:00"
    return _as_utc(datetime.fromisoformat(text)).replace(tzinfo=None)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    return _as_utc(dt).replace(microsecond=0).isoformat().replace("+00:00", "Z")
