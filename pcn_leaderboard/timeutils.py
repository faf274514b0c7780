"""Timestamp normalization shared by the engine, storage and ingestion."""
from __future__ import annotations

from datetime import datetime, timezone


def to_utc(dt: datetime) -> datetime:
    """Return ``dt`` as an aware UTC datetime. Naive values are treated as UTC."""

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def isoformat_utc(dt: datetime) -> str:
    """Format as ``YYYY-MM-DDTHH:MM:SS.mmmZ``.

    Millisecond precision with a ``Z`` suffix, so that sorting the text sorts
    the instants and digests built from it are reproducible elsewhere.
    """

    utc = to_utc(dt)
    return f"{utc.strftime('%Y-%m-%dT%H:%M:%S')}.{utc.microsecond // 1000:03d}Z"


def utc_day(dt: datetime) -> str:
    """UTC calendar date as ``YYYY-MM-DD``."""

    return to_utc(dt).date().isoformat()


def parse_timestamp(text: str) -> datetime:
    """Parse an ISO-8601 timestamp into an aware UTC datetime.

    Accepts a trailing ``Z``. Naive strings are interpreted as UTC.

    Raises:
        ValueError: If the text is not ISO-8601.
    """

    value = text.strip()
    if value.endswith(("Z", "z")):
        value = value[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(value)
    except ValueError as exc:
        raise ValueError(f"Invalid ISO 8601 datetime: {text!r}") from exc
    return to_utc(dt)


__all__ = ["isoformat_utc", "parse_timestamp", "to_utc", "utc_day"]
