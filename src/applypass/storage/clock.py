"""UTC timestamp helpers.

The task store keeps naive UTC values in its columns; everything above the
store works with timezone-aware UTC datetimes.
"""

from __future__ import annotations

from datetime import UTC, datetime


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def as_utc(value: datetime) -> datetime:
    """Interpret naive values as UTC and convert aware ones to UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def to_storage_time(value: datetime) -> datetime:
    """Naive UTC form used for column writes and comparisons."""

    return as_utc(value).replace(tzinfo=None)


def parse_timestamp(value: str) -> datetime:
    return as_utc(datetime.fromisoformat(value))
