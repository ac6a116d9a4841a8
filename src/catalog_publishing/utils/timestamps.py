"""Timestamp parsing and ISO-8601 formatting helpers."""

from __future__ import annotations

from datetime import UTC, datetime


def parse_timestamp(value: datetime | str | None) -> datetime | None:
    """Return an aware UTC datetime, or ``None`` when the value is unusable.

    Naive datetimes are assumed to be UTC, which matches how the catalog
    tables store their timestamps.
    """

    if value is None:
        return None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        candidate = value.strip()
        if not candidate:
            return None
        try:
            parsed = datetime.fromisoformat(candidate)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def format_timestamp(value: datetime) -> str:
    """Format as ``YYYY-MM-DDTHH:MM:SS.mmmZ`` in UTC."""

    normalized = value.astimezone(UTC) if value.tzinfo else value.replace(tzinfo=UTC)
    milliseconds = normalized.microsecond // 1000
    return f"{normalized.strftime('%Y-%m-%dT%H:%M:%S')}.{milliseconds:03d}Z"


def to_iso_timestamp(value: datetime | str | None) -> str | None:
    parsed = parse_timestamp(value)
    if parsed is None:
        return None
    return format_timestamp(parsed)


def utc_now_iso() -> str:
    return format_timestamp(datetime.now(UTC))
