"""UTC helpers shared by the domain and persistence layers."""

from datetime import UTC, date, datetime, time


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def as_aware_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def to_naive_utc(value: datetime) -> datetime:
    """Naive UTC datetime for storage columns without time zone support."""
    return as_aware_utc(value).replace(tzinfo=None)


def end_of_day(day: date) -> datetime:
    """Last representable instant of ``day`` in UTC."""
    return datetime.combine(day, time.max, tzinfo=UTC)


def start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=UTC)
