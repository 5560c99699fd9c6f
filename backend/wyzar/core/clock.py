"""Time helpers shared by the guards and the resolver.

Services take a ``Clock`` so tests can move time without sleeping.
"""

from collections.abc import Callable
from datetime import UTC, datetime

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current time, timezone-aware UTC."""
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Normalize a datetime to aware UTC.

    Some backends (SQLite) return naive datetimes for timezone-aware
    columns; those values are stored as UTC, so they are tagged as such.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def to_timestamp(value: datetime) -> float:
    """POSIX timestamp for storing times in JSON records."""
    return as_utc(value).timestamp()


def from_timestamp(value: float) -> datetime:
    """Inverse of to_timestamp()."""
    return datetime.fromtimestamp(value, tz=UTC)
