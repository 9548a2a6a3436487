"""Timezone-aware datetime utilities.

Everything the store persists is an aware UTC instant serialized as RFC-3339
text. Work-hour decisions are the only place local time is used.
"""

from datetime import UTC, date, datetime, time, timedelta

from toki.core.logging import get_logger

logger = get_logger(__name__)


def utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(UTC)


def ensure_utc(dt: datetime | None) -> datetime | None:
    """Ensure datetime is timezone-aware UTC.

    Naive values are assumed to already represent UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def to_rfc3339(dt: datetime) -> str:
    """Serialize an instant as RFC-3339 text in UTC."""
    aware = ensure_utc(dt)
    assert aware is not None
    return aware.isoformat(timespec="microseconds")


def parse_rfc3339(value: str | None) -> datetime | None:
    """Parse RFC-3339 text into an aware UTC datetime.

    Un-parseable values are treated as absent and logged at warning level.
    """
    if not value:
        return None
    try:
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return ensure_utc(datetime.fromisoformat(text))
    except ValueError:
        logger.warning("Dropping un-parseable timestamp", extra={"value": value})
        return None


def utc_date_str(dt: datetime) -> str:
    """UTC calendar date (YYYY-MM-DD) of an instant, used as the project-time key."""
    aware = ensure_utc(dt)
    assert aware is not None
    return aware.date().isoformat()


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """Half-open UTC range [00:00, next 00:00) covering a calendar day."""
    start = datetime.combine(day, time.min, tzinfo=UTC)
    return start, start + timedelta(days=1)


def local_hour(dt: datetime) -> int:
    """Hour of day in local time; naive values are taken as already local."""
    if dt.tzinfo is None:
        return dt.hour
    return dt.astimezone().hour


def seconds_between(start: datetime, end: datetime) -> int:
    """Whole seconds from start to end, clamped at zero."""
    start_utc = ensure_utc(start)
    end_utc = ensure_utc(end)
    assert start_utc is not None and end_utc is not None
    return max(int((end_utc - start_utc).total_seconds()), 0)
