"""Datetime helpers for wall-clock scheduling and date sharding.

Digests are sharded by the server's local calendar date and tasks fire on
local wall-clock minutes, so everything here works with aware datetimes in
the process's local timezone. Persisted timestamps stay in UTC.

Usage:
    from fluxdigest.core.datetime_utils import local_now, local_date_str

    now = local_now()
    shard = f"{user}_{local_date_str(now)}.json"
"""

from datetime import UTC, datetime


def utc_now() -> datetime:
    """Get current UTC time as an aware datetime."""
    return datetime.now(UTC)


def local_now() -> datetime:
    """Get current local wall-clock time as an aware datetime."""
    return datetime.now().astimezone()


def to_local(dt: datetime) -> datetime:
    """Convert to local time; naive values are taken as local already."""
    return dt.astimezone()


def epoch_ms(dt: datetime) -> int:
    """Milliseconds since the Unix epoch."""
    return int(dt.timestamp() * 1000)


def from_epoch_ms(ms: int) -> datetime:
    """Aware UTC datetime from milliseconds since the epoch."""
    return datetime.fromtimestamp(ms / 1000, tz=UTC)


def local_date_str(dt: datetime) -> str:
    """Local calendar date as YYYY-MM-DD."""
    return to_local(dt).strftime("%Y-%m-%d")


def hhmm(dt: datetime) -> str:
    """Local wall-clock time as HH:MM."""
    return to_local(dt).strftime("%H:%M")


def to_iso(dt: datetime) -> str:
    """ISO-8601 in UTC with millisecond precision and a Z suffix."""
    return dt.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_instant(value: datetime | str | int | float | None) -> datetime | None:
    """Parse an instant given as datetime, ISO-8601 string or epoch milliseconds.

    Returns:
        Aware datetime, or None when the value cannot be interpreted
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.astimezone()
    if isinstance(value, int | float):
        return from_epoch_ms(int(value))

    text = str(value).strip()
    if text.lstrip("-").isdigit():
        return from_epoch_ms(int(text))
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.astimezone()
