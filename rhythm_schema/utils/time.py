"""
UTC timestamp utilities for rhythm-schema.

Migration records, store rows and log lines all carry UTC timestamps with an
explicit 'Z' suffix. Naive datetimes are never produced here.

Examples:
    >>> from rhythm_schema.utils.time import utc_timestamp, parse_timestamp
    >>> stamp = utc_timestamp()
    >>> stamp
    '2026-03-01T09:15:00Z'
    >>> parse_timestamp(stamp).year
    2026
"""

from datetime import UTC, datetime


def utc_now() -> datetime:
    """
    Return current time in UTC with timezone info.

    This is the only place the package reads the wall clock, which keeps
    tests deterministic under freezegun.
    """
    return datetime.now(UTC)


def utc_timestamp(dt: datetime | None = None) -> str:
    """
    Return an ISO 8601 timestamp string with 'Z' suffix.

    Format: YYYY-MM-DDTHH:MM:SSZ

    Args:
        dt: Optional timezone-aware datetime to format. Defaults to utc_now().

    Returns:
        str: ISO 8601 formatted timestamp in UTC

    Raises:
        ValueError: If dt is naive (missing timezone)
    """
    if dt is None:
        dt = utc_now()

    if dt.tzinfo is None:
        raise ValueError(
            "Datetime must be timezone-aware (use UTC). "
            "Got naive datetime. Use utc_now() or ensure dt has tzinfo set."
        )

    return dt.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_timestamp(timestamp_str: str) -> datetime:
    """
    Parse a 'Z'-suffixed ISO 8601 timestamp into a timezone-aware datetime.

    Args:
        timestamp_str: Timestamp such as '2026-03-01T09:15:00Z'

    Returns:
        datetime: Timezone-aware datetime in UTC

    Raises:
        ValueError: If the suffix is missing or the format is invalid

    Examples:
        >>> parse_timestamp('2026-03-01T09:15:00')
        Traceback (most recent call last):
        ...
        ValueError: Timestamp must end with 'Z' (UTC): 2026-03-01T09:15:00
    """
    if not timestamp_str.endswith("Z"):
        raise ValueError(f"Timestamp must end with 'Z' (UTC): {timestamp_str}")

    try:
        return datetime.fromisoformat(timestamp_str.replace("Z", "+00:00"))
    except ValueError as e:
        raise ValueError(f"Invalid ISO 8601 timestamp format: {timestamp_str}") from e
