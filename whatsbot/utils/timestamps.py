"""Timestamp utilities for the bot.

ISO 8601 UTC timestamps are used for audit log entries; the localized
display timestamp is what operators see next to each message line.
"""

from datetime import UTC, datetime
from zoneinfo import ZoneInfo

DEFAULT_TIMEZONE = "America/Mexico_City"


def now_iso() -> str:
    """Get the current UTC timestamp in ISO 8601 format.

    Returns:
        Current timestamp as ISO 8601 string (YYYY-MM-DDTHH:MM:SSZ).

    Examples:
        >>> ts = now_iso()
        >>> ts  # e.g., "2025-02-04T14:30:22Z"
    """
    return datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def today_iso() -> str:
    """Get today's date in ISO format (YYYY-MM-DD).

    Used for daily log file naming.
    """
    return datetime.now(UTC).strftime("%Y-%m-%d")


def local_timestamp(timezone: str = DEFAULT_TIMEZONE, moment: datetime | None = None) -> str:
    """Format a moment in the bot's display timezone.

    The format is day-first with a 24-hour clock, e.g. ``19/10/2026, 08:15:02``.

    Args:
        timezone: IANA timezone name.
        moment: Aware datetime to format. Defaults to now.

    Returns:
        Localized timestamp string.

    Examples:
        >>> local_timestamp("UTC", datetime(2026, 1, 2, 3, 4, 5, tzinfo=UTC))
        '02/01/2026, 03:04:05'
    """
    moment = moment or datetime.now(UTC)
    return moment.astimezone(ZoneInfo(timezone)).strftime("%d/%m/%Y, %H:%M:%S")
