"""
Time utility functions.
"""
from datetime import datetime, timezone
from typing import Callable, Optional

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach or convert to UTC.

    Naive datetimes are assumed to already be in UTC, which is how the
    database layer stores them.

    Args:
        value: Datetime to normalize (None passes through)

    Returns:
        Timezone-aware UTC datetime, or None
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
