"""Calendar arithmetic for membership periods.

Membership periods are measured in calendar months rather than fixed day
counts. When the source day does not exist in the target month the result is
clamped to the last day of that month:

- 2024-01-15 + 1 month -> 2024-02-15
- 2024-01-31 + 1 month -> 2024-02-29 (leap year)
- 2023-01-31 + 1 month -> 2023-02-28
- 2024-03-31 + 1 month -> 2024-04-30

Time of day and tzinfo are preserved.
"""

import calendar
from datetime import UTC, datetime


MONTHS_PER_YEAR = 12


def add_months(value: datetime, months: int) -> datetime:
    """Add calendar months to a datetime, clamping the day of month.

    Args:
        value: Starting instant
        months: Number of months to add (may be negative)

    Returns:
        Shifted datetime with the same time of day and tzinfo
    """
    month_index = value.month - 1 + months
    year = value.year + month_index // MONTHS_PER_YEAR
    month = month_index % MONTHS_PER_YEAR + 1
    last_day = calendar.monthrange(year, month)[1]
    return value.replace(year=year, month=month, day=min(value.day, last_day))


def ensure_utc_aware(dt: datetime | None) -> datetime | None:
    """Ensure datetime is UTC-aware.

    Cassandra returns naive datetimes for TIMESTAMP columns; they are UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


def utc_now() -> datetime:
    """Current UTC instant."""
    return datetime.now(UTC)
