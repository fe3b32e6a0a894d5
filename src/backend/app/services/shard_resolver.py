"""Monthly shard resolution for the partitioned readings tables.

Readings are written to one table per calendar month (``<prefix>_YYYY-MM``).
A time range is answered by querying each month it touches, starting at the
month of the range start and capped at a fixed number of shards.
"""

import calendar
from dataclasses import dataclass
from datetime import datetime, timezone

SHARD_KEY_FORMAT = "%Y-%m"


@dataclass(frozen=True)
class QueryWindow:
    """One physical query: a table plus the inclusive timestamp bounds to read."""

    table_name: str
    start: int
    end: int


def to_datetime(timestamp: int) -> datetime:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


def month_start(dt: datetime) -> datetime:
    """First instant of the calendar month containing ``dt``."""
    return dt.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def add_months(dt: datetime, months: int) -> datetime:
    """Shift ``dt`` by whole calendar months, clamping the day to the target month."""
    month_index = dt.year * 12 + (dt.month - 1) + months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)


def shard_table_name(prefix: str, dt: datetime) -> str:
    """Table holding the shard for the month of ``dt``, e.g. ``sensor_readings_2024-05``."""
    return f"{prefix}_{dt.strftime(SHARD_KEY_FORMAT)}"


def current_shard_table_name(prefix: str, now: datetime | None = None) -> str:
    return shard_table_name(prefix, now or datetime.now(timezone.utc))


def resolve_shards(
    range_start: int,
    range_end: int,
    max_shards: int,
    table_prefix: str,
) -> list[QueryWindow]:
    """Resolve the ordered (oldest first) shard windows covering a time range.

    The first window starts at the literal ``range_start``; every later window
    starts at the first instant of its month. Resolution stops at the first
    window starting after ``range_end`` or once ``max_shards`` windows exist,
    so ranges reaching further back than the cap are truncated, not extended.
    """
    start_dt = to_datetime(range_start)
    windows: list[QueryWindow] = []

    for offset in range(max_shards):
        if offset == 0:
            shard_start = start_dt
        else:
            try:
                shard_start = add_months(month_start(start_dt), offset)
            except ValueError:
                # Past the last representable month
                break

        effective_start = int(shard_start.timestamp())
        if range_end < effective_start:
            break

        windows.append(
            QueryWindow(
                table_name=shard_table_name(table_prefix, shard_start),
                start=effective_start,
                end=range_end,
            )
        )

    return windows
