"""Organizational-day bucketing.

Every attendance record is keyed by the UTC instant of the local midnight
that opens its organizational day. The organizational timezone is a fixed
UTC offset taken from settings; the host timezone is never consulted.
"""

from __future__ import annotations

import math
from calendar import monthrange
from datetime import date, datetime, time, timedelta, timezone

from officeflow.settings import get_settings

DAY = timedelta(days=1)
DEFAULT_LATE_CUTOFF = time(hour=9, minute=0)


def normalize_ts(ts_utc: datetime | None) -> datetime:
    if ts_utc is None:
        return datetime.now(timezone.utc)

    if ts_utc.tzinfo is None:
        return ts_utc.replace(tzinfo=timezone.utc)

    return ts_utc.astimezone(timezone.utc)


def org_offset_minutes() -> int:
    return int(get_settings().org_utc_offset_minutes)


def org_timezone(offset_minutes: int) -> timezone:
    return timezone(timedelta(minutes=offset_minutes))


def to_local(instant: datetime, offset_minutes: int) -> datetime:
    return normalize_ts(instant).astimezone(org_timezone(offset_minutes))


def to_utc(value: datetime, offset_minutes: int) -> datetime:
    """Client-supplied naive datetimes are wall-clock times in the organization."""
    if value.tzinfo is None:
        return value.replace(tzinfo=org_timezone(offset_minutes)).astimezone(timezone.utc)
    return value.astimezone(timezone.utc)


def day_key_for_date(day: date, offset_minutes: int) -> datetime:
    local_midnight = datetime.combine(day, time.min, tzinfo=org_timezone(offset_minutes))
    return local_midnight.astimezone(timezone.utc)


def day_key(instant: datetime, offset_minutes: int) -> datetime:
    return day_key_for_date(to_local(instant, offset_minutes).date(), offset_minutes)


def local_date(key: datetime, offset_minutes: int) -> date:
    return to_local(key, offset_minutes).date()


def day_range(key: datetime) -> tuple[datetime, datetime]:
    start = normalize_ts(key)
    return start, start + DAY


def date_span_range(start_day: date, end_day: date, offset_minutes: int) -> tuple[datetime, datetime]:
    """Half-open instant range covering ``start_day`` through ``end_day`` inclusive."""
    start = day_key_for_date(start_day, offset_minutes)
    end = day_key_for_date(end_day, offset_minutes) + DAY
    return start, end


def month_range(year: int, month: int, offset_minutes: int) -> tuple[datetime, datetime]:
    days_in_month = monthrange(year, month)[1]
    return date_span_range(date(year, month, 1), date(year, month, days_in_month), offset_minutes)


def iter_days(start_day: date, end_day: date):  # type: ignore[no-untyped-def]
    current = start_day
    while current <= end_day:
        yield current
        current = current + DAY


def is_late(
    instant: datetime,
    offset_minutes: int,
    cutoff_local_time: time = DEFAULT_LATE_CUTOFF,
) -> tuple[bool, int]:
    # Strictly after the cutoff is late; partial minutes round up.
    local_instant = to_local(instant, offset_minutes)
    cutoff = datetime.combine(local_instant.date(), cutoff_local_time, tzinfo=local_instant.tzinfo)
    if local_instant <= cutoff:
        return False, 0
    late_seconds = (local_instant - cutoff).total_seconds()
    return True, int(math.ceil(late_seconds / 60))
