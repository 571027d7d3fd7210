"""Derived attendance fields.

``recompute_derived`` is the single place that turns the raw punch times of
a record into work hours, break totals, productive hours and lateness. Every
mutating operation calls it right before handing the record to the store.
"""

from __future__ import annotations

from datetime import datetime, time

from officeflow.errors import InputValidationError
from officeflow.models import AttendanceRecord, AttendanceStatus
from officeflow.services.day_clock import DEFAULT_LATE_CUTOFF, is_late, normalize_ts

PRESENT_LIKE_STATUSES = frozenset(
    {
        AttendanceStatus.PRESENT,
        AttendanceStatus.LATE,
        AttendanceStatus.HALF_DAY,
        AttendanceStatus.WORK_FROM_HOME,
    }
)


def round2(value: float) -> float:
    return round(value, 2)


def hours_between(start: datetime, end: datetime) -> float:
    return round2((normalize_ts(end) - normalize_ts(start)).total_seconds() / 3600)


def ensure_checkout_after_checkin(check_in_ts: datetime | None, check_out_ts: datetime | None) -> None:
    if check_in_ts is None or check_out_ts is None:
        return
    if normalize_ts(check_out_ts) <= normalize_ts(check_in_ts):
        raise InputValidationError(
            code="CHECKOUT_BEFORE_CHECKIN",
            message="Check-out time must be after check-in time.",
        )


def total_break_minutes(record: AttendanceRecord) -> int:
    return sum(int(item.duration_minutes or 0) for item in record.breaks if item.end_ts is not None)


def checkin_status(late: bool) -> AttendanceStatus:
    return AttendanceStatus.LATE if late else AttendanceStatus.PRESENT


def counts_as_present(status: AttendanceStatus) -> bool:
    return status in PRESENT_LIKE_STATUSES


def recompute_derived(
    record: AttendanceRecord,
    *,
    offset_minutes: int,
    cutoff_local_time: time = DEFAULT_LATE_CUTOFF,
) -> AttendanceRecord:
    ensure_checkout_after_checkin(record.check_in_ts, record.check_out_ts)

    if record.check_in_ts is not None:
        late, late_by = is_late(record.check_in_ts, offset_minutes, cutoff_local_time)
    else:
        late, late_by = False, 0
    record.is_late = late
    record.late_by_minutes = late_by

    record.total_break_minutes = total_break_minutes(record)
    if record.check_in_ts is not None and record.check_out_ts is not None:
        record.work_hours = hours_between(record.check_in_ts, record.check_out_ts)
        record.productive_hours = round2(record.work_hours - record.total_break_minutes / 60)
    else:
        record.work_hours = 0.0
        record.productive_hours = 0.0
    return record
