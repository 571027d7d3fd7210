from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, time
from typing import Any

from sqlalchemy.orm import Session

from officeflow.errors import ConflictError, InputValidationError, NotFoundError
from officeflow.models import (
    AttendanceBreak,
    AttendanceRecord,
    BreakKind,
    CheckMethod,
    Employee,
    LocationKind,
)
from officeflow.services.day_clock import (
    day_key,
    local_date,
    month_range,
    normalize_ts,
    org_offset_minutes,
)
from officeflow.services.derived import checkin_status, ensure_checkout_after_checkin, recompute_derived
from officeflow.services.realtime import (
    EVENT_ATTENDANCE_MARKED,
    EVENT_ATTENDANCE_UPDATED,
    Publisher,
    publish_record_event,
)
from officeflow.services.records import (
    commit_records,
    count_records,
    find_record,
    insert_record,
    query_records,
)
from officeflow.services.reports import summarize_records
from officeflow.settings import get_late_cutoff

logger = logging.getLogger("officeflow.attendance")


@dataclass(frozen=True, slots=True)
class PunchContext:
    """Where and how a check-in or check-out happened."""

    location_kind: LocationKind | None = None
    method: CheckMethod = CheckMethod.MANUAL
    source_ip: str | None = None
    device_info: str | None = None
    lat: float | None = None
    lon: float | None = None
    accuracy_m: float | None = None

    def resolved_location(self) -> LocationKind:
        if self.location_kind is not None:
            return self.location_kind
        if self.lat is not None and self.lon is not None:
            return LocationKind.REMOTE
        return LocationKind.OFFICE


@dataclass(frozen=True, slots=True)
class AttendanceStatusView:
    is_checked_in: bool
    is_checked_out: bool
    record: AttendanceRecord | None


def append_note(existing: str | None, note: str) -> str:
    note = note.strip()
    if not existing:
        return note
    return f"{existing} | {note}"


def _resolve_clock(offset_minutes: int | None, cutoff: time | None) -> tuple[int, time]:
    offset = org_offset_minutes() if offset_minutes is None else offset_minutes
    return offset, cutoff or get_late_cutoff()


def _log_extra(employee: Employee, record: AttendanceRecord, **extra: Any) -> dict[str, Any]:
    return {
        "employee_id": employee.id,
        "record_id": record.id,
        "day_key": record.day_key.isoformat(),
        "status": record.status.value,
        **extra,
    }


def _apply_check_in(record: AttendanceRecord, ts_utc: datetime, punch: PunchContext) -> None:
    record.check_in_ts = ts_utc
    record.check_in_location = punch.resolved_location()
    record.check_in_method = punch.method
    record.check_in_ip = punch.source_ip
    record.check_in_device = punch.device_info
    record.check_in_lat = punch.lat
    record.check_in_lon = punch.lon
    record.check_in_accuracy_m = punch.accuracy_m


def _apply_check_out(record: AttendanceRecord, ts_utc: datetime, punch: PunchContext) -> None:
    record.check_out_ts = ts_utc
    record.check_out_location = punch.resolved_location()
    record.check_out_method = punch.method
    record.check_out_ip = punch.source_ip
    record.check_out_device = punch.device_info
    record.check_out_lat = punch.lat
    record.check_out_lon = punch.lon
    record.check_out_accuracy_m = punch.accuracy_m


def _open_break(record: AttendanceRecord) -> AttendanceBreak | None:
    for item in record.breaks:
        if item.end_ts is None:
            return item
    return None


def _close_break(item: AttendanceBreak, ts_utc: datetime) -> None:
    item.end_ts = ts_utc
    item.duration_minutes = max(0, int(round((ts_utc - normalize_ts(item.start_ts)).total_seconds() / 60)))


def check_in(
    db: Session,
    *,
    employee: Employee,
    publisher: Publisher,
    instant: datetime | None = None,
    punch: PunchContext | None = None,
    notes: str | None = None,
    offset_minutes: int | None = None,
    cutoff: time | None = None,
) -> AttendanceRecord:
    offset, cutoff_time = _resolve_clock(offset_minutes, cutoff)
    ts_utc = normalize_ts(instant)
    key = day_key(ts_utc, offset)

    existing = find_record(db, employee_id=employee.id, day_key=key)
    if existing is not None and existing.check_in_ts is not None:
        if existing.check_out_ts is None:
            raise ConflictError(code="ALREADY_CHECKED_IN", message="You have already checked in today.")
        raise ConflictError(
            code="ATTENDANCE_ALREADY_COMPLETED",
            message="Attendance for today is already completed.",
        )

    # A record without a check-in was materialized by a correction or leave request.
    record = existing or AttendanceRecord(employee_id=employee.id, day_key=key, breaks=[])
    _apply_check_in(record, ts_utc, punch or PunchContext())
    if notes and notes.strip():
        record.notes = append_note(record.notes, notes)
    recompute_derived(record, offset_minutes=offset, cutoff_local_time=cutoff_time)
    record.status = checkin_status(record.is_late)

    if existing is None:
        insert_record(
            db,
            record,
            operation="check_in",
            conflict_code="ALREADY_CHECKED_IN",
            conflict_message="You have already checked in today.",
        )
    commit_records(db, [record], operation="check_in")

    logger.info("attendance_checked_in", extra=_log_extra(employee, record, late_by_minutes=record.late_by_minutes))
    publish_record_event(publisher, EVENT_ATTENDANCE_MARKED, record, employee)
    return record


def check_out(
    db: Session,
    *,
    employee: Employee,
    publisher: Publisher,
    instant: datetime | None = None,
    punch: PunchContext | None = None,
    auto_checkout: bool = False,
    reason: str | None = None,
    offset_minutes: int | None = None,
    cutoff: time | None = None,
) -> AttendanceRecord:
    offset, cutoff_time = _resolve_clock(offset_minutes, cutoff)
    ts_utc = normalize_ts(instant)
    key = day_key(ts_utc, offset)

    record = find_record(db, employee_id=employee.id, day_key=key)
    if record is None or record.check_in_ts is None:
        raise NotFoundError(code="CHECKIN_REQUIRED", message="No check-in record found for today.")
    if record.check_out_ts is not None:
        raise ConflictError(code="ALREADY_CHECKED_OUT", message="Already checked out.")
    ensure_checkout_after_checkin(record.check_in_ts, ts_utc)

    open_break = _open_break(record)
    if open_break is not None:
        _close_break(open_break, ts_utc)
    _apply_check_out(record, ts_utc, punch or PunchContext())
    if auto_checkout:
        record.notes = append_note(record.notes, f"Auto checkout: {(reason or 'unspecified').strip()}")
    recompute_derived(record, offset_minutes=offset, cutoff_local_time=cutoff_time)
    commit_records(db, [record], operation="check_out")

    logger.info("attendance_checked_out", extra=_log_extra(employee, record, work_hours=record.work_hours))
    publish_record_event(publisher, EVENT_ATTENDANCE_UPDATED, record, employee)
    return record


def start_break(
    db: Session,
    *,
    employee: Employee,
    instant: datetime | None = None,
    kind: BreakKind = BreakKind.OTHER,
    offset_minutes: int | None = None,
) -> AttendanceRecord:
    offset = org_offset_minutes() if offset_minutes is None else offset_minutes
    ts_utc = normalize_ts(instant)
    record = find_record(db, employee_id=employee.id, day_key=day_key(ts_utc, offset))
    if record is None or record.check_in_ts is None:
        raise NotFoundError(code="CHECKIN_REQUIRED", message="No check-in record found for today.")
    if record.check_out_ts is not None:
        raise ConflictError(code="ALREADY_CHECKED_OUT", message="Already checked out.")
    if _open_break(record) is not None:
        raise ConflictError(code="BREAK_ALREADY_OPEN", message="A break is already in progress.")
    if ts_utc < normalize_ts(record.check_in_ts):
        raise InputValidationError(code="BREAK_BEFORE_CHECKIN", message="Break cannot start before check-in.")

    record.breaks.append(AttendanceBreak(start_ts=ts_utc, kind=kind, duration_minutes=0))
    record.updated_at = ts_utc
    commit_records(db, [record], operation="start_break")
    logger.info("attendance_break_started", extra=_log_extra(employee, record, kind=kind.value))
    return record


def end_break(
    db: Session,
    *,
    employee: Employee,
    instant: datetime | None = None,
    offset_minutes: int | None = None,
    cutoff: time | None = None,
) -> AttendanceRecord:
    offset, cutoff_time = _resolve_clock(offset_minutes, cutoff)
    ts_utc = normalize_ts(instant)
    record = find_record(db, employee_id=employee.id, day_key=day_key(ts_utc, offset))
    open_break = _open_break(record) if record is not None else None
    if record is None or open_break is None:
        raise ConflictError(code="NO_OPEN_BREAK", message="There is no break in progress.")
    if ts_utc < normalize_ts(open_break.start_ts):
        raise InputValidationError(code="BREAK_END_BEFORE_START", message="Break cannot end before it starts.")

    _close_break(open_break, ts_utc)
    recompute_derived(record, offset_minutes=offset, cutoff_local_time=cutoff_time)
    commit_records(db, [record], operation="end_break")
    logger.info(
        "attendance_break_ended",
        extra=_log_extra(employee, record, total_break_minutes=record.total_break_minutes),
    )
    return record


def get_today_record(
    db: Session,
    *,
    employee: Employee,
    now: datetime | None = None,
    offset_minutes: int | None = None,
) -> AttendanceRecord | None:
    offset = org_offset_minutes() if offset_minutes is None else offset_minutes
    return find_record(db, employee_id=employee.id, day_key=day_key(normalize_ts(now), offset))


def get_status(
    db: Session,
    *,
    employee: Employee,
    now: datetime | None = None,
    offset_minutes: int | None = None,
) -> AttendanceStatusView:
    record = get_today_record(db, employee=employee, now=now, offset_minutes=offset_minutes)
    if record is None:
        return AttendanceStatusView(is_checked_in=False, is_checked_out=False, record=None)
    return AttendanceStatusView(
        is_checked_in=record.check_in_ts is not None,
        is_checked_out=record.check_out_ts is not None,
        record=record,
    )


def list_history(
    db: Session,
    *,
    employee: Employee,
    page: int,
    limit: int,
) -> tuple[list[AttendanceRecord], int]:
    records = query_records(db, employee_id=employee.id, offset=(page - 1) * limit, limit=limit)
    return records, count_records(db, employee_id=employee.id)


def monthly_summary(
    db: Session,
    *,
    employee: Employee,
    month: int | None = None,
    year: int | None = None,
    now: datetime | None = None,
    offset_minutes: int | None = None,
) -> dict[str, Any]:
    offset = org_offset_minutes() if offset_minutes is None else offset_minutes
    today = local_date(day_key(normalize_ts(now), offset), offset)
    target_month = month or today.month
    target_year = year or today.year
    if target_month < 1 or target_month > 12:
        raise InputValidationError(code="INVALID_MONTH", message="month must be between 1 and 12.")

    start, end = month_range(target_year, target_month, offset)
    records = query_records(db, employee_id=employee.id, start=start, end=end, newest_first=False)
    return {
        "employee_id": employee.id,
        "month": target_month,
        "year": target_year,
        "summary": summarize_records(records),
        "records": records,
    }
