from __future__ import annotations

from collections import OrderedDict
from collections.abc import Iterable
from datetime import date, datetime, timedelta
from typing import Any

from sqlalchemy.orm import Session

from officeflow.errors import InputValidationError
from officeflow.models import AttendanceRecord, AttendanceStatus, Employee
from officeflow.services.day_clock import (
    date_span_range,
    day_key,
    day_key_for_date,
    day_range,
    local_date,
    month_range,
    normalize_ts,
    org_offset_minutes,
)
from officeflow.services.derived import counts_as_present, round2
from officeflow.services.directory import get_employee, list_active_employees
from officeflow.services.records import count_records, query_records

DEFAULT_HISTORY_DAYS = 30


def _offset(offset_minutes: int | None) -> int:
    return org_offset_minutes() if offset_minutes is None else offset_minutes


def _today(now: datetime | None, offset: int) -> date:
    return local_date(day_key(normalize_ts(now), offset), offset)


def _validate_span(start_date: date, end_date: date) -> None:
    if start_date > end_date:
        raise InputValidationError(code="INVALID_DATE_RANGE", message="start_date cannot be after end_date.")


def summarize_records(records: Iterable[AttendanceRecord]) -> dict[str, Any]:
    rows = list(records)
    total_days = len(rows)
    present_days = sum(1 for item in rows if counts_as_present(item.status))
    total_work_hours = sum(float(item.work_hours or 0) for item in rows)
    total_productive_hours = sum(float(item.productive_hours or 0) for item in rows)
    return {
        "total_days": total_days,
        "present_days": present_days,
        "late_days": sum(1 for item in rows if item.is_late),
        "absent_days": sum(1 for item in rows if item.status == AttendanceStatus.ABSENT),
        "leave_days": sum(1 for item in rows if item.status == AttendanceStatus.LEAVE),
        "half_days": sum(1 for item in rows if item.status == AttendanceStatus.HALF_DAY),
        "work_from_home_days": sum(1 for item in rows if item.status == AttendanceStatus.WORK_FROM_HOME),
        "total_work_hours": round2(total_work_hours),
        "average_work_hours": round2(total_work_hours / total_days) if total_days else 0.0,
        "total_productive_hours": round2(total_productive_hours),
        "attendance_rate": round2(present_days / total_days * 100) if total_days else 0.0,
    }


def list_records(
    db: Session,
    *,
    start_date: date | None = None,
    end_date: date | None = None,
    employee_id: int | None = None,
    status: AttendanceStatus | None = None,
    page: int = 1,
    limit: int = 20,
    offset_minutes: int | None = None,
) -> tuple[list[AttendanceRecord], int]:
    offset = _offset(offset_minutes)
    filters: dict[str, Any] = {"employee_id": employee_id, "status": status}
    if start_date is not None:
        filters["start"] = day_key_for_date(start_date, offset)
    if end_date is not None:
        filters["end"] = day_key_for_date(end_date, offset) + timedelta(days=1)
    if start_date is not None and end_date is not None:
        _validate_span(start_date, end_date)

    records = query_records(
        db,
        offset=(page - 1) * limit,
        limit=limit,
        with_employee=True,
        **filters,
    )
    return records, count_records(db, **filters)


def _entry(employee: Employee | None, employee_id: int, record: AttendanceRecord | None) -> dict[str, Any]:
    return {
        "employee_id": employee_id,
        "employee_name": employee.full_name if employee is not None else None,
        "has_record": record is not None,
        "record_id": record.id if record is not None else None,
        "status": record.status if record is not None else AttendanceStatus.ABSENT,
        "check_in": record.check_in_ts if record is not None else None,
        "check_out": record.check_out_ts if record is not None else None,
        "is_late": bool(record.is_late) if record is not None else False,
        "late_by_minutes": int(record.late_by_minutes or 0) if record is not None else 0,
        "work_hours": float(record.work_hours or 0) if record is not None else 0.0,
    }


def daily_rollup(
    db: Session,
    *,
    day: date | None = None,
    now: datetime | None = None,
    offset_minutes: int | None = None,
) -> dict[str, Any]:
    """Presence of every active employee on one day; no record means absent."""
    offset = _offset(offset_minutes)
    target_day = day or _today(now, offset)
    start, end = day_range(day_key_for_date(target_day, offset))
    records = query_records(db, start=start, end=end, newest_first=False, with_employee=True)
    by_employee = {item.employee_id: item for item in records}

    entries: list[dict[str, Any]] = []
    seen: set[int] = set()
    for employee in list_active_employees(db):
        seen.add(employee.id)
        entries.append(_entry(employee, employee.id, by_employee.get(employee.id)))
    for record in records:
        if record.employee_id not in seen:
            entries.append(_entry(record.employee, record.employee_id, record))

    return {
        "date": target_day,
        "total_employees": len(entries),
        "present": sum(1 for item in entries if counts_as_present(item["status"])),
        "late": sum(1 for item in entries if item["is_late"]),
        "absent": sum(1 for item in entries if item["status"] == AttendanceStatus.ABSENT),
        "on_leave": sum(1 for item in entries if item["status"] == AttendanceStatus.LEAVE),
        "not_checked_in": sum(1 for item in entries if item["check_in"] is None),
        "entries": entries,
    }


def monthly_report(
    db: Session,
    *,
    month: int | None = None,
    year: int | None = None,
    now: datetime | None = None,
    offset_minutes: int | None = None,
) -> dict[str, Any]:
    offset = _offset(offset_minutes)
    today = _today(now, offset)
    target_month = month or today.month
    target_year = year or today.year
    if target_month < 1 or target_month > 12:
        raise InputValidationError(code="INVALID_MONTH", message="month must be between 1 and 12.")

    start, end = month_range(target_year, target_month, offset)
    records = query_records(db, start=start, end=end, newest_first=False, with_employee=True)
    grouped: OrderedDict[int, list[AttendanceRecord]] = OrderedDict()
    for record in records:
        grouped.setdefault(record.employee_id, []).append(record)

    report = []
    for employee_id, rows in grouped.items():
        employee = rows[0].employee
        report.append(
            {
                "employee_id": employee_id,
                "employee_name": employee.full_name if employee is not None else None,
                "email": employee.email if employee is not None else None,
                "summary": summarize_records(rows),
            }
        )
    return {"month": target_month, "year": target_year, "report": report}


def attendance_report(
    db: Session,
    *,
    start_date: date,
    end_date: date,
    employee_id: int | None = None,
    offset_minutes: int | None = None,
) -> dict[str, Any]:
    offset = _offset(offset_minutes)
    _validate_span(start_date, end_date)
    start, end = date_span_range(start_date, end_date, offset)
    records = query_records(db, start=start, end=end, employee_id=employee_id, with_employee=True)
    return {
        "start_date": start_date,
        "end_date": end_date,
        "statistics": summarize_records(records),
        "records": records,
    }


def late_arrivals(
    db: Session,
    *,
    day: date | None = None,
    now: datetime | None = None,
    offset_minutes: int | None = None,
) -> dict[str, Any]:
    offset = _offset(offset_minutes)
    target_day = day or _today(now, offset)
    start, end = day_range(day_key_for_date(target_day, offset))
    records = query_records(db, start=start, end=end, is_late=True, with_employee=True)
    records.sort(key=lambda item: normalize_ts(item.check_in_ts) if item.check_in_ts else start, reverse=True)
    return {"date": target_day, "count": len(records), "records": records}


def employee_history(
    db: Session,
    *,
    employee_id: int,
    start_date: date | None = None,
    end_date: date | None = None,
    month: int | None = None,
    year: int | None = None,
    now: datetime | None = None,
    offset_minutes: int | None = None,
) -> dict[str, Any]:
    offset = _offset(offset_minutes)
    employee = get_employee(db, employee_id)
    if start_date is not None and end_date is not None:
        _validate_span(start_date, end_date)
        start, end = date_span_range(start_date, end_date, offset)
    elif month is not None and year is not None:
        if month < 1 or month > 12:
            raise InputValidationError(code="INVALID_MONTH", message="month must be between 1 and 12.")
        start, end = month_range(year, month, offset)
    else:
        today = _today(now, offset)
        start, end = date_span_range(today - timedelta(days=DEFAULT_HISTORY_DAYS), today, offset)

    records = query_records(db, employee_id=employee.id, start=start, end=end)
    return {
        "employee_id": employee.id,
        "employee_name": employee.full_name,
        "email": employee.email,
        "summary": summarize_records(records),
        "records": records,
    }
