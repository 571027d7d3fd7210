from __future__ import annotations

import logging
from datetime import date, datetime, timezone

from sqlalchemy.orm import Session

from officeflow.errors import ConflictError, InputValidationError
from officeflow.models import AttendanceRecord, AttendanceStatus, Employee, LeaveType, RequestStatus
from officeflow.security import CallerContext
from officeflow.services.day_clock import (
    date_span_range,
    day_key_for_date,
    iter_days,
    normalize_ts,
    org_offset_minutes,
)
from officeflow.services.derived import checkin_status
from officeflow.services.realtime import (
    EVENT_LEAVE_APPROVED,
    EVENT_LEAVE_REJECTED,
    EVENT_LEAVE_REQUESTED,
    Publisher,
    publish_record_event,
)
from officeflow.services.records import commit_records, count_records, get_record, query_records
from officeflow.settings import get_settings

logger = logging.getLogger("officeflow.attendance")


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _require_pending(record: AttendanceRecord) -> None:
    if record.leave_status != RequestStatus.PENDING:
        raise ConflictError(
            code="LEAVE_NOT_PENDING",
            message="No pending leave request found for this record.",
        )


def _validate_span(start_date: date, end_date: date, max_span_days: int) -> None:
    if end_date < start_date:
        raise InputValidationError(
            code="INVALID_DATE_RANGE",
            message="end_date must be greater than or equal to start_date.",
        )
    span_days = (end_date - start_date).days + 1
    if span_days > max_span_days:
        raise InputValidationError(
            code="LEAVE_SPAN_TOO_LONG",
            message=f"A leave request may cover at most {max_span_days} days.",
        )


def request_leave(
    db: Session,
    *,
    employee: Employee,
    publisher: Publisher,
    start_date: date,
    end_date: date,
    leave_type: LeaveType,
    reason: str,
    offset_minutes: int | None = None,
    max_span_days: int | None = None,
    now: datetime | None = None,
) -> list[AttendanceRecord]:
    """Mark every day of ``start_date..end_date`` as a pending leave.

    Existing records keep their punches; the status they had is saved in
    ``leave_prior_status`` so a rejection can put it back. All days are
    committed together.
    """
    offset = org_offset_minutes() if offset_minutes is None else offset_minutes
    span_limit = max_span_days if max_span_days is not None else get_settings().leave_max_span_days
    _validate_span(start_date, end_date, span_limit)
    cleaned_reason = _clean(reason)
    if cleaned_reason is None:
        raise InputValidationError(code="LEAVE_REASON_REQUIRED", message="Reason is required.")

    range_start, range_end = date_span_range(start_date, end_date, offset)
    pending = count_records(
        db,
        employee_id=employee.id,
        start=range_start,
        end=range_end,
        leave_status=RequestStatus.PENDING,
    )
    if pending:
        raise ConflictError(
            code="LEAVE_ALREADY_PENDING",
            message="A pending leave request already exists for one or more of these days.",
        )

    existing = {
        normalize_ts(item.day_key): item
        for item in query_records(db, employee_id=employee.id, start=range_start, end=range_end)
    }
    requested_at = now or datetime.now(timezone.utc)
    affected: list[AttendanceRecord] = []
    for day in iter_days(start_date, end_date):
        key = day_key_for_date(day, offset)
        record = existing.get(key)
        if record is None:
            record = AttendanceRecord(
                employee_id=employee.id,
                day_key=key,
                work_hours=0.0,
                productive_hours=0.0,
                total_break_minutes=0,
                is_late=False,
                late_by_minutes=0,
                breaks=[],
            )
            record.leave_prior_status = None
            db.add(record)
        else:
            record.leave_prior_status = record.status

        record.status = AttendanceStatus.LEAVE
        record.leave_type = leave_type
        record.leave_reason = cleaned_reason
        record.leave_status = RequestStatus.PENDING
        record.leave_requested_at = requested_at
        record.leave_decided_by = None
        record.leave_decided_at = None
        record.leave_admin_notes = None
        affected.append(record)

    commit_records(db, affected, operation="leave_request")

    logger.info(
        "leave_requested",
        extra={
            "employee_id": employee.id,
            "start_date": start_date.isoformat(),
            "end_date": end_date.isoformat(),
            "days": len(affected),
            "leave_type": leave_type.value,
        },
    )
    for record in affected:
        publish_record_event(
            publisher,
            EVENT_LEAVE_REQUESTED,
            record,
            employee,
            extra={"leave_type": leave_type, "reason": cleaned_reason},
        )
    return affected


def approve_leave(
    db: Session,
    *,
    record_id: int,
    approver: CallerContext,
    publisher: Publisher,
    admin_notes: str | None = None,
    now: datetime | None = None,
) -> AttendanceRecord:
    record = get_record(db, record_id)
    _require_pending(record)
    record.status = AttendanceStatus.LEAVE
    record.leave_status = RequestStatus.APPROVED
    record.leave_decided_by = approver.subject
    record.leave_decided_at = now or datetime.now(timezone.utc)
    record.leave_admin_notes = _clean(admin_notes)
    commit_records(db, [record], operation="leave_approve")

    logger.info(
        "leave_approved",
        extra={"record_id": record.id, "employee_id": record.employee_id, "approver": approver.subject},
    )
    publish_record_event(publisher, EVENT_LEAVE_APPROVED, record, record.employee)
    return record


def _status_after_rejection(record: AttendanceRecord) -> AttendanceStatus:
    if record.leave_prior_status is not None:
        return record.leave_prior_status
    if record.check_in_ts is not None:
        return checkin_status(bool(record.is_late))
    return AttendanceStatus.ABSENT


def reject_leave(
    db: Session,
    *,
    record_id: int,
    approver: CallerContext,
    publisher: Publisher,
    admin_notes: str | None,
    now: datetime | None = None,
) -> AttendanceRecord:
    notes = _clean(admin_notes)
    if notes is None:
        raise InputValidationError(
            code="ADMIN_NOTES_REQUIRED",
            message="Admin notes are required when rejecting a leave request.",
        )

    record = get_record(db, record_id)
    _require_pending(record)
    record.status = _status_after_rejection(record)
    record.leave_status = RequestStatus.REJECTED
    record.leave_decided_by = approver.subject
    record.leave_decided_at = now or datetime.now(timezone.utc)
    record.leave_admin_notes = notes
    commit_records(db, [record], operation="leave_reject")

    logger.info(
        "leave_rejected",
        extra={
            "record_id": record.id,
            "employee_id": record.employee_id,
            "approver": approver.subject,
            "restored_status": record.status.value,
        },
    )
    publish_record_event(publisher, EVENT_LEAVE_REJECTED, record, record.employee, extra={"admin_notes": notes})
    return record


def list_my_leaves(db: Session, *, employee: Employee) -> list[AttendanceRecord]:
    return query_records(db, employee_id=employee.id, has_leave=True)


def list_pending_leaves(db: Session) -> list[AttendanceRecord]:
    return query_records(db, leave_status=RequestStatus.PENDING, with_employee=True, newest_first=False)
