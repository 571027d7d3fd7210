from __future__ import annotations

import logging
from datetime import date, datetime, time, timezone

from sqlalchemy.orm import Session

from officeflow.errors import ConflictError, InputValidationError
from officeflow.models import AttendanceRecord, AttendanceStatus, Employee, RequestStatus
from officeflow.security import CallerContext
from officeflow.services.day_clock import (
    DAY,
    day_key_for_date,
    day_range,
    normalize_ts,
    org_offset_minutes,
    to_utc,
)
from officeflow.services.derived import checkin_status, ensure_checkout_after_checkin, recompute_derived
from officeflow.services.realtime import (
    EVENT_CORRECTION_APPROVED,
    EVENT_CORRECTION_REJECTED,
    EVENT_CORRECTION_REQUESTED,
    Publisher,
    publish_record_event,
)
from officeflow.services.records import commit_records, find_record, get_record, insert_record, query_records
from officeflow.settings import get_late_cutoff

logger = logging.getLogger("officeflow.attendance")

CORRECTION_REQUESTED_NOTE = "Correction requested"


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _require_pending(record: AttendanceRecord) -> None:
    if record.correction_status != RequestStatus.PENDING:
        raise ConflictError(
            code="CORRECTION_NOT_PENDING",
            message="No pending correction request found for this record.",
        )


def _ensure_within_day(key: datetime, check_in: datetime | None, check_out: datetime | None) -> None:
    # Check-in belongs to the keyed day; check-out may run into the next one.
    start, end = day_range(key)
    if check_in is not None and not start <= normalize_ts(check_in) < end:
        raise InputValidationError(
            code="CORRECTION_OUTSIDE_DAY",
            message="Corrected check-in must fall on the requested day.",
        )
    if check_out is not None and not start < normalize_ts(check_out) <= end + DAY:
        raise InputValidationError(
            code="CORRECTION_OUTSIDE_DAY",
            message="Corrected check-out must fall on the requested day or the morning after.",
        )


def _ensure_check_in_present(check_in: datetime | None, check_out: datetime | None) -> None:
    if check_out is not None and check_in is None:
        raise InputValidationError(
            code="CORRECTION_CHECKIN_REQUIRED",
            message="A corrected check-out needs a check-in for the same day.",
        )


def request_correction(
    db: Session,
    *,
    employee: Employee,
    publisher: Publisher,
    day: date,
    reason: str,
    correct_check_in: datetime | None = None,
    correct_check_out: datetime | None = None,
    offset_minutes: int | None = None,
    now: datetime | None = None,
) -> AttendanceRecord:
    offset = org_offset_minutes() if offset_minutes is None else offset_minutes
    cleaned_reason = _clean(reason)
    if cleaned_reason is None:
        raise InputValidationError(code="CORRECTION_REASON_REQUIRED", message="Reason is required.")

    check_in_utc = to_utc(correct_check_in, offset) if correct_check_in is not None else None
    check_out_utc = to_utc(correct_check_out, offset) if correct_check_out is not None else None
    ensure_checkout_after_checkin(check_in_utc, check_out_utc)

    key = day_key_for_date(day, offset)
    _ensure_within_day(key, check_in_utc, check_out_utc)
    record = find_record(db, employee_id=employee.id, day_key=key)
    if record is not None and record.correction_status == RequestStatus.PENDING:
        raise ConflictError(
            code="CORRECTION_ALREADY_PENDING",
            message="A correction request is already pending for this day.",
        )

    effective_in = check_in_utc or (record.check_in_ts if record is not None else None)
    effective_out = check_out_utc or (record.check_out_ts if record is not None else None)
    _ensure_check_in_present(effective_in, effective_out)
    ensure_checkout_after_checkin(effective_in, effective_out)

    created = record is None
    if record is None:
        record = AttendanceRecord(
            employee_id=employee.id,
            day_key=key,
            status=AttendanceStatus.ABSENT,
            notes=CORRECTION_REQUESTED_NOTE,
            work_hours=0.0,
            productive_hours=0.0,
            total_break_minutes=0,
            is_late=False,
            late_by_minutes=0,
            breaks=[],
        )

    record.correction_requested_by = employee.user_id
    record.correction_reason = cleaned_reason
    record.correction_check_in_ts = check_in_utc
    record.correction_check_out_ts = check_out_utc
    record.correction_status = RequestStatus.PENDING
    record.correction_requested_at = now or datetime.now(timezone.utc)
    record.correction_decided_by = None
    record.correction_decided_at = None
    record.correction_admin_notes = None

    if created:
        insert_record(db, record, operation="correction_request")
    commit_records(db, [record], operation="correction_request")

    logger.info(
        "correction_requested",
        extra={"employee_id": employee.id, "record_id": record.id, "day_key": key.isoformat(), "new_record": created},
    )
    publish_record_event(
        publisher,
        EVENT_CORRECTION_REQUESTED,
        record,
        employee,
        extra={"reason": cleaned_reason},
    )
    return record


def approve_correction(
    db: Session,
    *,
    record_id: int,
    approver: CallerContext,
    publisher: Publisher,
    admin_notes: str | None = None,
    offset_minutes: int | None = None,
    cutoff: time | None = None,
    now: datetime | None = None,
) -> AttendanceRecord:
    offset = org_offset_minutes() if offset_minutes is None else offset_minutes
    record = get_record(db, record_id)
    _require_pending(record)

    new_check_in = record.correction_check_in_ts or record.check_in_ts
    new_check_out = record.correction_check_out_ts or record.check_out_ts
    _ensure_within_day(record.day_key, record.correction_check_in_ts, record.correction_check_out_ts)
    _ensure_check_in_present(new_check_in, new_check_out)
    ensure_checkout_after_checkin(new_check_in, new_check_out)

    record.check_in_ts = new_check_in
    record.check_out_ts = new_check_out
    recompute_derived(record, offset_minutes=offset, cutoff_local_time=cutoff or get_late_cutoff())
    if record.status == AttendanceStatus.ABSENT and record.check_in_ts is not None:
        record.status = AttendanceStatus.PRESENT
    elif record.status in (AttendanceStatus.PRESENT, AttendanceStatus.LATE):
        record.status = checkin_status(record.is_late)

    record.correction_status = RequestStatus.APPROVED
    record.correction_decided_by = approver.subject
    record.correction_decided_at = now or datetime.now(timezone.utc)
    record.correction_admin_notes = _clean(admin_notes)
    commit_records(db, [record], operation="correction_approve")

    logger.info(
        "correction_approved",
        extra={"record_id": record.id, "employee_id": record.employee_id, "approver": approver.subject},
    )
    publish_record_event(publisher, EVENT_CORRECTION_APPROVED, record, record.employee)
    return record


def reject_correction(
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
            message="Admin notes are required when rejecting a correction.",
        )

    record = get_record(db, record_id)
    _require_pending(record)
    record.correction_status = RequestStatus.REJECTED
    record.correction_decided_by = approver.subject
    record.correction_decided_at = now or datetime.now(timezone.utc)
    record.correction_admin_notes = notes
    commit_records(db, [record], operation="correction_reject")

    logger.info(
        "correction_rejected",
        extra={"record_id": record.id, "employee_id": record.employee_id, "approver": approver.subject},
    )
    publish_record_event(publisher, EVENT_CORRECTION_REJECTED, record, record.employee, extra={"admin_notes": notes})
    return record


def list_my_corrections(db: Session, *, employee: Employee) -> list[AttendanceRecord]:
    return query_records(db, employee_id=employee.id, has_correction=True)


def list_pending_corrections(db: Session) -> list[AttendanceRecord]:
    return query_records(db, correction_status=RequestStatus.PENDING, with_employee=True, newest_first=False)
