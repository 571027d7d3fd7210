from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload
from sqlalchemy.orm.exc import StaleDataError

from officeflow.errors import ConflictError, NotFoundError
from officeflow.models import AttendanceRecord, AttendanceStatus, RequestStatus
from officeflow.services.day_clock import normalize_ts

logger = logging.getLogger("officeflow.store")

DAY_EXISTS_CODE = "ATTENDANCE_DAY_EXISTS"
DAY_EXISTS_MESSAGE = "An attendance record already exists for this employee and day."


def find_record(db: Session, *, employee_id: int, day_key: datetime) -> AttendanceRecord | None:
    return db.scalar(
        select(AttendanceRecord).where(
            AttendanceRecord.employee_id == employee_id,
            AttendanceRecord.day_key == normalize_ts(day_key),
        )
    )


def get_record(db: Session, record_id: int) -> AttendanceRecord:
    record = db.get(AttendanceRecord, record_id)
    if record is None:
        raise NotFoundError(code="ATTENDANCE_NOT_FOUND", message="Attendance record not found.")
    return record


def _log_context(record: AttendanceRecord | None, operation: str, **extra: Any) -> dict[str, Any]:
    context: dict[str, Any] = {"operation": operation}
    if record is not None:
        context["employee_id"] = record.employee_id
        context["day_key"] = record.day_key.isoformat() if record.day_key else None
        context["record_id"] = record.id
    context.update(extra)
    return context


def insert_record(
    db: Session,
    record: AttendanceRecord,
    *,
    operation: str,
    conflict_code: str = DAY_EXISTS_CODE,
    conflict_message: str = DAY_EXISTS_MESSAGE,
) -> AttendanceRecord:
    """Insert-if-absent against the unique (employee_id, day_key) key.

    Losing a concurrent insert surfaces as ``ConflictError``; the session is
    rolled back so the pre-existing row stays untouched.
    """
    db.add(record)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        logger.info("attendance_insert_conflict", extra=_log_context(record, operation))
        raise ConflictError(code=conflict_code, message=conflict_message) from exc
    except SQLAlchemyError:
        db.rollback()
        logger.exception("attendance_store_failed", extra=_log_context(record, operation))
        raise
    return record


def commit_records(
    db: Session,
    records: Sequence[AttendanceRecord],
    *,
    operation: str,
) -> None:
    first = records[0] if records else None
    try:
        db.commit()
    except StaleDataError as exc:
        db.rollback()
        logger.info("attendance_concurrent_update", extra=_log_context(first, operation))
        raise ConflictError(
            code="ATTENDANCE_CONCURRENT_UPDATE",
            message="Attendance record was modified by another request. Please retry.",
        ) from exc
    except IntegrityError as exc:
        db.rollback()
        logger.info("attendance_insert_conflict", extra=_log_context(first, operation))
        raise ConflictError(code=DAY_EXISTS_CODE, message=DAY_EXISTS_MESSAGE) from exc
    except SQLAlchemyError:
        db.rollback()
        logger.exception("attendance_store_failed", extra=_log_context(first, operation))
        raise


def _record_filters(
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    employee_id: int | None = None,
    status: AttendanceStatus | None = None,
    is_late: bool | None = None,
    correction_status: RequestStatus | None = None,
    leave_status: RequestStatus | None = None,
    has_correction: bool | None = None,
    has_leave: bool | None = None,
) -> list[Any]:
    conditions: list[Any] = []
    if start is not None:
        conditions.append(AttendanceRecord.day_key >= normalize_ts(start))
    if end is not None:
        conditions.append(AttendanceRecord.day_key < normalize_ts(end))
    if employee_id is not None:
        conditions.append(AttendanceRecord.employee_id == employee_id)
    if status is not None:
        conditions.append(AttendanceRecord.status == status)
    if is_late is not None:
        conditions.append(AttendanceRecord.is_late.is_(is_late))
    if correction_status is not None:
        conditions.append(AttendanceRecord.correction_status == correction_status)
    if leave_status is not None:
        conditions.append(AttendanceRecord.leave_status == leave_status)
    if has_correction:
        conditions.append(AttendanceRecord.correction_status.is_not(None))
    if has_leave:
        conditions.append(AttendanceRecord.leave_status.is_not(None))
    return conditions


def query_records(
    db: Session,
    *,
    newest_first: bool = True,
    offset: int = 0,
    limit: int | None = None,
    with_employee: bool = False,
    **filters: Any,
) -> list[AttendanceRecord]:
    """Range query over day keys; ``start``/``end`` form a half-open interval."""
    stmt = select(AttendanceRecord).where(*_record_filters(**filters))
    if newest_first:
        stmt = stmt.order_by(AttendanceRecord.day_key.desc(), AttendanceRecord.id.desc())
    else:
        stmt = stmt.order_by(AttendanceRecord.day_key.asc(), AttendanceRecord.id.asc())
    if with_employee:
        stmt = stmt.options(selectinload(AttendanceRecord.employee))
    if offset:
        stmt = stmt.offset(offset)
    if limit is not None:
        stmt = stmt.limit(limit)
    return list(db.scalars(stmt).all())


def count_records(db: Session, **filters: Any) -> int:
    stmt = select(func.count()).select_from(AttendanceRecord).where(*_record_filters(**filters))
    return int(db.scalar(stmt) or 0)


def delete_record(db: Session, record_id: int) -> AttendanceRecord:
    record = get_record(db, record_id)
    db.delete(record)
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("attendance_store_failed", extra=_log_context(record, "delete"))
        raise
    return record
