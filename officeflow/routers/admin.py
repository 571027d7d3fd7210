from collections.abc import Iterable
from datetime import date

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from officeflow.audit import audit_request
from officeflow.db import get_db
from officeflow.dependencies import PageParams, get_page_params, get_publisher
from officeflow.models import AttendanceRecord, AttendanceStatus
from officeflow.schemas import (
    AttendanceRecordPage,
    AttendanceRecordRead,
    AttendanceReportResponse,
    DailyRollupResponse,
    DecisionRequest,
    DeleteResponse,
    EmployeeHistoryResponse,
    LateArrivalsResponse,
    MonthlyReportResponse,
    PushConfigResponse,
    PushSubscribeRequest,
    PushSubscribeResponse,
    PushUnsubscribeRequest,
    PushUnsubscribeResponse,
    record_read,
)
from officeflow.security import CallerContext, require_supervisor
from officeflow.services.corrections import approve_correction, list_pending_corrections, reject_correction
from officeflow.services.day_clock import org_offset_minutes
from officeflow.services.leaves import approve_leave, list_pending_leaves, reject_leave
from officeflow.services.push_subscriptions import (
    deactivate_push_subscription,
    get_push_public_config,
    upsert_push_subscription,
)
from officeflow.services.realtime import Publisher
from officeflow.services.records import delete_record
from officeflow.services.reports import (
    attendance_report,
    daily_rollup,
    employee_history,
    late_arrivals,
    list_records,
    monthly_report,
)

router = APIRouter(prefix="/attendance", tags=["attendance-supervisor"], dependencies=[Depends(require_supervisor)])


def _reads(records: Iterable[AttendanceRecord], *, include_employee: bool = True) -> list[AttendanceRecordRead]:
    offset = org_offset_minutes()
    return [record_read(item, offset_minutes=offset, include_employee=include_employee) for item in records]


@router.get("", response_model=AttendanceRecordPage)
def list_attendance(
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    employee_id: int | None = Query(default=None, ge=1),
    status: AttendanceStatus | None = Query(default=None),
    paging: PageParams = Depends(get_page_params),
    db: Session = Depends(get_db),
) -> AttendanceRecordPage:
    records, total = list_records(
        db,
        start_date=start_date,
        end_date=end_date,
        employee_id=employee_id,
        status=status,
        page=paging.page,
        limit=paging.limit,
    )
    return AttendanceRecordPage(
        items=_reads(records),
        total=total,
        page=paging.page,
        limit=paging.limit,
        pages=paging.pages_for(total),
    )


@router.get("/daily", response_model=DailyRollupResponse)
def daily_attendance(
    day: date | None = Query(default=None, alias="date"),
    db: Session = Depends(get_db),
) -> DailyRollupResponse:
    return DailyRollupResponse(**daily_rollup(db, day=day))


@router.get("/monthly", response_model=MonthlyReportResponse)
def monthly_attendance(
    month: int | None = Query(default=None, ge=1, le=12),
    year: int | None = Query(default=None, ge=2000, le=2100),
    db: Session = Depends(get_db),
) -> MonthlyReportResponse:
    return MonthlyReportResponse(**monthly_report(db, month=month, year=year))


@router.get("/report", response_model=AttendanceReportResponse)
def report(
    start_date: date = Query(),
    end_date: date = Query(),
    employee_id: int | None = Query(default=None, ge=1),
    db: Session = Depends(get_db),
) -> AttendanceReportResponse:
    result = attendance_report(db, start_date=start_date, end_date=end_date, employee_id=employee_id)
    return AttendanceReportResponse(
        start_date=result["start_date"],
        end_date=result["end_date"],
        statistics=result["statistics"],
        records=_reads(result["records"]),
    )


@router.get("/late-arrivals", response_model=LateArrivalsResponse)
def late_arrivals_list(
    day: date | None = Query(default=None, alias="date"),
    db: Session = Depends(get_db),
) -> LateArrivalsResponse:
    result = late_arrivals(db, day=day)
    return LateArrivalsResponse(date=result["date"], count=result["count"], records=_reads(result["records"]))


@router.get("/employee/{employee_id}", response_model=EmployeeHistoryResponse)
def employee_attendance(
    employee_id: int,
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    month: int | None = Query(default=None, ge=1, le=12),
    year: int | None = Query(default=None, ge=2000, le=2100),
    db: Session = Depends(get_db),
) -> EmployeeHistoryResponse:
    result = employee_history(
        db,
        employee_id=employee_id,
        start_date=start_date,
        end_date=end_date,
        month=month,
        year=year,
    )
    return EmployeeHistoryResponse(
        employee_id=result["employee_id"],
        employee_name=result["employee_name"],
        email=result["email"],
        summary=result["summary"],
        records=_reads(result["records"], include_employee=False),
    )


@router.get("/corrections/pending", response_model=list[AttendanceRecordRead])
def pending_corrections(db: Session = Depends(get_db)) -> list[AttendanceRecordRead]:
    return _reads(list_pending_corrections(db))


@router.put("/correction/{record_id}/approve", response_model=AttendanceRecordRead)
def approve_correction_request(
    record_id: int,
    request: Request,
    payload: DecisionRequest | None = None,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(require_supervisor),
    publisher: Publisher = Depends(get_publisher),
) -> AttendanceRecordRead:
    record = approve_correction(
        db,
        record_id=record_id,
        approver=caller,
        publisher=publisher,
        admin_notes=payload.admin_notes if payload is not None else None,
    )
    request.state.record_id = record.id
    request.state.employee_id = record.employee_id
    audit_request(
        db,
        request,
        caller=caller,
        action="ATTENDANCE_CORRECTION_APPROVED",
        entity_type="attendance_record",
        entity_id=record.id,
        details={"work_hours": record.work_hours, "status": record.status.value},
    )
    return record_read(record, offset_minutes=org_offset_minutes())


@router.put("/correction/{record_id}/reject", response_model=AttendanceRecordRead)
def reject_correction_request(
    record_id: int,
    request: Request,
    payload: DecisionRequest | None = None,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(require_supervisor),
    publisher: Publisher = Depends(get_publisher),
) -> AttendanceRecordRead:
    record = reject_correction(
        db,
        record_id=record_id,
        approver=caller,
        publisher=publisher,
        admin_notes=payload.admin_notes if payload is not None else None,
    )
    request.state.record_id = record.id
    request.state.employee_id = record.employee_id
    audit_request(
        db,
        request,
        caller=caller,
        action="ATTENDANCE_CORRECTION_REJECTED",
        entity_type="attendance_record",
        entity_id=record.id,
    )
    return record_read(record, offset_minutes=org_offset_minutes())


@router.get("/leaves/pending", response_model=list[AttendanceRecordRead])
def pending_leaves(db: Session = Depends(get_db)) -> list[AttendanceRecordRead]:
    return _reads(list_pending_leaves(db))


@router.put("/leave/{record_id}/approve", response_model=AttendanceRecordRead)
def approve_leave_request(
    record_id: int,
    request: Request,
    payload: DecisionRequest | None = None,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(require_supervisor),
    publisher: Publisher = Depends(get_publisher),
) -> AttendanceRecordRead:
    record = approve_leave(
        db,
        record_id=record_id,
        approver=caller,
        publisher=publisher,
        admin_notes=payload.admin_notes if payload is not None else None,
    )
    request.state.record_id = record.id
    request.state.employee_id = record.employee_id
    audit_request(
        db,
        request,
        caller=caller,
        action="ATTENDANCE_LEAVE_APPROVED",
        entity_type="attendance_record",
        entity_id=record.id,
    )
    return record_read(record, offset_minutes=org_offset_minutes())


@router.put("/leave/{record_id}/reject", response_model=AttendanceRecordRead)
def reject_leave_request(
    record_id: int,
    request: Request,
    payload: DecisionRequest | None = None,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(require_supervisor),
    publisher: Publisher = Depends(get_publisher),
) -> AttendanceRecordRead:
    record = reject_leave(
        db,
        record_id=record_id,
        approver=caller,
        publisher=publisher,
        admin_notes=payload.admin_notes if payload is not None else None,
    )
    request.state.record_id = record.id
    request.state.employee_id = record.employee_id
    audit_request(
        db,
        request,
        caller=caller,
        action="ATTENDANCE_LEAVE_REJECTED",
        entity_type="attendance_record",
        entity_id=record.id,
        details={"restored_status": record.status.value},
    )
    return record_read(record, offset_minutes=org_offset_minutes())


@router.get("/push/config", response_model=PushConfigResponse)
def push_config() -> PushConfigResponse:
    return PushConfigResponse(**get_push_public_config())


@router.post("/push/subscribe", response_model=PushSubscribeResponse)
def push_subscribe(
    payload: PushSubscribeRequest,
    request: Request,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(require_supervisor),
) -> PushSubscribeResponse:
    row = upsert_push_subscription(
        db,
        caller=caller,
        subscription=payload.subscription,
        user_agent=request.headers.get("user-agent"),
    )
    return PushSubscribeResponse(ok=True, subscription_id=row.id)


@router.post("/push/unsubscribe", response_model=PushUnsubscribeResponse)
def push_unsubscribe(
    payload: PushUnsubscribeRequest,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(require_supervisor),
) -> PushUnsubscribeResponse:
    return PushUnsubscribeResponse(ok=deactivate_push_subscription(db, caller=caller, endpoint=payload.endpoint))


@router.delete("/{record_id}", response_model=DeleteResponse)
def delete_attendance(
    record_id: int,
    request: Request,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(require_supervisor),
) -> DeleteResponse:
    record = delete_record(db, record_id)
    request.state.record_id = record_id
    audit_request(
        db,
        request,
        caller=caller,
        action="ATTENDANCE_RECORD_DELETED",
        entity_type="attendance_record",
        entity_id=record_id,
        details={"employee_id": record.employee_id, "day_key": record.day_key.isoformat()},
    )
    return DeleteResponse(ok=True, id=record_id)
