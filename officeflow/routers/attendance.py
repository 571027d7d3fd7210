from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from officeflow.audit import audit_request, client_ip
from officeflow.db import get_db
from officeflow.dependencies import PageParams, get_current_employee, get_page_params, get_publisher
from officeflow.models import Employee
from officeflow.schemas import (
    AttendanceRecordPage,
    AttendanceRecordRead,
    AttendanceStatusResponse,
    BreakStartRequest,
    CheckInRequest,
    CheckOutRequest,
    CorrectionCreateRequest,
    LeaveCreateRequest,
    LeaveSubmissionResponse,
    MonthlySummaryResponse,
    record_read,
)
from officeflow.security import CallerContext, get_caller
from officeflow.services.attendance import (
    PunchContext,
    check_in,
    check_out,
    end_break,
    get_status,
    get_today_record,
    list_history,
    monthly_summary,
    start_break,
)
from officeflow.services.corrections import list_my_corrections, request_correction
from officeflow.services.day_clock import org_offset_minutes
from officeflow.services.leaves import list_my_leaves, request_leave
from officeflow.services.realtime import Publisher

router = APIRouter(prefix="/attendance", tags=["attendance"])


def _user_agent(request: Request) -> str | None:
    return request.headers.get("user-agent")


def _punch(payload: CheckInRequest | CheckOutRequest, request: Request) -> PunchContext:
    return PunchContext(
        location_kind=payload.location,
        method=payload.method,
        source_ip=client_ip(request),
        device_info=payload.device_info or _user_agent(request),
        lat=payload.lat,
        lon=payload.lon,
        accuracy_m=payload.accuracy_m,
    )


@router.post("/checkin", response_model=AttendanceRecordRead, status_code=status.HTTP_201_CREATED)
def checkin(
    payload: CheckInRequest,
    request: Request,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
    employee: Employee = Depends(get_current_employee),
    publisher: Publisher = Depends(get_publisher),
) -> AttendanceRecordRead:
    record = check_in(
        db,
        employee=employee,
        publisher=publisher,
        punch=_punch(payload, request),
        notes=payload.notes,
    )
    request.state.record_id = record.id
    audit_request(
        db,
        request,
        caller=caller,
        action="ATTENDANCE_CHECKED_IN",
        entity_type="attendance_record",
        entity_id=record.id,
        details={"status": record.status.value, "late_by_minutes": record.late_by_minutes},
    )
    return record_read(record, offset_minutes=org_offset_minutes())


@router.post("/checkout", response_model=AttendanceRecordRead)
def checkout(
    payload: CheckOutRequest,
    request: Request,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
    employee: Employee = Depends(get_current_employee),
    publisher: Publisher = Depends(get_publisher),
) -> AttendanceRecordRead:
    record = check_out(
        db,
        employee=employee,
        publisher=publisher,
        punch=_punch(payload, request),
        auto_checkout=payload.auto_checkout,
        reason=payload.reason,
    )
    request.state.record_id = record.id
    audit_request(
        db,
        request,
        caller=caller,
        action="ATTENDANCE_CHECKED_OUT",
        entity_type="attendance_record",
        entity_id=record.id,
        details={"work_hours": record.work_hours, "auto_checkout": payload.auto_checkout},
    )
    return record_read(record, offset_minutes=org_offset_minutes())


@router.get("/status", response_model=AttendanceStatusResponse)
def attendance_status(
    db: Session = Depends(get_db),
    employee: Employee = Depends(get_current_employee),
) -> AttendanceStatusResponse:
    view = get_status(db, employee=employee)
    return AttendanceStatusResponse(
        is_checked_in=view.is_checked_in,
        is_checked_out=view.is_checked_out,
        record=record_read(view.record, offset_minutes=org_offset_minutes()) if view.record is not None else None,
    )


@router.get("/today", response_model=AttendanceRecordRead | None)
def today(
    db: Session = Depends(get_db),
    employee: Employee = Depends(get_current_employee),
) -> AttendanceRecordRead | None:
    record = get_today_record(db, employee=employee)
    if record is None:
        return None
    return record_read(record, offset_minutes=org_offset_minutes())


@router.get("/me", response_model=AttendanceRecordPage)
def my_history(
    db: Session = Depends(get_db),
    employee: Employee = Depends(get_current_employee),
    paging: PageParams = Depends(get_page_params),
) -> AttendanceRecordPage:
    records, total = list_history(db, employee=employee, page=paging.page, limit=paging.limit)
    offset = org_offset_minutes()
    return AttendanceRecordPage(
        items=[record_read(item, offset_minutes=offset) for item in records],
        total=total,
        page=paging.page,
        limit=paging.limit,
        pages=paging.pages_for(total),
    )


@router.get("/summary", response_model=MonthlySummaryResponse)
def my_summary(
    month: int | None = Query(default=None, ge=1, le=12),
    year: int | None = Query(default=None, ge=2000, le=2100),
    db: Session = Depends(get_db),
    employee: Employee = Depends(get_current_employee),
) -> MonthlySummaryResponse:
    result = monthly_summary(db, employee=employee, month=month, year=year)
    offset = org_offset_minutes()
    return MonthlySummaryResponse(
        employee_id=result["employee_id"],
        month=result["month"],
        year=result["year"],
        summary=result["summary"],
        records=[record_read(item, offset_minutes=offset) for item in result["records"]],
    )


@router.post("/breaks/start", response_model=AttendanceRecordRead)
def break_start(
    payload: BreakStartRequest,
    request: Request,
    db: Session = Depends(get_db),
    employee: Employee = Depends(get_current_employee),
) -> AttendanceRecordRead:
    record = start_break(db, employee=employee, kind=payload.kind)
    request.state.record_id = record.id
    return record_read(record, offset_minutes=org_offset_minutes())


@router.post("/breaks/end", response_model=AttendanceRecordRead)
def break_end(
    request: Request,
    db: Session = Depends(get_db),
    employee: Employee = Depends(get_current_employee),
) -> AttendanceRecordRead:
    record = end_break(db, employee=employee)
    request.state.record_id = record.id
    return record_read(record, offset_minutes=org_offset_minutes())


@router.post("/correction", response_model=AttendanceRecordRead, status_code=status.HTTP_201_CREATED)
def submit_correction(
    payload: CorrectionCreateRequest,
    request: Request,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
    employee: Employee = Depends(get_current_employee),
    publisher: Publisher = Depends(get_publisher),
) -> AttendanceRecordRead:
    record = request_correction(
        db,
        employee=employee,
        publisher=publisher,
        day=payload.date,
        reason=payload.reason,
        correct_check_in=payload.correct_check_in,
        correct_check_out=payload.correct_check_out,
    )
    request.state.record_id = record.id
    audit_request(
        db,
        request,
        caller=caller,
        action="ATTENDANCE_CORRECTION_REQUESTED",
        entity_type="attendance_record",
        entity_id=record.id,
        details={"date": payload.date.isoformat()},
    )
    return record_read(record, offset_minutes=org_offset_minutes())


@router.get("/corrections", response_model=list[AttendanceRecordRead])
def my_corrections(
    db: Session = Depends(get_db),
    employee: Employee = Depends(get_current_employee),
) -> list[AttendanceRecordRead]:
    offset = org_offset_minutes()
    return [record_read(item, offset_minutes=offset) for item in list_my_corrections(db, employee=employee)]


@router.post("/leave", response_model=LeaveSubmissionResponse, status_code=status.HTTP_201_CREATED)
def submit_leave(
    payload: LeaveCreateRequest,
    request: Request,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
    employee: Employee = Depends(get_current_employee),
    publisher: Publisher = Depends(get_publisher),
) -> LeaveSubmissionResponse:
    records = request_leave(
        db,
        employee=employee,
        publisher=publisher,
        start_date=payload.start_date,
        end_date=payload.end_date,
        leave_type=payload.leave_type,
        reason=payload.reason,
    )
    audit_request(
        db,
        request,
        caller=caller,
        action="ATTENDANCE_LEAVE_REQUESTED",
        entity_type="employee",
        entity_id=employee.id,
        details={
            "start_date": payload.start_date.isoformat(),
            "end_date": payload.end_date.isoformat(),
            "leave_type": payload.leave_type.value,
            "record_ids": [item.id for item in records],
        },
    )
    offset = org_offset_minutes()
    return LeaveSubmissionResponse(
        days=len(records),
        records=[record_read(item, offset_minutes=offset) for item in records],
    )


@router.get("/leaves", response_model=list[AttendanceRecordRead])
def my_leaves(
    db: Session = Depends(get_db),
    employee: Employee = Depends(get_current_employee),
) -> list[AttendanceRecordRead]:
    offset = org_offset_minutes()
    return [record_read(item, offset_minutes=offset) for item in list_my_leaves(db, employee=employee)]
