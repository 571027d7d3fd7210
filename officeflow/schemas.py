from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from officeflow.models import (
    AttendanceRecord,
    AttendanceStatus,
    BreakKind,
    CheckMethod,
    LeaveType,
    LocationKind,
    RequestStatus,
)
from officeflow.services.day_clock import local_date


class CheckInRequest(BaseModel):
    location: LocationKind | None = None
    method: CheckMethod = CheckMethod.MANUAL
    lat: float | None = Field(default=None, ge=-90, le=90)
    lon: float | None = Field(default=None, ge=-180, le=180)
    accuracy_m: float | None = Field(default=None, ge=0)
    device_info: str | None = Field(default=None, max_length=1024)
    notes: str | None = Field(default=None, max_length=2000)


class CheckOutRequest(BaseModel):
    location: LocationKind | None = None
    method: CheckMethod = CheckMethod.MANUAL
    lat: float | None = Field(default=None, ge=-90, le=90)
    lon: float | None = Field(default=None, ge=-180, le=180)
    accuracy_m: float | None = Field(default=None, ge=0)
    device_info: str | None = Field(default=None, max_length=1024)
    auto_checkout: bool = False
    reason: str | None = Field(default=None, max_length=500)


class BreakStartRequest(BaseModel):
    kind: BreakKind = BreakKind.OTHER


class CorrectionCreateRequest(BaseModel):
    date: date
    reason: str = Field(min_length=1, max_length=2000)
    correct_check_in: datetime | None = None
    correct_check_out: datetime | None = None


class LeaveCreateRequest(BaseModel):
    start_date: date
    end_date: date
    leave_type: LeaveType
    reason: str = Field(min_length=1, max_length=2000)


class DecisionRequest(BaseModel):
    admin_notes: str | None = Field(default=None, max_length=2000)


class PunchRead(BaseModel):
    time: datetime
    location: LocationKind | None = None
    method: CheckMethod | None = None
    ip_address: str | None = None
    device_info: str | None = None
    lat: float | None = None
    lon: float | None = None
    accuracy_m: float | None = None


class BreakRead(BaseModel):
    id: int
    start_ts: datetime
    end_ts: datetime | None = None
    duration_minutes: int
    kind: BreakKind

    model_config = ConfigDict(from_attributes=True)


class CorrectionRequestRead(BaseModel):
    requested_by: str | None = None
    reason: str | None = None
    correct_check_in: datetime | None = None
    correct_check_out: datetime | None = None
    status: RequestStatus
    decided_by: str | None = None
    decided_at: datetime | None = None
    requested_at: datetime | None = None
    admin_notes: str | None = None


class LeaveRequestRead(BaseModel):
    leave_type: LeaveType | None = None
    reason: str | None = None
    status: RequestStatus
    decided_by: str | None = None
    decided_at: datetime | None = None
    requested_at: datetime | None = None
    admin_notes: str | None = None
    prior_status: AttendanceStatus | None = None


class AttendanceRecordRead(BaseModel):
    id: int
    employee_id: int
    employee_name: str | None = None
    day: date
    day_key: datetime
    check_in: PunchRead | None = None
    check_out: PunchRead | None = None
    status: AttendanceStatus
    work_hours: float
    total_break_minutes: int
    productive_hours: float
    is_late: bool
    late_by_minutes: int
    notes: str | None = None
    breaks: list[BreakRead] = Field(default_factory=list)
    correction_request: CorrectionRequestRead | None = None
    leave_request: LeaveRequestRead | None = None
    version: int
    created_at: datetime | None = None
    updated_at: datetime | None = None


def _punch(record: AttendanceRecord, prefix: str) -> PunchRead | None:
    ts = getattr(record, f"{prefix}_ts")
    if ts is None:
        return None
    return PunchRead(
        time=ts,
        location=getattr(record, f"{prefix}_location"),
        method=getattr(record, f"{prefix}_method"),
        ip_address=getattr(record, f"{prefix}_ip"),
        device_info=getattr(record, f"{prefix}_device"),
        lat=getattr(record, f"{prefix}_lat"),
        lon=getattr(record, f"{prefix}_lon"),
        accuracy_m=getattr(record, f"{prefix}_accuracy_m"),
    )


def record_read(record: AttendanceRecord, *, offset_minutes: int, include_employee: bool = False) -> AttendanceRecordRead:
    correction = None
    if record.correction_status is not None:
        correction = CorrectionRequestRead(
            requested_by=record.correction_requested_by,
            reason=record.correction_reason,
            correct_check_in=record.correction_check_in_ts,
            correct_check_out=record.correction_check_out_ts,
            status=record.correction_status,
            decided_by=record.correction_decided_by,
            decided_at=record.correction_decided_at,
            requested_at=record.correction_requested_at,
            admin_notes=record.correction_admin_notes,
        )
    leave = None
    if record.leave_status is not None:
        leave = LeaveRequestRead(
            leave_type=record.leave_type,
            reason=record.leave_reason,
            status=record.leave_status,
            decided_by=record.leave_decided_by,
            decided_at=record.leave_decided_at,
            requested_at=record.leave_requested_at,
            admin_notes=record.leave_admin_notes,
            prior_status=record.leave_prior_status,
        )

    employee_name = None
    if include_employee and record.employee is not None:
        employee_name = record.employee.full_name

    return AttendanceRecordRead(
        id=record.id,
        employee_id=record.employee_id,
        employee_name=employee_name,
        day=local_date(record.day_key, offset_minutes),
        day_key=record.day_key,
        check_in=_punch(record, "check_in"),
        check_out=_punch(record, "check_out"),
        status=record.status,
        work_hours=float(record.work_hours or 0),
        total_break_minutes=int(record.total_break_minutes or 0),
        productive_hours=float(record.productive_hours or 0),
        is_late=bool(record.is_late),
        late_by_minutes=int(record.late_by_minutes or 0),
        notes=record.notes,
        breaks=[BreakRead.model_validate(item) for item in record.breaks],
        correction_request=correction,
        leave_request=leave,
        version=int(record.version or 0),
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


class AttendanceStatusResponse(BaseModel):
    is_checked_in: bool
    is_checked_out: bool
    record: AttendanceRecordRead | None = None


class AttendanceRecordPage(BaseModel):
    items: list[AttendanceRecordRead]
    total: int
    page: int
    limit: int
    pages: int


class AttendanceSummaryRead(BaseModel):
    total_days: int
    present_days: int
    late_days: int
    absent_days: int
    leave_days: int
    half_days: int
    work_from_home_days: int
    total_work_hours: float
    average_work_hours: float
    total_productive_hours: float
    attendance_rate: float


class MonthlySummaryResponse(BaseModel):
    employee_id: int
    month: int
    year: int
    summary: AttendanceSummaryRead
    records: list[AttendanceRecordRead]


class DailyEntryRead(BaseModel):
    employee_id: int
    employee_name: str | None = None
    has_record: bool
    record_id: int | None = None
    status: AttendanceStatus
    check_in: datetime | None = None
    check_out: datetime | None = None
    is_late: bool
    late_by_minutes: int
    work_hours: float


class DailyRollupResponse(BaseModel):
    date: date
    total_employees: int
    present: int
    late: int
    absent: int
    on_leave: int
    not_checked_in: int
    entries: list[DailyEntryRead]


class MonthlyReportEntry(BaseModel):
    employee_id: int
    employee_name: str | None = None
    email: str | None = None
    summary: AttendanceSummaryRead


class MonthlyReportResponse(BaseModel):
    month: int
    year: int
    report: list[MonthlyReportEntry]


class AttendanceReportResponse(BaseModel):
    start_date: date
    end_date: date
    statistics: AttendanceSummaryRead
    records: list[AttendanceRecordRead]


class LateArrivalsResponse(BaseModel):
    date: date
    count: int
    records: list[AttendanceRecordRead]


class EmployeeHistoryResponse(BaseModel):
    employee_id: int
    employee_name: str
    email: str | None = None
    summary: AttendanceSummaryRead
    records: list[AttendanceRecordRead]


class LeaveSubmissionResponse(BaseModel):
    days: int
    records: list[AttendanceRecordRead]


class DeleteResponse(BaseModel):
    ok: bool
    id: int


class PushConfigResponse(BaseModel):
    enabled: bool
    vapid_public_key: str | None = None
    channel: str


class PushSubscribeRequest(BaseModel):
    subscription: dict[str, Any]


class PushSubscribeResponse(BaseModel):
    ok: bool
    subscription_id: int


class PushUnsubscribeRequest(BaseModel):
    endpoint: str = Field(min_length=1, max_length=2048)


class PushUnsubscribeResponse(BaseModel):
    ok: bool
