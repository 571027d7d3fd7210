from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import TypeDecorator

from officeflow.db import Base


class AttendanceStatus(str, enum.Enum):
    PRESENT = "present"
    ABSENT = "absent"
    LATE = "late"
    LEAVE = "leave"
    HALF_DAY = "half-day"
    WORK_FROM_HOME = "work-from-home"


class LocationKind(str, enum.Enum):
    OFFICE = "office"
    REMOTE = "remote"
    FIELD = "field"


class CheckMethod(str, enum.Enum):
    AUTO = "auto"
    MANUAL = "manual"
    QR_CODE = "qr-code"
    WIFI = "wifi"
    BLUETOOTH = "bluetooth"


class RequestStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class LeaveType(str, enum.Enum):
    SICK = "sick"
    CASUAL = "casual"
    VACATION = "vacation"
    EMERGENCY = "emergency"
    UNPAID = "unpaid"


class BreakKind(str, enum.Enum):
    LUNCH = "lunch"
    TEA = "tea"
    OTHER = "other"


class AuditActorType(str, enum.Enum):
    EMPLOYEE = "EMPLOYEE"
    SUPERVISOR = "SUPERVISOR"
    SYSTEM = "SYSTEM"


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


def _value_enum(enum_cls: type[enum.Enum], name: str) -> Enum:
    return Enum(enum_cls, name=name, values_callable=_enum_values, validate_strings=True)


JsonDict = JSON().with_variant(JSONB(), "postgresql")


class UtcDateTime(TypeDecorator):
    """Timezone-aware timestamp that always round-trips as UTC.

    Backends without native timestamptz support hand back naive values;
    those are stored and read as UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect) -> datetime | None:  # type: ignore[no-untyped-def]
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value: datetime | None, dialect) -> datetime | None:  # type: ignore[no-untyped-def]
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Employee(Base):
    __tablename__ = "employees"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    created_at: Mapped[datetime] = mapped_column(
        UtcDateTime(),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    attendance_records: Mapped[list[AttendanceRecord]] = relationship(back_populates="employee")


class AttendanceRecord(Base):
    __tablename__ = "attendance_records"
    __table_args__ = (
        UniqueConstraint("employee_id", "day_key", name="uq_attendance_records_employee_day"),
        Index("ix_attendance_records_day_key", "day_key"),
        Index("ix_attendance_records_status", "status"),
        CheckConstraint(
            "check_in_ts IS NULL OR check_out_ts IS NULL OR check_out_ts > check_in_ts",
            name="ck_attendance_records_checkout_after_checkin",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    day_key: Mapped[datetime] = mapped_column(UtcDateTime(), nullable=False)

    check_in_ts: Mapped[datetime | None] = mapped_column(UtcDateTime(), nullable=True)
    check_in_location: Mapped[LocationKind | None] = mapped_column(
        _value_enum(LocationKind, "attendance_location_kind"),
        nullable=True,
    )
    check_in_method: Mapped[CheckMethod | None] = mapped_column(
        _value_enum(CheckMethod, "attendance_check_method"),
        nullable=True,
    )
    check_in_ip: Mapped[str | None] = mapped_column(String(128), nullable=True)
    check_in_device: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    check_in_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    check_in_lon: Mapped[float | None] = mapped_column(Float, nullable=True)
    check_in_accuracy_m: Mapped[float | None] = mapped_column(Float, nullable=True)

    check_out_ts: Mapped[datetime | None] = mapped_column(UtcDateTime(), nullable=True)
    check_out_location: Mapped[LocationKind | None] = mapped_column(
        _value_enum(LocationKind, "attendance_location_kind"),
        nullable=True,
    )
    check_out_method: Mapped[CheckMethod | None] = mapped_column(
        _value_enum(CheckMethod, "attendance_check_method"),
        nullable=True,
    )
    check_out_ip: Mapped[str | None] = mapped_column(String(128), nullable=True)
    check_out_device: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    check_out_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    check_out_lon: Mapped[float | None] = mapped_column(Float, nullable=True)
    check_out_accuracy_m: Mapped[float | None] = mapped_column(Float, nullable=True)

    status: Mapped[AttendanceStatus] = mapped_column(
        _value_enum(AttendanceStatus, "attendance_status"),
        nullable=False,
        default=AttendanceStatus.PRESENT,
    )
    work_hours: Mapped[float] = mapped_column(Float, nullable=False, default=0.0, server_default=text("0"))
    total_break_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    productive_hours: Mapped[float] = mapped_column(Float, nullable=False, default=0.0, server_default=text("0"))
    is_late: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    late_by_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    correction_requested_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    correction_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    correction_check_in_ts: Mapped[datetime | None] = mapped_column(UtcDateTime(), nullable=True)
    correction_check_out_ts: Mapped[datetime | None] = mapped_column(UtcDateTime(), nullable=True)
    correction_status: Mapped[RequestStatus | None] = mapped_column(
        _value_enum(RequestStatus, "attendance_request_status"),
        nullable=True,
        index=True,
    )
    correction_decided_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    correction_decided_at: Mapped[datetime | None] = mapped_column(UtcDateTime(), nullable=True)
    correction_requested_at: Mapped[datetime | None] = mapped_column(UtcDateTime(), nullable=True)
    correction_admin_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    leave_type: Mapped[LeaveType | None] = mapped_column(
        _value_enum(LeaveType, "attendance_leave_type"),
        nullable=True,
    )
    leave_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    leave_status: Mapped[RequestStatus | None] = mapped_column(
        _value_enum(RequestStatus, "attendance_request_status"),
        nullable=True,
        index=True,
    )
    leave_decided_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    leave_decided_at: Mapped[datetime | None] = mapped_column(UtcDateTime(), nullable=True)
    leave_requested_at: Mapped[datetime | None] = mapped_column(UtcDateTime(), nullable=True)
    leave_admin_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    leave_prior_status: Mapped[AttendanceStatus | None] = mapped_column(
        _value_enum(AttendanceStatus, "attendance_status"),
        nullable=True,
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        UtcDateTime(),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        UtcDateTime(),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=_utcnow,
    )

    employee: Mapped[Employee] = relationship(back_populates="attendance_records")
    breaks: Mapped[list[AttendanceBreak]] = relationship(
        back_populates="record",
        cascade="all, delete-orphan",
        order_by="AttendanceBreak.start_ts",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}


class AttendanceBreak(Base):
    __tablename__ = "attendance_breaks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    record_id: Mapped[int] = mapped_column(
        ForeignKey("attendance_records.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    start_ts: Mapped[datetime] = mapped_column(UtcDateTime(), nullable=False)
    end_ts: Mapped[datetime | None] = mapped_column(UtcDateTime(), nullable=True)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    kind: Mapped[BreakKind] = mapped_column(
        _value_enum(BreakKind, "attendance_break_kind"),
        nullable=False,
        default=BreakKind.OTHER,
    )

    record: Mapped[AttendanceRecord] = relationship(back_populates="breaks")


class PushSubscription(Base):
    __tablename__ = "push_subscriptions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    channel: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    endpoint: Mapped[str] = mapped_column(String(2048), nullable=False, unique=True)
    p256dh: Mapped[str] = mapped_column(String(512), nullable=False)
    auth: Mapped[str] = mapped_column(String(512), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    user_agent: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UtcDateTime(),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    last_seen_at: Mapped[datetime | None] = mapped_column(UtcDateTime(), nullable=True)


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ts_utc: Mapped[datetime] = mapped_column(
        UtcDateTime(),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
        index=True,
    )
    actor_type: Mapped[AuditActorType] = mapped_column(
        Enum(AuditActorType, name="audit_actor_type"),
        nullable=False,
    )
    actor_id: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[str] = mapped_column(String(255), nullable=False)
    entity_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    ip: Mapped[str | None] = mapped_column(String(128), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    details: Mapped[dict[str, Any]] = mapped_column(
        JsonDict,
        nullable=False,
        default=dict,
    )
