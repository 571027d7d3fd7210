"""Initial attendance schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 00:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

attendance_status = postgresql.ENUM(
    "present",
    "absent",
    "late",
    "leave",
    "half-day",
    "work-from-home",
    name="attendance_status",
    create_type=False,
)
attendance_location_kind = postgresql.ENUM(
    "office",
    "remote",
    "field",
    name="attendance_location_kind",
    create_type=False,
)
attendance_check_method = postgresql.ENUM(
    "auto",
    "manual",
    "qr-code",
    "wifi",
    "bluetooth",
    name="attendance_check_method",
    create_type=False,
)
attendance_request_status = postgresql.ENUM(
    "pending",
    "approved",
    "rejected",
    name="attendance_request_status",
    create_type=False,
)
attendance_leave_type = postgresql.ENUM(
    "sick",
    "casual",
    "vacation",
    "emergency",
    "unpaid",
    name="attendance_leave_type",
    create_type=False,
)
attendance_break_kind = postgresql.ENUM(
    "lunch",
    "tea",
    "other",
    name="attendance_break_kind",
    create_type=False,
)
audit_actor_type = postgresql.ENUM(
    "EMPLOYEE",
    "SUPERVISOR",
    "SYSTEM",
    name="audit_actor_type",
    create_type=False,
)

ALL_ENUMS = (
    attendance_status,
    attendance_location_kind,
    attendance_check_method,
    attendance_request_status,
    attendance_leave_type,
    attendance_break_kind,
    audit_actor_type,
)


def _punch_columns(prefix: str) -> list[sa.Column]:
    return [
        sa.Column(f"{prefix}_ts", sa.DateTime(timezone=True), nullable=True),
        sa.Column(f"{prefix}_location", attendance_location_kind, nullable=True),
        sa.Column(f"{prefix}_method", attendance_check_method, nullable=True),
        sa.Column(f"{prefix}_ip", sa.String(length=128), nullable=True),
        sa.Column(f"{prefix}_device", sa.String(length=1024), nullable=True),
        sa.Column(f"{prefix}_lat", sa.Float(), nullable=True),
        sa.Column(f"{prefix}_lon", sa.Float(), nullable=True),
        sa.Column(f"{prefix}_accuracy_m", sa.Float(), nullable=True),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in ALL_ENUMS:
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        "employees",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
    )
    op.create_index("ix_employees_user_id", "employees", ["user_id"], unique=True)

    op.create_table(
        "attendance_records",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("day_key", sa.DateTime(timezone=True), nullable=False),
        *_punch_columns("check_in"),
        *_punch_columns("check_out"),
        sa.Column("status", attendance_status, nullable=False),
        sa.Column("work_hours", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_break_minutes", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("productive_hours", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_late", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("late_by_minutes", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("correction_requested_by", sa.String(length=255), nullable=True),
        sa.Column("correction_reason", sa.Text(), nullable=True),
        sa.Column("correction_check_in_ts", sa.DateTime(timezone=True), nullable=True),
        sa.Column("correction_check_out_ts", sa.DateTime(timezone=True), nullable=True),
        sa.Column("correction_status", attendance_request_status, nullable=True),
        sa.Column("correction_decided_by", sa.String(length=255), nullable=True),
        sa.Column("correction_decided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("correction_requested_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("correction_admin_notes", sa.Text(), nullable=True),
        sa.Column("leave_type", attendance_leave_type, nullable=True),
        sa.Column("leave_reason", sa.Text(), nullable=True),
        sa.Column("leave_status", attendance_request_status, nullable=True),
        sa.Column("leave_decided_by", sa.String(length=255), nullable=True),
        sa.Column("leave_decided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("leave_requested_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("leave_admin_notes", sa.Text(), nullable=True),
        sa.Column("leave_prior_status", attendance_status, nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("employee_id", "day_key", name="uq_attendance_records_employee_day"),
        sa.CheckConstraint(
            "check_in_ts IS NULL OR check_out_ts IS NULL OR check_out_ts > check_in_ts",
            name="ck_attendance_records_checkout_after_checkin",
        ),
    )
    op.create_index("ix_attendance_records_employee_id", "attendance_records", ["employee_id"], unique=False)
    op.create_index("ix_attendance_records_day_key", "attendance_records", ["day_key"], unique=False)
    op.create_index("ix_attendance_records_status", "attendance_records", ["status"], unique=False)
    op.create_index(
        "ix_attendance_records_correction_status",
        "attendance_records",
        ["correction_status"],
        unique=False,
    )
    op.create_index("ix_attendance_records_leave_status", "attendance_records", ["leave_status"], unique=False)

    op.create_table(
        "attendance_breaks",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("record_id", sa.Integer(), nullable=False),
        sa.Column("start_ts", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_ts", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_minutes", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("kind", attendance_break_kind, nullable=False),
        sa.ForeignKeyConstraint(["record_id"], ["attendance_records.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_attendance_breaks_record_id", "attendance_breaks", ["record_id"], unique=False)

    op.create_table(
        "push_subscriptions",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column("channel", sa.String(length=128), nullable=False),
        sa.Column("endpoint", sa.String(length=2048), nullable=False),
        sa.Column("p256dh", sa.String(length=512), nullable=False),
        sa.Column("auth", sa.String(length=512), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("user_agent", sa.String(length=1024), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("last_seen_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("endpoint", name="uq_push_subscriptions_endpoint"),
    )
    op.create_index("ix_push_subscriptions_user_id", "push_subscriptions", ["user_id"], unique=False)
    op.create_index("ix_push_subscriptions_channel", "push_subscriptions", ["channel"], unique=False)

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("ts_utc", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("actor_type", audit_actor_type, nullable=False),
        sa.Column("actor_id", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=255), nullable=True),
        sa.Column("entity_id", sa.String(length=255), nullable=True),
        sa.Column("ip", sa.String(length=128), nullable=True),
        sa.Column("user_agent", sa.String(length=1024), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "details",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
    )
    op.create_index("ix_audit_logs_ts_utc", "audit_logs", ["ts_utc"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_audit_logs_ts_utc", table_name="audit_logs")
    op.drop_table("audit_logs")

    op.drop_index("ix_push_subscriptions_channel", table_name="push_subscriptions")
    op.drop_index("ix_push_subscriptions_user_id", table_name="push_subscriptions")
    op.drop_table("push_subscriptions")

    op.drop_index("ix_attendance_breaks_record_id", table_name="attendance_breaks")
    op.drop_table("attendance_breaks")

    op.drop_index("ix_attendance_records_leave_status", table_name="attendance_records")
    op.drop_index("ix_attendance_records_correction_status", table_name="attendance_records")
    op.drop_index("ix_attendance_records_status", table_name="attendance_records")
    op.drop_index("ix_attendance_records_day_key", table_name="attendance_records")
    op.drop_index("ix_attendance_records_employee_id", table_name="attendance_records")
    op.drop_table("attendance_records")

    op.drop_index("ix_employees_user_id", table_name="employees")
    op.drop_table("employees")

    bind = op.get_bind()
    for enum_type in reversed(ALL_ENUMS):
        enum_type.drop(bind, checkfirst=True)
