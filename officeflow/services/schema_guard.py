from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError


@dataclass(frozen=True, slots=True)
class SchemaGuardResult:
    ok: bool
    checked_at_utc: datetime
    issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "checked_at_utc": self.checked_at_utc.isoformat(),
            "issues": list(self.issues),
            "warnings": list(self.warnings),
            "issue_count": len(self.issues),
            "warning_count": len(self.warnings),
        }


REQUIRED_TABLE_COLUMNS: dict[str, set[str]] = {
    "employees": {"id", "user_id", "full_name", "is_active"},
    "attendance_records": {
        "id",
        "employee_id",
        "day_key",
        "check_in_ts",
        "check_out_ts",
        "status",
        "work_hours",
        "is_late",
        "correction_status",
        "leave_status",
        "leave_prior_status",
        "version",
    },
    "attendance_breaks": {"id", "record_id", "start_ts", "end_ts"},
    "push_subscriptions": {"id", "channel", "endpoint", "is_active"},
    "audit_logs": {"id", "action", "details"},
    "alembic_version": {"version_num"},
}

# The one-record-per-employee-per-day rule lives in this constraint.
REQUIRED_UNIQUE_KEYS: dict[str, tuple[str, ...]] = {
    "attendance_records": ("employee_id", "day_key"),
}

REQUIRED_ENUM_VALUES: dict[str, set[str]] = {
    "attendance_status": {"present", "absent", "late", "leave", "half-day", "work-from-home"},
    "attendance_request_status": {"pending", "approved", "rejected"},
}


def _unique_column_sets(inspector: Any, table_name: str) -> list[tuple[str, ...]]:
    column_sets: list[tuple[str, ...]] = []
    for constraint in inspector.get_unique_constraints(table_name):
        column_sets.append(tuple(constraint.get("column_names") or ()))
    for index in inspector.get_indexes(table_name):
        if index.get("unique"):
            column_sets.append(tuple(index.get("column_names") or ()))
    return column_sets


def verify_runtime_schema(engine: Engine) -> SchemaGuardResult:
    issues: list[str] = []
    warnings: list[str] = []
    checked_at_utc = datetime.now(timezone.utc)
    inspector = inspect(engine)

    for table_name, required_columns in REQUIRED_TABLE_COLUMNS.items():
        try:
            column_names = {str(item.get("name")) for item in inspector.get_columns(table_name)}
        except SQLAlchemyError as exc:
            issues.append(f"TABLE_UNREADABLE:{table_name}:{exc.__class__.__name__}")
            continue

        missing_columns = sorted(item for item in required_columns if item not in column_names)
        if missing_columns:
            issues.append(f"MISSING_COLUMNS:{table_name}:{','.join(missing_columns)}")

    for table_name, key_columns in REQUIRED_UNIQUE_KEYS.items():
        try:
            column_sets = _unique_column_sets(inspector, table_name)
        except SQLAlchemyError as exc:
            issues.append(f"UNIQUE_KEY_UNREADABLE:{table_name}:{exc.__class__.__name__}")
            continue
        if not any(set(item) == set(key_columns) for item in column_sets):
            issues.append(f"MISSING_UNIQUE_KEY:{table_name}:{','.join(key_columns)}")

    try:
        enums = inspector.get_enums() or []
    except (NotImplementedError, AttributeError, SQLAlchemyError) as exc:
        # Only PostgreSQL exposes named enum types.
        warnings.append(f"ENUM_INSPECTION_FAILED:{exc.__class__.__name__}")
        enums = []

    enum_values_by_name: dict[str, set[str]] = {}
    for enum_item in enums:
        name = str(enum_item.get("name") or "").strip()
        if not name:
            continue
        labels = enum_item.get("labels")
        if isinstance(labels, list):
            enum_values_by_name[name] = {str(label) for label in labels}

    if enum_values_by_name:
        for enum_name, required_values in REQUIRED_ENUM_VALUES.items():
            if enum_name not in enum_values_by_name:
                warnings.append(f"ENUM_NOT_FOUND:{enum_name}")
                continue
            missing_values = sorted(item for item in required_values if item not in enum_values_by_name[enum_name])
            if missing_values:
                issues.append(f"MISSING_ENUM_VALUES:{enum_name}:{','.join(missing_values)}")

    try:
        with engine.connect() as connection:
            row = connection.execute(text("SELECT version_num FROM alembic_version LIMIT 1")).scalar()
            version = str(row).strip() if row is not None else ""
            if not version:
                issues.append("ALEMBIC_VERSION_EMPTY")
    except SQLAlchemyError as exc:
        issues.append(f"ALEMBIC_VERSION_CHECK_FAILED:{exc.__class__.__name__}")

    return SchemaGuardResult(
        ok=len(issues) == 0,
        checked_at_utc=checked_at_utc,
        issues=issues,
        warnings=warnings,
    )
