from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from officeflow.errors import AuthorizationError, NotFoundError
from officeflow.models import Employee
from officeflow.security import CallerContext


def resolve_employee_for_caller(db: Session, caller: CallerContext) -> Employee:
    employee = db.scalar(select(Employee).where(Employee.user_id == caller.subject))
    if employee is None:
        raise NotFoundError(
            code="EMPLOYEE_NOT_FOUND",
            message="Employee profile not found. Please contact administrator.",
        )
    if not employee.is_active:
        raise AuthorizationError(
            code="EMPLOYEE_INACTIVE",
            message="Inactive employee cannot perform attendance actions.",
        )
    return employee


def get_employee(db: Session, employee_id: int) -> Employee:
    employee = db.get(Employee, employee_id)
    if employee is None:
        raise NotFoundError(code="EMPLOYEE_NOT_FOUND", message="Employee not found.")
    return employee


def list_active_employees(db: Session) -> list[Employee]:
    return list(
        db.scalars(
            select(Employee)
            .where(Employee.is_active.is_(True))
            .order_by(Employee.full_name.asc(), Employee.id.asc())
        ).all()
    )
