from __future__ import annotations

from dataclasses import dataclass

from fastapi import Depends, Query, Request
from sqlalchemy.orm import Session

from officeflow.db import get_db
from officeflow.models import Employee
from officeflow.security import CallerContext, get_caller
from officeflow.services.directory import resolve_employee_for_caller
from officeflow.services.realtime import NullPublisher, Publisher
from officeflow.settings import get_settings


@dataclass(frozen=True, slots=True)
class PageParams:
    page: int
    limit: int

    def pages_for(self, total: int) -> int:
        return (total + self.limit - 1) // self.limit if total else 0


def get_page_params(
    page: int = Query(default=1, ge=1),
    limit: int | None = Query(default=None, ge=1),
) -> PageParams:
    settings = get_settings()
    resolved = min(limit or settings.default_page_size, settings.max_page_size)
    return PageParams(page=page, limit=resolved)


def get_publisher(request: Request) -> Publisher:
    publisher = getattr(request.app.state, "publisher", None)
    if publisher is None:
        return NullPublisher()
    return publisher


def get_current_employee(
    request: Request,
    caller: CallerContext = Depends(get_caller),
    db: Session = Depends(get_db),
) -> Employee:
    employee = resolve_employee_for_caller(db, caller)
    request.state.employee_id = employee.id
    return employee
