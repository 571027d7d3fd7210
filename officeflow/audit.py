from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from officeflow.errors import get_request_id
from officeflow.models import AuditActorType, AuditLog
from officeflow.security import CallerContext

logger = logging.getLogger("officeflow.audit")


def client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    if request.client:
        return request.client.host
    return None


def actor_type_for(caller: CallerContext | None) -> AuditActorType:
    if caller is None:
        return AuditActorType.SYSTEM
    if caller.is_supervisor:
        return AuditActorType.SUPERVISOR
    return AuditActorType.EMPLOYEE


def log_audit(
    db: Session,
    *,
    actor_type: AuditActorType,
    actor_id: str,
    action: str,
    success: bool,
    entity_type: str | None = None,
    entity_id: str | None = None,
    ip: str | None = None,
    user_agent: str | None = None,
    details: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> None:
    """Append an audit row in its own commit; a failed write is logged, never raised."""
    payload = details or {}
    db.add(
        AuditLog(
            ts_utc=datetime.now(timezone.utc),
            actor_type=actor_type,
            actor_id=actor_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            ip=ip,
            user_agent=user_agent,
            success=success,
            details=payload,
        )
    )
    log_fields = {
        "request_id": request_id,
        "action": action,
        "actor_type": actor_type.value,
        "actor_id": actor_id,
        "success": success,
    }
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("audit_log_write_failed", extra=log_fields)
        return

    logger.info(
        "audit_event",
        extra={**log_fields, "entity_type": entity_type, "entity_id": entity_id, "details": payload},
    )


def audit_request(
    db: Session,
    request: Request,
    *,
    caller: CallerContext | None,
    action: str,
    entity_type: str | None = None,
    entity_id: Any = None,
    success: bool = True,
    details: dict[str, Any] | None = None,
) -> None:
    log_audit(
        db,
        actor_type=actor_type_for(caller),
        actor_id=caller.subject if caller is not None else "system",
        action=action,
        success=success,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        ip=client_ip(request),
        user_agent=request.headers.get("user-agent"),
        details=details,
        request_id=get_request_id(request),
    )
