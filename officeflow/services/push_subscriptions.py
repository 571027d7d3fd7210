"""Supervisor web-push endpoints and the channel fan-out used by the webpush notifier."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from pywebpush import WebPushException, webpush
from sqlalchemy import select
from sqlalchemy.orm import Session

from officeflow.errors import ApiError, InputValidationError
from officeflow.models import PushSubscription
from officeflow.security import CallerContext
from officeflow.settings import get_settings, is_push_enabled

PUSH_TTL_SECONDS = 60
GONE_STATUSES = frozenset({404, 410})


@dataclass(frozen=True, slots=True)
class BrowserSubscription:
    endpoint: str
    p256dh: str
    auth: str

    @classmethod
    def from_payload(cls, raw: dict[str, Any]) -> BrowserSubscription:
        keys = raw.get("keys")
        if not isinstance(keys, dict):
            raise InputValidationError(code="INVALID_PUSH_SUBSCRIPTION", message="Subscription keys are missing.")
        parsed = cls(
            endpoint=str(raw.get("endpoint") or "").strip(),
            p256dh=str(keys.get("p256dh") or "").strip(),
            auth=str(keys.get("auth") or "").strip(),
        )
        if not (parsed.endpoint and parsed.p256dh and parsed.auth):
            raise InputValidationError(code="INVALID_PUSH_SUBSCRIPTION", message="Subscription payload is incomplete.")
        return parsed


@dataclass(slots=True)
class FanoutResult:
    total_targets: int = 0
    sent: int = 0
    failed: int = 0
    deactivated: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "total_targets": self.total_targets,
            "sent": self.sent,
            "failed": self.failed,
            "deactivated": self.deactivated,
        }


def get_push_public_config() -> dict[str, Any]:
    settings = get_settings()
    enabled = is_push_enabled()
    return {
        "enabled": enabled,
        "vapid_public_key": settings.push_vapid_public_key if enabled else None,
        "channel": settings.realtime_supervisor_channel,
    }


def upsert_push_subscription(
    db: Session,
    *,
    caller: CallerContext,
    subscription: dict[str, Any],
    user_agent: str | None,
) -> PushSubscription:
    if not is_push_enabled():
        raise ApiError(status_code=503, code="PUSH_NOT_CONFIGURED", message="Push notifications are not configured.")

    browser = BrowserSubscription.from_payload(subscription)
    row = db.scalar(select(PushSubscription).where(PushSubscription.endpoint == browser.endpoint))
    if row is None:
        row = PushSubscription(endpoint=browser.endpoint)
        db.add(row)

    # Re-subscribing moves the endpoint to the current caller and revives it.
    row.user_id = caller.subject
    row.channel = get_settings().realtime_supervisor_channel
    row.p256dh = browser.p256dh
    row.auth = browser.auth
    row.user_agent = user_agent
    row.is_active = True
    row.last_error = None
    row.last_seen_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(row)
    return row


def deactivate_push_subscription(db: Session, *, caller: CallerContext, endpoint: str) -> bool:
    endpoint = endpoint.strip()
    if not endpoint:
        raise InputValidationError(code="INVALID_PUSH_SUBSCRIPTION", message="Endpoint is required.")

    row = db.scalar(
        select(PushSubscription).where(
            PushSubscription.user_id == caller.subject,
            PushSubscription.endpoint == endpoint,
        )
    )
    if row is None:
        return False
    if row.is_active:
        row.is_active = False
        row.last_seen_at = datetime.now(timezone.utc)
        db.commit()
    return True


def list_active_push_subscriptions(db: Session, *, channel: str) -> list[PushSubscription]:
    stmt = (
        select(PushSubscription)
        .where(PushSubscription.channel == channel, PushSubscription.is_active.is_(True))
        .order_by(PushSubscription.id.desc())
    )
    return list(db.scalars(stmt).all())


def _deliver(row: PushSubscription, body: str, *, timeout_seconds: float) -> None:
    settings = get_settings()
    webpush(
        subscription_info={"endpoint": row.endpoint, "keys": {"p256dh": row.p256dh, "auth": row.auth}},
        data=body,
        vapid_private_key=settings.push_vapid_private_key,
        vapid_claims={"sub": settings.push_vapid_subject},
        ttl=PUSH_TTL_SECONDS,
        timeout=timeout_seconds,
    )


def send_push_to_channel(
    db: Session,
    *,
    channel: str,
    event_name: str,
    data: dict[str, Any],
    timeout_seconds: float,
) -> dict[str, int]:
    result = FanoutResult()
    if not is_push_enabled():
        return result.as_dict()

    rows = list_active_push_subscriptions(db, channel=channel)
    result.total_targets = len(rows)
    seen_at = datetime.now(timezone.utc)
    body = json.dumps({"event": event_name, "data": data, "ts_utc": seen_at.isoformat()}, default=str)

    for row in rows:
        row.last_seen_at = seen_at
        try:
            _deliver(row, body, timeout_seconds=timeout_seconds)
        except WebPushException as exc:
            result.failed += 1
            row.last_error = str(exc)
            status = exc.response.status_code if exc.response is not None else None
            if status in GONE_STATUSES:
                row.is_active = False
                result.deactivated += 1
            continue
        result.sent += 1
        row.last_error = None

    db.commit()
    return result.as_dict()
