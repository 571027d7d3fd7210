"""Best-effort real-time fan-out of attendance events.

Workflows receive a ``Publisher`` explicitly; nothing in the core reaches for
a process-wide transport. Channels are role scoped (all supervisors share
one), so per-recipient delivery stays the transport's concern.
"""

from __future__ import annotations

import enum
import logging
import threading
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Protocol

import httpx
from sqlalchemy.orm import Session

from officeflow.models import AttendanceRecord, Employee
from officeflow.settings import Settings, get_settings

logger = logging.getLogger("officeflow.realtime")

EVENT_ATTENDANCE_MARKED = "attendance-marked"
EVENT_ATTENDANCE_UPDATED = "attendance-updated"
EVENT_CORRECTION_REQUESTED = "correction-requested"
EVENT_CORRECTION_APPROVED = "correction-approved"
EVENT_CORRECTION_REJECTED = "correction-rejected"
EVENT_LEAVE_REQUESTED = "leave-requested"
EVENT_LEAVE_APPROVED = "leave-approved"
EVENT_LEAVE_REJECTED = "leave-rejected"


class Publisher(Protocol):
    def publish(self, channel: str, event_name: str, payload: dict[str, Any]) -> None:
        ...


class NullPublisher:
    def publish(self, channel: str, event_name: str, payload: dict[str, Any]) -> None:
        return


@dataclass(frozen=True, slots=True)
class PublishedEvent:
    channel: str
    event_name: str
    payload: dict[str, Any]


class InMemoryPublisher:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.events: list[PublishedEvent] = []

    def publish(self, channel: str, event_name: str, payload: dict[str, Any]) -> None:
        with self._lock:
            self.events.append(PublishedEvent(channel=channel, event_name=event_name, payload=dict(payload)))

    def events_named(self, event_name: str) -> list[PublishedEvent]:
        with self._lock:
            return [item for item in self.events if item.event_name == event_name]


class HttpRelayPublisher:
    """Posts events to a relay (e.g. a websocket gateway) that owns the rooms."""

    def __init__(self, url: str, *, timeout_seconds: float, client: httpx.Client | None = None) -> None:
        self.url = url
        self.timeout_seconds = timeout_seconds
        self._client = client or httpx.Client(timeout=timeout_seconds)

    def publish(self, channel: str, event_name: str, payload: dict[str, Any]) -> None:
        response = self._client.post(
            self.url,
            json={"channel": channel, "event": event_name, "payload": payload},
            timeout=self.timeout_seconds,
        )
        response.raise_for_status()


class WebPushPublisher:
    def __init__(self, session_factory: Callable[[], Session], *, timeout_seconds: float) -> None:
        self._session_factory = session_factory
        self.timeout_seconds = timeout_seconds

    def publish(self, channel: str, event_name: str, payload: dict[str, Any]) -> None:
        from officeflow.services.push_subscriptions import send_push_to_channel

        with self._session_factory() as db:
            result = send_push_to_channel(
                db,
                channel=channel,
                event_name=event_name,
                data=payload,
                timeout_seconds=self.timeout_seconds,
            )
        if result.get("failed"):
            logger.warning(
                "realtime_push_partial_failure",
                extra={"channel": channel, "event_name": event_name, **result},
            )


class BestEffortPublisher:
    """Swallows and logs delivery failures; with an executor, sends are fire-and-forget."""

    def __init__(self, inner: Publisher, *, executor: Executor | None = None) -> None:
        self.inner = inner
        self._executor = executor

    def publish(self, channel: str, event_name: str, payload: dict[str, Any]) -> None:
        if self._executor is None:
            self._deliver(channel, event_name, payload)
            return
        try:
            self._executor.submit(self._deliver, channel, event_name, payload)
        except RuntimeError:
            logger.warning(
                "realtime_publish_dropped",
                extra={"channel": channel, "event_name": event_name},
            )

    def _deliver(self, channel: str, event_name: str, payload: dict[str, Any]) -> None:
        try:
            self.inner.publish(channel, event_name, payload)
        except Exception:
            logger.exception(
                "realtime_publish_failed",
                extra={"channel": channel, "event_name": event_name},
            )

    def shutdown(self) -> None:
        if isinstance(self._executor, ThreadPoolExecutor):
            self._executor.shutdown(wait=False)


def build_publisher(
    settings: Settings | None = None,
    *,
    session_factory: Callable[[], Session] | None = None,
) -> BestEffortPublisher:
    settings = settings or get_settings()
    backend = settings.realtime_backend
    inner: Publisher
    if backend == "memory":
        inner = InMemoryPublisher()
    elif backend == "http":
        if not settings.realtime_http_url:
            logger.warning("realtime_http_url_missing")
            inner = NullPublisher()
        else:
            inner = HttpRelayPublisher(settings.realtime_http_url, timeout_seconds=settings.realtime_timeout_seconds)
    elif backend == "webpush":
        if session_factory is None:
            from officeflow.db import SessionLocal

            session_factory = SessionLocal
        inner = WebPushPublisher(session_factory, timeout_seconds=settings.realtime_timeout_seconds)
    else:
        inner = NullPublisher()

    executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="realtime")
    return BestEffortPublisher(inner, executor=executor)


def _value(item: Any) -> Any:
    if isinstance(item, enum.Enum):
        return item.value
    if isinstance(item, datetime):
        return item.isoformat()
    return item


def build_event_payload(
    event_type: str,
    record: AttendanceRecord,
    employee: Employee | None,
) -> dict[str, Any]:
    location = record.check_in_location
    if event_type == EVENT_ATTENDANCE_UPDATED and record.check_out_location is not None:
        location = record.check_out_location
    return {
        "type": event_type,
        "employee_id": record.employee_id,
        "employee_name": (employee.full_name if employee is not None else None) or "Unknown",
        "record_id": record.id,
        "day": _value(record.day_key),
        "check_in": _value(record.check_in_ts),
        "check_out": _value(record.check_out_ts),
        "status": _value(record.status),
        "location": _value(location),
        "work_hours": record.work_hours,
        "is_late": record.is_late,
    }


def publish_record_event(
    publisher: Publisher,
    event_type: str,
    record: AttendanceRecord,
    employee: Employee | None,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    try:
        payload = build_event_payload(event_type, record, employee)
        if extra:
            payload.update({key: _value(value) for key, value in extra.items()})
        publisher.publish(get_settings().realtime_supervisor_channel, event_type, payload)
    except Exception:
        logger.exception(
            "realtime_publish_failed",
            extra={"event_name": event_type, "record_id": record.id, "employee_id": record.employee_id},
        )
