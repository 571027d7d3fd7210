from __future__ import annotations

import unittest

from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlite_fixtures import add_employee, memory_engine, override_get_db, record_count, session_factory

from officeflow.db import get_db
from officeflow.dependencies import get_publisher
from officeflow.main import app
from officeflow.models import AuditLog
from officeflow.security import CallerContext, get_caller
from officeflow.services.realtime import EVENT_CORRECTION_APPROVED, EVENT_LEAVE_REQUESTED, InMemoryPublisher

EMPLOYEE = CallerContext(subject="u-50", role="employee", name="Imran Shah")
SUPERVISOR = CallerContext(subject="sup-50", role="supervisor", name="Floor Lead")


class AttendanceApiTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = memory_engine()
        self.factory = session_factory(self.engine)
        with self.factory() as db:
            self.employee_id = add_employee(db, user_id=EMPLOYEE.subject, full_name="Imran Shah").id
            add_employee(db, user_id="u-51", full_name="Retired Person", is_active=False)

        self.caller = EMPLOYEE
        self.publisher = InMemoryPublisher()
        app.dependency_overrides[get_db] = override_get_db(self.factory)
        app.dependency_overrides[get_caller] = lambda: self.caller
        app.dependency_overrides[get_publisher] = lambda: self.publisher
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()
        self.engine.dispose()

    def _as(self, caller: CallerContext) -> None:
        self.caller = caller

    def _audit_actions(self) -> list[str]:
        with self.factory() as db:
            return list(db.scalars(select(AuditLog.action).order_by(AuditLog.id)).all())

    def test_check_in_and_status(self) -> None:
        response = self.client.post("/attendance/checkin", json={"lat": 24.86, "lon": 67.0})
        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body["employee_id"], self.employee_id)
        self.assertIn(body["status"], {"present", "late"})
        self.assertEqual(body["check_in"]["location"], "remote")
        self.assertEqual(self._audit_actions(), ["ATTENDANCE_CHECKED_IN"])

        status_body = self.client.get("/attendance/status").json()
        self.assertTrue(status_body["is_checked_in"])
        self.assertFalse(status_body["is_checked_out"])
        self.assertEqual(status_body["record"]["id"], body["id"])

        again = self.client.post("/attendance/checkin", json={})
        self.assertEqual(again.status_code, 409)
        self.assertEqual(again.json()["error"]["code"], "ALREADY_CHECKED_IN")
        self.assertEqual(again.json()["error"]["kind"], "conflict")

    def test_check_out_without_check_in(self) -> None:
        response = self.client.post("/attendance/checkout", json={})
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["error"]["code"], "CHECKIN_REQUIRED")

    def test_history_limit_is_clamped(self) -> None:
        response = self.client.get("/attendance/me", params={"limit": 500})
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["limit"], 100)
        self.assertEqual(body["total"], 0)
        self.assertEqual(body["pages"], 0)

    def test_unknown_and_inactive_employees(self) -> None:
        self._as(CallerContext(subject="ghost", role="employee"))
        response = self.client.get("/attendance/status")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["error"]["code"], "EMPLOYEE_NOT_FOUND")

        self._as(CallerContext(subject="u-51", role="employee"))
        response = self.client.post("/attendance/checkin", json={})
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["error"]["code"], "EMPLOYEE_INACTIVE")

    def test_employee_cannot_use_supervisor_routes(self) -> None:
        for method, path in (
            ("get", "/attendance/daily"),
            ("get", "/attendance/corrections/pending"),
            ("put", "/attendance/correction/1/approve"),
            ("delete", "/attendance/1"),
        ):
            response = getattr(self.client, method)(path)
            self.assertEqual(response.status_code, 403, path)
            error = response.json()["error"]
            self.assertEqual(error["code"], "FORBIDDEN")
            self.assertEqual(error["kind"], "authorization")

    def test_correction_round_trip(self) -> None:
        response = self.client.post(
            "/attendance/correction",
            json={
                "date": "2024-01-02",
                "reason": "Badge reader was down",
                "correct_check_in": "2024-01-02T09:10:00",
                "correct_check_out": "2024-01-02T17:10:00",
            },
        )
        self.assertEqual(response.status_code, 201)
        record_id = response.json()["id"]
        self.assertEqual(response.json()["status"], "absent")
        self.assertEqual(response.json()["correction_request"]["status"], "pending")

        self._as(SUPERVISOR)
        pending = self.client.get("/attendance/corrections/pending").json()
        self.assertEqual([item["id"] for item in pending], [record_id])
        self.assertEqual(pending[0]["employee_name"], "Imran Shah")

        rejected = self.client.put(f"/attendance/correction/{record_id}/reject", json={})
        self.assertEqual(rejected.status_code, 422)
        self.assertEqual(rejected.json()["error"]["code"], "ADMIN_NOTES_REQUIRED")
        self.assertEqual(rejected.json()["error"]["kind"], "validation")

        approved = self.client.put(f"/attendance/correction/{record_id}/approve", json={"admin_notes": "Verified"})
        self.assertEqual(approved.status_code, 200)
        body = approved.json()
        self.assertEqual(body["work_hours"], 8.0)
        self.assertEqual(body["status"], "present")
        self.assertEqual(body["day"], "2024-01-02")
        self.assertEqual(body["correction_request"]["status"], "approved")
        self.assertEqual(body["correction_request"]["decided_by"], "sup-50")
        self.assertEqual(len(self.publisher.events_named(EVENT_CORRECTION_APPROVED)), 1)
        self.assertEqual(
            self._audit_actions(),
            ["ATTENDANCE_CORRECTION_REQUESTED", "ATTENDANCE_CORRECTION_APPROVED"],
        )

    def test_leave_submission_and_supervisor_views(self) -> None:
        response = self.client.post(
            "/attendance/leave",
            json={"start_date": "2024-01-01", "end_date": "2024-01-03", "leave_type": "sick", "reason": "Flu"},
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["days"], 3)
        self.assertEqual(len(self.publisher.events_named(EVENT_LEAVE_REQUESTED)), 3)

        self._as(SUPERVISOR)
        daily = self.client.get("/attendance/daily", params={"date": "2024-01-02"})
        self.assertEqual(daily.status_code, 200)
        self.assertEqual(daily.json()["on_leave"], 1)

        pending = self.client.get("/attendance/leaves/pending").json()
        self.assertEqual(len(pending), 3)
        approved = self.client.put(f"/attendance/leave/{pending[0]['id']}/approve", json={})
        self.assertEqual(approved.json()["leave_request"]["status"], "approved")

    def test_request_validation_uses_error_envelope(self) -> None:
        response = self.client.post("/attendance/leave", json={"start_date": "2024-01-01"}, headers={"X-Request-Id": "req-123"})
        self.assertEqual(response.status_code, 422)
        error = response.json()["error"]
        self.assertEqual(error["code"], "VALIDATION_ERROR")
        self.assertEqual(error["kind"], "validation")
        self.assertEqual(error["request_id"], "req-123")
        self.assertEqual(response.headers["X-Request-Id"], "req-123")

    def test_supervisor_delete(self) -> None:
        self.client.post("/attendance/checkin", json={})
        with self.factory() as db:
            self.assertEqual(record_count(db), 1)
        record_id = self.client.get("/attendance/today").json()["id"]

        self._as(SUPERVISOR)
        response = self.client.delete(f"/attendance/{record_id}")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"ok": True, "id": record_id})
        missing = self.client.delete(f"/attendance/{record_id}")
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(missing.json()["error"]["kind"], "not_found")
        with self.factory() as db:
            self.assertEqual(record_count(db), 0)


class AuthenticationTests(unittest.TestCase):
    def setUp(self) -> None:
        self.client = TestClient(app)

    def test_missing_token_is_unauthorized(self) -> None:
        response = self.client.get("/attendance/status")
        self.assertEqual(response.status_code, 401)
        error = response.json()["error"]
        self.assertEqual(error["code"], "INVALID_TOKEN")
        self.assertEqual(error["kind"], "authorization")

    def test_health(self) -> None:
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["status"], "ok")
        self.assertIn("backend", body["realtime"])
        self.assertIn("org_utc_offset_minutes", body)


if __name__ == "__main__":
    unittest.main()
