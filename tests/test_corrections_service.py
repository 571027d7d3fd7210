from __future__ import annotations

import unittest
from datetime import date, datetime

from sqlite_fixtures import ORG_OFFSET, add_employee, local, memory_engine, record_count, session_factory

from officeflow.errors import ConflictError, InputValidationError, NotFoundError
from officeflow.models import AttendanceStatus, RequestStatus
from officeflow.security import CallerContext
from officeflow.services.attendance import check_in
from officeflow.services.corrections import (
    CORRECTION_REQUESTED_NOTE,
    approve_correction,
    list_my_corrections,
    list_pending_corrections,
    reject_correction,
    request_correction,
)
from officeflow.services.realtime import (
    EVENT_CORRECTION_APPROVED,
    EVENT_CORRECTION_REJECTED,
    EVENT_CORRECTION_REQUESTED,
    InMemoryPublisher,
)

SUPERVISOR = CallerContext(subject="sup-1", role="supervisor", name="Shift Lead")


class CorrectionWorkflowTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = memory_engine()
        self.db = session_factory(self.engine)()
        self.employee = add_employee(self.db, user_id="u-10", full_name="Hamza Ali")
        self.publisher = InMemoryPublisher()

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()

    def _request(self, day: date, **kwargs):  # type: ignore[no-untyped-def]
        kwargs.setdefault("reason", "Forgot to punch")
        return request_correction(
            self.db,
            employee=self.employee,
            publisher=self.publisher,
            day=day,
            offset_minutes=ORG_OFFSET,
            **kwargs,
        )

    def _approve(self, record_id: int, **kwargs):  # type: ignore[no-untyped-def]
        return approve_correction(
            self.db,
            record_id=record_id,
            approver=SUPERVISOR,
            publisher=self.publisher,
            offset_minutes=ORG_OFFSET,
            **kwargs,
        )

    def test_approved_check_out_recomputes_work_hours(self) -> None:
        check_in(
            self.db,
            employee=self.employee,
            publisher=self.publisher,
            instant=local(2024, 1, 2, 9, 10),
            offset_minutes=ORG_OFFSET,
        )
        record = self._request(date(2024, 1, 2), correct_check_out=local(2024, 1, 2, 17, 10))
        self.assertEqual(record.correction_status, RequestStatus.PENDING)
        self.assertIsNone(record.check_out_ts)

        approved = self._approve(record.id, admin_notes="ok")
        self.assertEqual(approved.check_out_ts, local(2024, 1, 2, 17, 10))
        self.assertEqual(approved.work_hours, 8.0)
        self.assertEqual(approved.correction_status, RequestStatus.APPROVED)
        self.assertEqual(approved.correction_decided_by, "sup-1")
        self.assertIsNotNone(approved.correction_decided_at)
        self.assertEqual(approved.status, AttendanceStatus.LATE)

    def test_request_for_missing_day_creates_absent_record(self) -> None:
        record = self._request(
            date(2024, 1, 5),
            correct_check_in=datetime(2024, 1, 5, 8, 45),
            correct_check_out=datetime(2024, 1, 5, 17, 45),
        )
        self.assertEqual(record.status, AttendanceStatus.ABSENT)
        self.assertEqual(record.notes, CORRECTION_REQUESTED_NOTE)
        self.assertIsNone(record.check_in_ts)
        # Naive times are organization wall-clock.
        self.assertEqual(record.correction_check_in_ts, local(2024, 1, 5, 8, 45))
        self.assertEqual(record_count(self.db), 1)
        self.assertEqual(len(self.publisher.events_named(EVENT_CORRECTION_REQUESTED)), 1)

        approved = self._approve(record.id)
        self.assertEqual(approved.status, AttendanceStatus.PRESENT)
        self.assertFalse(approved.is_late)
        self.assertEqual(approved.work_hours, 9.0)
        self.assertEqual(len(self.publisher.events_named(EVENT_CORRECTION_APPROVED)), 1)

    def test_approval_recomputes_lateness_from_corrected_check_in(self) -> None:
        check_in(
            self.db,
            employee=self.employee,
            publisher=self.publisher,
            instant=local(2024, 1, 2, 9, 40),
            offset_minutes=ORG_OFFSET,
        )
        record = self._request(date(2024, 1, 2), correct_check_in=local(2024, 1, 2, 8, 50))
        approved = self._approve(record.id)
        self.assertFalse(approved.is_late)
        self.assertEqual(approved.late_by_minutes, 0)

    def test_on_time_correction_clears_late_status(self) -> None:
        late = check_in(
            self.db,
            employee=self.employee,
            publisher=self.publisher,
            instant=local(2024, 1, 2, 9, 40),
            offset_minutes=ORG_OFFSET,
        )
        self.assertEqual(late.status, AttendanceStatus.LATE)
        record = self._request(date(2024, 1, 2), correct_check_in=local(2024, 1, 2, 8, 55))
        approved = self._approve(record.id)
        self.assertEqual(approved.status, AttendanceStatus.PRESENT)

    def test_times_from_another_day_are_rejected(self) -> None:
        with self.assertRaises(InputValidationError) as exc:
            self._request(
                date(2024, 1, 10),
                correct_check_in=local(2024, 3, 1, 9, 30),
                correct_check_out=local(2024, 3, 1, 17, 30),
            )
        self.assertEqual(exc.exception.code, "CORRECTION_OUTSIDE_DAY")

        with self.assertRaises(InputValidationError) as exc:
            self._request(
                date(2024, 1, 10),
                correct_check_in=local(2024, 1, 10, 9, 0),
                correct_check_out=local(2024, 1, 12, 1, 0),
            )
        self.assertEqual(exc.exception.code, "CORRECTION_OUTSIDE_DAY")
        self.assertEqual(record_count(self.db), 0)

    def test_overnight_check_out_is_accepted(self) -> None:
        record = self._request(
            date(2024, 1, 10),
            correct_check_in=local(2024, 1, 10, 20, 0),
            correct_check_out=local(2024, 1, 11, 4, 0),
        )
        approved = self._approve(record.id)
        self.assertEqual(approved.day_key, local(2024, 1, 10))
        self.assertEqual(approved.work_hours, 8.0)

    def test_check_out_only_correction_needs_a_check_in(self) -> None:
        with self.assertRaises(InputValidationError) as exc:
            self._request(date(2024, 1, 4), correct_check_out=local(2024, 1, 4, 17, 0))
        self.assertEqual(exc.exception.code, "CORRECTION_CHECKIN_REQUIRED")
        self.assertEqual(record_count(self.db), 0)

    def test_check_out_before_existing_check_in_is_rejected(self) -> None:
        check_in(
            self.db,
            employee=self.employee,
            publisher=self.publisher,
            instant=local(2024, 1, 2, 9, 0),
            offset_minutes=ORG_OFFSET,
        )
        with self.assertRaises(InputValidationError) as exc:
            self._request(date(2024, 1, 2), correct_check_out=local(2024, 1, 2, 8, 0))
        self.assertEqual(exc.exception.code, "CHECKOUT_BEFORE_CHECKIN")

    def test_reason_is_required(self) -> None:
        with self.assertRaises(InputValidationError):
            self._request(date(2024, 1, 2), reason="   ")
        self.assertEqual(record_count(self.db), 0)

    def test_reversed_requested_times_are_rejected(self) -> None:
        with self.assertRaises(InputValidationError):
            self._request(
                date(2024, 1, 2),
                correct_check_in=local(2024, 1, 2, 17, 0),
                correct_check_out=local(2024, 1, 2, 9, 0),
            )
        self.assertEqual(record_count(self.db), 0)

    def test_second_request_while_pending_conflicts(self) -> None:
        self._request(date(2024, 1, 2))
        with self.assertRaises(ConflictError) as exc:
            self._request(date(2024, 1, 2), reason="Another try")
        self.assertEqual(exc.exception.code, "CORRECTION_ALREADY_PENDING")

    def test_resolved_request_is_overwritten_by_new_submission(self) -> None:
        record = self._request(date(2024, 1, 2), correct_check_in=local(2024, 1, 2, 8, 0))
        reject_correction(
            self.db,
            record_id=record.id,
            approver=SUPERVISOR,
            publisher=self.publisher,
            admin_notes="No evidence",
        )
        again = self._request(date(2024, 1, 2), reason="Badge log attached", correct_check_in=local(2024, 1, 2, 8, 5))
        self.assertEqual(again.id, record.id)
        self.assertEqual(again.correction_status, RequestStatus.PENDING)
        self.assertEqual(again.correction_reason, "Badge log attached")
        self.assertIsNone(again.correction_admin_notes)

    def test_reject_without_notes_keeps_request_pending(self) -> None:
        record = self._request(date(2024, 1, 2))
        for notes in (None, "", "   "):
            with self.assertRaises(InputValidationError) as exc:
                reject_correction(
                    self.db,
                    record_id=record.id,
                    approver=SUPERVISOR,
                    publisher=self.publisher,
                    admin_notes=notes,
                )
            self.assertEqual(exc.exception.code, "ADMIN_NOTES_REQUIRED")

        self.db.refresh(record)
        self.assertEqual(record.correction_status, RequestStatus.PENDING)
        self.assertEqual(self.publisher.events_named(EVENT_CORRECTION_REJECTED), [])

    def test_reject_leaves_times_and_status_alone(self) -> None:
        check_in(
            self.db,
            employee=self.employee,
            publisher=self.publisher,
            instant=local(2024, 1, 2, 8, 30),
            offset_minutes=ORG_OFFSET,
        )
        record = self._request(date(2024, 1, 2), correct_check_in=local(2024, 1, 2, 8, 0))
        rejected = reject_correction(
            self.db,
            record_id=record.id,
            approver=SUPERVISOR,
            publisher=self.publisher,
            admin_notes="Camera shows 08:30",
        )
        self.assertEqual(rejected.correction_status, RequestStatus.REJECTED)
        self.assertEqual(rejected.correction_admin_notes, "Camera shows 08:30")
        self.assertEqual(rejected.check_in_ts, local(2024, 1, 2, 8, 30))
        self.assertEqual(rejected.status, AttendanceStatus.PRESENT)

    def test_decisions_on_non_pending_requests_conflict(self) -> None:
        record = self._request(date(2024, 1, 2))
        self._approve(record.id)
        with self.assertRaises(ConflictError) as exc:
            self._approve(record.id)
        self.assertEqual(exc.exception.code, "CORRECTION_NOT_PENDING")

    def test_unknown_record(self) -> None:
        with self.assertRaises(NotFoundError):
            self._approve(999)

    def test_listing(self) -> None:
        first = self._request(date(2024, 1, 2))
        self._request(date(2024, 1, 3))
        self._approve(first.id)

        mine = list_my_corrections(self.db, employee=self.employee)
        pending = list_pending_corrections(self.db)
        self.assertEqual(len(mine), 2)
        self.assertEqual([item.correction_status for item in pending], [RequestStatus.PENDING])


if __name__ == "__main__":
    unittest.main()
