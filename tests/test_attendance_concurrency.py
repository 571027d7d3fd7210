from __future__ import annotations

import os
import tempfile
import unittest
from datetime import timedelta
from unittest.mock import patch

from sqlalchemy.exc import IntegrityError
from sqlite_fixtures import ORG_OFFSET, add_employee, file_engine, local, record_count, session_factory

from officeflow.errors import ConflictError
from officeflow.models import AttendanceRecord, AttendanceStatus, Employee
from officeflow.services.attendance import check_in, check_out, get_status
from officeflow.services.day_clock import day_key
from officeflow.services.realtime import EVENT_ATTENDANCE_MARKED, InMemoryPublisher


class AttendanceStoreConcurrencyTests(unittest.TestCase):
    def setUp(self) -> None:
        handle, self.db_path = tempfile.mkstemp(suffix=".sqlite3")
        os.close(handle)
        self.engine = file_engine(self.db_path)
        self.factory = session_factory(self.engine)
        with self.factory() as db:
            self.employee_id = add_employee(db, user_id="u-race", full_name="Race Case").id

    def tearDown(self) -> None:
        self.engine.dispose()
        os.remove(self.db_path)

    def _employee(self, db):  # type: ignore[no-untyped-def]
        return db.get(Employee, self.employee_id)

    def test_losing_first_check_in_gets_conflict_and_one_record_survives(self) -> None:
        publisher = InMemoryPublisher()
        first = self.factory()
        second = self.factory()
        try:
            check_in(
                first,
                employee=self._employee(first),
                publisher=publisher,
                instant=local(2024, 1, 2, 8, 55),
                offset_minutes=ORG_OFFSET,
            )

            # The second request read "no record" before the first one committed.
            with patch("officeflow.services.attendance.find_record", return_value=None):
                with self.assertRaises(ConflictError) as exc:
                    check_in(
                        second,
                        employee=self._employee(second),
                        publisher=publisher,
                        instant=local(2024, 1, 2, 8, 56),
                        offset_minutes=ORG_OFFSET,
                    )
            self.assertEqual(exc.exception.code, "ALREADY_CHECKED_IN")
        finally:
            first.close()
            second.close()

        with self.factory() as db:
            self.assertEqual(record_count(db, employee_id=self.employee_id), 1)
            stored = db.query(AttendanceRecord).one()
            self.assertEqual(stored.check_in_ts, local(2024, 1, 2, 8, 55))
        self.assertEqual(len(publisher.events_named(EVENT_ATTENDANCE_MARKED)), 1)

    def test_concurrent_check_out_on_stale_version_conflicts(self) -> None:
        publisher = InMemoryPublisher()
        with self.factory() as db:
            check_in(
                db,
                employee=self._employee(db),
                publisher=publisher,
                instant=local(2024, 1, 2, 8, 30),
                offset_minutes=ORG_OFFSET,
            )

        first = self.factory()
        second = self.factory()
        try:
            # Both requests load the open record.
            now = local(2024, 1, 2, 12, 0)
            self.assertFalse(get_status(first, employee=self._employee(first), now=now, offset_minutes=ORG_OFFSET).is_checked_out)
            self.assertFalse(get_status(second, employee=self._employee(second), now=now, offset_minutes=ORG_OFFSET).is_checked_out)

            check_out(
                first,
                employee=self._employee(first),
                publisher=publisher,
                instant=local(2024, 1, 2, 17, 0),
                offset_minutes=ORG_OFFSET,
            )
            with self.assertRaises(ConflictError) as exc:
                check_out(
                    second,
                    employee=self._employee(second),
                    publisher=publisher,
                    instant=local(2024, 1, 2, 18, 0),
                    offset_minutes=ORG_OFFSET,
                )
            self.assertEqual(exc.exception.code, "ATTENDANCE_CONCURRENT_UPDATE")
        finally:
            first.close()
            second.close()

        with self.factory() as db:
            stored = db.query(AttendanceRecord).one()
            self.assertEqual(stored.check_out_ts, local(2024, 1, 2, 17, 0))
            self.assertEqual(stored.work_hours, 8.5)

    def test_store_rejects_reversed_times(self) -> None:
        check_in_ts = local(2024, 1, 2, 10, 0)
        with self.factory() as db:
            db.add(
                AttendanceRecord(
                    employee_id=self.employee_id,
                    day_key=day_key(check_in_ts, ORG_OFFSET),
                    check_in_ts=check_in_ts,
                    check_out_ts=check_in_ts - timedelta(hours=1),
                    status=AttendanceStatus.PRESENT,
                )
            )
            with self.assertRaises(IntegrityError):
                db.commit()
            db.rollback()
            self.assertEqual(record_count(db), 0)

    def test_store_rejects_duplicate_employee_day(self) -> None:
        key = day_key(local(2024, 1, 2, 9, 0), ORG_OFFSET)
        with self.factory() as db:
            db.add(AttendanceRecord(employee_id=self.employee_id, day_key=key, status=AttendanceStatus.ABSENT))
            db.commit()
            db.add(AttendanceRecord(employee_id=self.employee_id, day_key=key, status=AttendanceStatus.LEAVE))
            with self.assertRaises(IntegrityError):
                db.commit()
            db.rollback()
            self.assertEqual(record_count(db), 1)


if __name__ == "__main__":
    unittest.main()
