from __future__ import annotations

import unittest
from datetime import datetime, time, timezone
from unittest.mock import patch

from sqlalchemy import func, select, update

from shiftops.errors import AlreadyClosedError, AlreadyOpenError, ForbiddenError, NotFoundError, ValidationError
from shiftops.models import AttendanceSession, LocationStatus
from shiftops.services.attendance import (
    ShiftConfig,
    clock_in,
    clock_out,
    clock_out_open_session,
    get_open_session,
    is_early_checkout,
    is_late_checkin,
    list_sessions,
    normalize_ts,
    resolve_timezone,
)
from shiftops.services.location import LocationSample
from tests.support import SQLiteTestCase

UTC_NOW = "shiftops.services.attendance._utcnow"


def _utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class ShiftRuleTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tz = resolve_timezone("America/New_York")
        self.day_shift = ShiftConfig(start_time_local=time(9, 0), end_time_local=time(17, 0))

    def test_late_only_after_grace_period(self) -> None:
        # 09:04 and 09:06 New York (EST, UTC-5)
        self.assertFalse(is_late_checkin(_utc(2025, 1, 6, 14, 4), shift=self.day_shift, tz=self.tz, grace_minutes=5))
        self.assertTrue(is_late_checkin(_utc(2025, 1, 6, 14, 6), shift=self.day_shift, tz=self.tz, grace_minutes=5))

    def test_early_checkout_respects_tolerance(self) -> None:
        clock_in_utc = _utc(2025, 1, 6, 14, 0)
        self.assertFalse(
            is_early_checkout(clock_in_utc, _utc(2025, 1, 6, 21, 57), shift=self.day_shift, tz=self.tz, tolerance_minutes=5)
        )
        self.assertTrue(
            is_early_checkout(clock_in_utc, _utc(2025, 1, 6, 21, 50), shift=self.day_shift, tz=self.tz, tolerance_minutes=5)
        )

    def test_overnight_shift_ends_next_day(self) -> None:
        tz = resolve_timezone("UTC")
        night = ShiftConfig(start_time_local=time(22, 0), end_time_local=time(6, 0))
        self.assertTrue(night.crosses_midnight)
        clock_in_utc = _utc(2025, 1, 6, 22, 0)
        self.assertFalse(is_early_checkout(clock_in_utc, _utc(2025, 1, 7, 6, 0), shift=night, tz=tz, tolerance_minutes=0))
        self.assertTrue(is_early_checkout(clock_in_utc, _utc(2025, 1, 7, 2, 0), shift=night, tz=tz, tolerance_minutes=0))

    def test_overnight_clock_in_after_midnight_belongs_to_previous_shift(self) -> None:
        tz = resolve_timezone("UTC")
        night = ShiftConfig(start_time_local=time(22, 0), end_time_local=time(6, 0))
        late_arrival = _utc(2025, 1, 7, 0, 30)
        self.assertTrue(is_late_checkin(late_arrival, shift=night, tz=tz, grace_minutes=5))
        self.assertFalse(is_early_checkout(late_arrival, _utc(2025, 1, 7, 6, 30), shift=night, tz=tz, tolerance_minutes=5))
        self.assertTrue(is_early_checkout(late_arrival, _utc(2025, 1, 7, 5, 0), shift=night, tz=tz, tolerance_minutes=5))

    def test_missing_shift_never_flags(self) -> None:
        empty = ShiftConfig()
        self.assertFalse(is_late_checkin(_utc(2025, 1, 6, 23, 0), shift=empty, tz=self.tz, grace_minutes=0))
        self.assertFalse(
            is_early_checkout(_utc(2025, 1, 6, 14, 0), _utc(2025, 1, 6, 14, 1), shift=empty, tz=self.tz, tolerance_minutes=0)
        )

    def test_invalid_timezone_falls_back_to_utc(self) -> None:
        self.assertEqual(str(resolve_timezone("Not/AZone")), "UTC")


class ClockLedgerTests(SQLiteTestCase, unittest.TestCase):
    def _clock_in_at(self, employee_id: int, ts: datetime, **kwargs) -> AttendanceSession:
        with patch(UTC_NOW, return_value=ts):
            return clock_in(self.db, employee_id=employee_id, **kwargs)

    def _clock_out_at(self, session: AttendanceSession, ts: datetime, **kwargs) -> AttendanceSession:
        with patch(UTC_NOW, return_value=ts):
            return clock_out(
                self.db,
                session_id=session.id,
                employee_id=session.employee_id,
                settings=self.settings,
                **kwargs,
            )

    def test_clock_in_opens_session_with_location(self) -> None:
        employee = self.add_employee()
        location = LocationSample(lat=40.7, lng=-74.0, accuracy_m=15.0, status=LocationStatus.CAPTURED)

        record = self._clock_in_at(employee.id, _utc(2025, 3, 3, 9, 0), location=location)

        self.assertIsNone(record.clock_out_utc)
        self.assertIsNone(record.total_hours)
        self.assertEqual(record.clock_in_location_status, LocationStatus.CAPTURED)
        self.assertEqual(record.clock_in_lat, 40.7)
        self.assertEqual(record.work_type, "regular")
        self.assertEqual(get_open_session(self.db, employee_id=employee.id).id, record.id)

    def test_clock_in_without_location_records_unknown(self) -> None:
        employee = self.add_employee()
        record = self._clock_in_at(employee.id, _utc(2025, 3, 3, 9, 0))
        self.assertEqual(record.clock_in_location_status, LocationStatus.UNKNOWN)
        self.assertIsNone(record.clock_in_lat)

    def test_second_clock_in_is_rejected(self) -> None:
        employee = self.add_employee()
        self._clock_in_at(employee.id, _utc(2025, 3, 3, 9, 0))

        with self.assertRaises(AlreadyOpenError) as ctx:
            self._clock_in_at(employee.id, _utc(2025, 3, 3, 9, 5))
        self.assertEqual(ctx.exception.code, "ALREADY_CLOCKED_IN")
        self.assertEqual(ctx.exception.status_code, 409)

    def test_store_index_rejects_racing_clock_in(self) -> None:
        employee = self.add_employee()
        self._clock_in_at(employee.id, _utc(2025, 3, 3, 9, 0))

        # Simulate a second request whose pre-check ran before the first insert committed.
        with patch("shiftops.services.attendance.get_open_session", return_value=None):
            with self.assertRaises(AlreadyOpenError):
                self._clock_in_at(employee.id, _utc(2025, 3, 3, 9, 0))

        open_count = self.db.scalar(
            select(func.count(AttendanceSession.id)).where(
                AttendanceSession.employee_id == employee.id,
                AttendanceSession.clock_out_utc.is_(None),
            )
        )
        self.assertEqual(open_count, 1)

    def test_inactive_employee_cannot_clock_in(self) -> None:
        employee = self.add_employee(is_active=False)
        with self.assertRaises(ForbiddenError) as ctx:
            self._clock_in_at(employee.id, _utc(2025, 3, 3, 9, 0))
        self.assertEqual(ctx.exception.code, "EMPLOYEE_INACTIVE")

    def test_unknown_employee_cannot_clock_in(self) -> None:
        with self.assertRaises(NotFoundError) as ctx:
            self._clock_in_at(999, _utc(2025, 3, 3, 9, 0))
        self.assertEqual(ctx.exception.code, "EMPLOYEE_NOT_FOUND")

    def test_clock_out_computes_hours_and_flags(self) -> None:
        employee = self.add_employee(shift_start_local=time(9, 0), shift_end_local=time(17, 0))
        record = self._clock_in_at(employee.id, _utc(2025, 3, 3, 9, 20))

        closed = self._clock_out_at(record, _utc(2025, 3, 3, 16, 0), break_minutes=30)

        self.assertEqual(normalize_ts(closed.clock_out_utc), _utc(2025, 3, 3, 16, 0))
        self.assertAlmostEqual(closed.total_hours, 6 + 40 / 60, places=6)
        self.assertTrue(closed.is_late)
        self.assertTrue(closed.is_early_checkout)
        self.assertEqual(closed.break_minutes, 30)
        self.assertEqual(closed.clock_out_location_status, LocationStatus.UNKNOWN)
        self.assertIsNone(get_open_session(self.db, employee_id=employee.id))

    def test_on_time_shift_is_not_flagged(self) -> None:
        employee = self.add_employee(shift_start_local=time(9, 0), shift_end_local=time(17, 0))
        record = self._clock_in_at(employee.id, _utc(2025, 3, 3, 9, 3))
        closed = self._clock_out_at(record, _utc(2025, 3, 3, 17, 2))
        self.assertFalse(closed.is_late)
        self.assertFalse(closed.is_early_checkout)

    def test_missing_shift_config_does_not_flag(self) -> None:
        employee = self.add_employee()
        record = self._clock_in_at(employee.id, _utc(2025, 3, 3, 13, 0))
        closed = self._clock_out_at(record, _utc(2025, 3, 3, 14, 0))
        self.assertFalse(closed.is_late)
        self.assertFalse(closed.is_early_checkout)
        self.assertAlmostEqual(closed.total_hours, 1.0)

    def test_second_clock_out_is_rejected(self) -> None:
        employee = self.add_employee()
        record = self._clock_in_at(employee.id, _utc(2025, 3, 3, 9, 0))
        self._clock_out_at(record, _utc(2025, 3, 3, 17, 0))

        with self.assertRaises(AlreadyClosedError) as ctx:
            self._clock_out_at(record, _utc(2025, 3, 3, 17, 5))
        self.assertEqual(ctx.exception.code, "ALREADY_CLOCKED_OUT")

        reloaded = self.db.get(AttendanceSession, record.id, populate_existing=True)
        self.assertEqual(normalize_ts(reloaded.clock_out_utc), _utc(2025, 3, 3, 17, 0))

    def test_concurrent_clock_out_loses_conditional_update(self) -> None:
        employee = self.add_employee()
        record = self._clock_in_at(employee.id, _utc(2025, 3, 3, 9, 0))
        winner_close = _utc(2025, 3, 3, 12, 0)

        def _close_from_other_request() -> datetime:
            other = self.session_factory()
            try:
                other.execute(
                    update(AttendanceSession)
                    .where(AttendanceSession.id == record.id)
                    .values(clock_out_utc=winner_close, total_hours=3.0)
                )
                other.commit()
            finally:
                other.close()
            return _utc(2025, 3, 3, 12, 1)

        with patch(UTC_NOW, side_effect=_close_from_other_request):
            with self.assertRaises(AlreadyClosedError):
                clock_out(self.db, session_id=record.id, employee_id=employee.id, settings=self.settings)

        reloaded = self.db.get(AttendanceSession, record.id, populate_existing=True)
        self.assertEqual(normalize_ts(reloaded.clock_out_utc), winner_close)
        self.assertEqual(reloaded.total_hours, 3.0)

    def test_clock_out_of_someone_elses_session_is_not_found(self) -> None:
        owner = self.add_employee()
        other = self.add_employee(full_name="Sam Patel", email="sam@example.com")
        record = self._clock_in_at(owner.id, _utc(2025, 3, 3, 9, 0))

        with self.assertRaises(NotFoundError) as ctx:
            clock_out(self.db, session_id=record.id, employee_id=other.id, settings=self.settings)
        self.assertEqual(ctx.exception.code, "SESSION_NOT_FOUND")

    def test_negative_break_is_rejected(self) -> None:
        employee = self.add_employee()
        record = self._clock_in_at(employee.id, _utc(2025, 3, 3, 9, 0))
        with self.assertRaises(ValidationError):
            self._clock_out_at(record, _utc(2025, 3, 3, 10, 0), break_minutes=-5)

    def test_clock_out_open_session_requires_open_shift(self) -> None:
        employee = self.add_employee()
        with self.assertRaises(NotFoundError) as ctx:
            clock_out_open_session(self.db, employee_id=employee.id, settings=self.settings)
        self.assertEqual(ctx.exception.code, "NOT_CLOCKED_IN")

    def test_clock_out_open_session_closes_current_shift(self) -> None:
        employee = self.add_employee()
        self._clock_in_at(employee.id, _utc(2025, 3, 3, 9, 0))
        with patch(UTC_NOW, return_value=_utc(2025, 3, 3, 11, 30)):
            closed = clock_out_open_session(self.db, employee_id=employee.id, settings=self.settings)
        self.assertAlmostEqual(closed.total_hours, 2.5)

    def test_clock_out_open_session_uses_injected_shift_lookup(self) -> None:
        employee = self.add_employee()
        self._clock_in_at(employee.id, _utc(2025, 3, 3, 9, 30))
        lookups: list[int] = []

        def lookup(employee_id: int) -> ShiftConfig:
            lookups.append(employee_id)
            return ShiftConfig(start_time_local=time(9, 0), end_time_local=time(17, 0))

        with patch(UTC_NOW, return_value=_utc(2025, 3, 3, 16, 0)):
            closed = clock_out_open_session(
                self.db, employee_id=employee.id, shift_lookup=lookup, settings=self.settings
            )
        self.assertEqual(lookups, [employee.id])
        self.assertTrue(closed.is_late)
        self.assertTrue(closed.is_early_checkout)

    def test_new_session_allowed_after_close(self) -> None:
        employee = self.add_employee()
        first = self._clock_in_at(employee.id, _utc(2025, 3, 3, 9, 0))
        self._clock_out_at(first, _utc(2025, 3, 3, 12, 0))
        second = self._clock_in_at(employee.id, _utc(2025, 3, 3, 13, 0))

        self.assertNotEqual(first.id, second.id)
        sessions = list_sessions(self.db, employee_id=employee.id)
        self.assertEqual([item.id for item in sessions], [second.id, first.id])


if __name__ == "__main__":
    unittest.main()
