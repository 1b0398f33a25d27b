from __future__ import annotations

import shutil
import tempfile
import time as time_module
import unittest
from datetime import date, datetime, timezone
from pathlib import Path
from unittest.mock import patch

from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import select

from shiftops.db import Base
from shiftops.dependencies import get_notification_channel
from shiftops.main import create_app
from shiftops.models import AuditLog, Employee, NotificationRecipient, RecipientType
from shiftops.security import Actor, require_admin, require_employee
from tests.support import RecordingChannel, make_settings


def _token(settings, **claims) -> str:
    payload = {
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
        "exp": int(time_module.time()) + 600,
        **claims,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm="HS256")


class _ApiTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp_dir = tempfile.mkdtemp(prefix="shiftops-api-")
        self.settings = make_settings(f"sqlite:///{Path(self._tmp_dir) / 'api.db'}")
        self.app = create_app(self.settings)
        Base.metadata.create_all(self.app.state.engine)
        self.channel = RecordingChannel()
        self.app.dependency_overrides[get_notification_channel] = lambda: self.channel

        with self.app.state.session_factory() as db:
            employee = Employee(full_name="Jordan Reyes", email="jordan@example.com", is_active=True)
            db.add(employee)
            db.add(
                NotificationRecipient(
                    email="manager@example.com",
                    name="Manager",
                    recipient_type=RecipientType.MANAGER,
                    is_active=True,
                )
            )
            db.commit()
            self.employee_id = employee.id

        self.client = TestClient(self.app)

    def tearDown(self) -> None:
        self.app.dependency_overrides.clear()
        self.app.state.engine.dispose()
        shutil.rmtree(self._tmp_dir, ignore_errors=True)

    def as_employee(self) -> None:
        self.app.dependency_overrides[require_employee] = lambda: Actor(
            subject=f"user-{self.employee_id}",
            role="employee",
            employee_id=self.employee_id,
        )

    def as_admin(self) -> None:
        self.app.dependency_overrides[require_admin] = lambda: Actor(subject="admin-1", role="admin")


class AuthTests(_ApiTestCase):
    def test_missing_token_is_rejected(self) -> None:
        response = self.client.get("/attendance/open")
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["error"]["code"], "INVALID_TOKEN")

    def test_employee_token_reaches_employee_route(self) -> None:
        token = _token(self.settings, sub="user-1", role="employee", employee_id=self.employee_id)
        response = self.client.get("/attendance/open", headers={"Authorization": f"Bearer {token}"})
        self.assertEqual(response.status_code, 200)
        self.assertIsNone(response.json())

    def test_employee_token_cannot_reach_admin_route(self) -> None:
        token = _token(self.settings, sub="user-1", role="employee", employee_id=self.employee_id)
        response = self.client.get("/admin/schedules", headers={"Authorization": f"Bearer {token}"})
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["error"]["code"], "FORBIDDEN")

    def test_token_signed_with_other_secret_is_rejected(self) -> None:
        token = jwt.encode(
            {
                "sub": "admin-1",
                "role": "admin",
                "iss": self.settings.jwt_issuer,
                "aud": self.settings.jwt_audience,
                "exp": int(time_module.time()) + 600,
            },
            "someone-else",
            algorithm="HS256",
        )
        response = self.client.get("/admin/schedules", headers={"Authorization": f"Bearer {token}"})
        self.assertEqual(response.status_code, 401)


class AttendanceApiTests(_ApiTestCase):
    def test_clock_in_and_out_roundtrip(self) -> None:
        self.as_employee()

        response = self.client.post(
            "/attendance/clock-in",
            json={"location": {"lat": 40.7, "lng": -74.0, "accuracy_m": 10, "status": "captured"}},
            headers={"X-Request-Id": "req-123"},
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.headers["X-Request-Id"], "req-123")
        opened = response.json()
        self.assertEqual(opened["clock_in_location_status"], "captured")
        self.assertIsNone(opened["clock_out_utc"])

        duplicate = self.client.post("/attendance/clock-in", json={})
        self.assertEqual(duplicate.status_code, 409)
        self.assertEqual(duplicate.json()["error"]["code"], "ALREADY_CLOCKED_IN")

        closed = self.client.post("/attendance/clock-out", json={"break_minutes": 15})
        self.assertEqual(closed.status_code, 200)
        body = closed.json()
        self.assertEqual(body["id"], opened["id"])
        self.assertIsNotNone(body["clock_out_utc"])
        self.assertEqual(body["break_minutes"], 15)
        self.assertEqual(body["clock_out_location_status"], "unknown")

        again = self.client.post("/attendance/clock-out", json={"session_id": opened["id"]})
        self.assertEqual(again.status_code, 409)
        self.assertEqual(again.json()["error"]["code"], "ALREADY_CLOCKED_OUT")

    def test_clock_out_without_open_session(self) -> None:
        self.as_employee()
        response = self.client.post("/attendance/clock-out", json={})
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["error"]["code"], "NOT_CLOCKED_IN")

    def test_time_card_endpoint(self) -> None:
        self.as_employee()
        response = self.client.get("/attendance/time-card", params={"year": 2025, "month": 3})
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["days_worked"], 0)
        self.assertEqual(body["total_hours"], 0.0)

    def test_time_card_rejects_bad_month(self) -> None:
        self.as_employee()
        response = self.client.get("/attendance/time-card", params={"year": 2025, "month": 13})
        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["error"]["code"], "VALIDATION_ERROR")


class ScheduleApiTests(_ApiTestCase):
    def _create_schedule(self) -> dict:
        self.as_admin()
        response = self.client.post(
            "/admin/schedules",
            json={
                "employee_id": self.employee_id,
                "schedule_date": "2025-03-03",
                "start_time": "09:00:00",
                "end_time": "17:00:00",
                "title": "Front desk",
            },
        )
        self.assertEqual(response.status_code, 201)
        return response.json()

    def test_employee_confirms_schedule(self) -> None:
        schedule = self._create_schedule()
        self.assertEqual(schedule["status"], "pending")
        self.as_employee()

        confirmed = self.client.post(f"/schedules/{schedule['id']}/confirm")
        self.assertEqual(confirmed.status_code, 200)
        self.assertEqual(confirmed.json()["status"], "confirmed")

        again = self.client.post(f"/schedules/{schedule['id']}/confirm")
        self.assertEqual(again.status_code, 409)
        self.assertEqual(again.json()["error"]["code"], "INVALID_TRANSITION")

        mine = self.client.get("/schedules/mine")
        self.assertEqual([item["id"] for item in mine.json()], [schedule["id"]])

        logs = self.client.get(f"/admin/schedules/{schedule['id']}/email-logs").json()
        self.assertEqual(
            sorted((item["email_type"], item["recipient_email"]) for item in logs),
            [
                ("schedule_assigned", "jordan@example.com"),
                ("schedule_assigned", "manager@example.com"),
                ("schedule_confirmed", "jordan@example.com"),
                ("schedule_confirmed", "manager@example.com"),
            ],
        )

    def test_cancellation_request_and_approval(self) -> None:
        schedule = self._create_schedule()
        self.as_employee()

        blank = self.client.post(f"/schedules/{schedule['id']}/cancellation-request", json={"reason": "  "})
        self.assertEqual(blank.status_code, 422)
        self.assertEqual(blank.json()["error"]["code"], "CANCELLATION_REASON_REQUIRED")

        requested = self.client.post(
            f"/schedules/{schedule['id']}/cancellation-request",
            json={"reason": "Doctor appointment"},
        )
        self.assertEqual(requested.json()["status"], "cancellation_requested")

        stats = self.client.get("/admin/schedules/stats").json()
        self.assertEqual(stats["cancellation_requested"], 1)

        approved = self.client.post(f"/admin/schedules/{schedule['id']}/approve-cancellation")
        self.assertEqual(approved.status_code, 200)
        self.assertEqual(approved.json()["status"], "cancelled")
        self.assertEqual(approved.json()["cancelled_by"], "admin-1")

    def test_bulk_create_and_nothing_to_create(self) -> None:
        self.as_admin()
        payload = {
            "employee_id": self.employee_id,
            "start_date": "2025-03-03",
            "end_date": "2025-03-09",
            "weekdays": ["monday", "wednesday", "friday"],
            "start_time": "09:00:00",
            "end_time": "17:00:00",
        }
        created = self.client.post("/admin/schedules/bulk", json=payload)
        self.assertEqual(created.status_code, 201)
        body = created.json()
        self.assertEqual(body["outcome"], "created")
        self.assertEqual(body["created_count"], 3)
        self.assertEqual(body["dates"], ["2025-03-03", "2025-03-05", "2025-03-07"])

        empty = self.client.post("/admin/schedules/bulk", json={**payload, "weekdays": []})
        self.assertEqual(empty.status_code, 200)
        self.assertEqual(empty.json()["outcome"], "nothing_to_create")
        self.assertEqual(empty.json()["created_count"], 0)

        listed = self.client.get("/admin/schedules", params={"start_date": date(2025, 3, 4).isoformat()})
        self.assertEqual(len(listed.json()), 2)

    def test_force_cancel_complete_and_delete(self) -> None:
        first = self._create_schedule()
        second = self._create_schedule()

        cancelled = self.client.post(f"/admin/schedules/{first['id']}/cancel", json={})
        self.assertEqual(cancelled.json()["status"], "cancelled")
        self.assertEqual(cancelled.json()["cancellation_reason"], self.settings.admin_force_cancel_reason)

        not_confirmed = self.client.post(f"/admin/schedules/{second['id']}/complete")
        self.assertEqual(not_confirmed.status_code, 409)

        deleted = self.client.delete(f"/admin/schedules/{first['id']}")
        self.assertEqual(deleted.status_code, 204)
        missing = self.client.get(f"/admin/schedules/{first['id']}")
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(missing.json()["error"]["code"], "SCHEDULE_NOT_FOUND")

    def test_force_cancel_without_body_uses_default_reason(self) -> None:
        schedule = self._create_schedule()

        response = self.client.post(f"/admin/schedules/{schedule['id']}/cancel")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "cancelled")
        self.assertEqual(response.json()["cancellation_reason"], self.settings.admin_force_cancel_reason)

    def test_admin_actions_carry_request_id_into_audit(self) -> None:
        schedule = self._create_schedule()

        self.client.post(
            f"/admin/schedules/{schedule['id']}/cancel",
            json={"reason": "Store closed"},
            headers={"X-Request-Id": "req-cancel-1"},
        )
        deleted = self.client.delete(f"/admin/schedules/{schedule['id']}", headers={"X-Request-Id": "req-delete-1"})
        self.assertEqual(deleted.headers["X-Request-Id"], "req-delete-1")

        with self.app.state.session_factory() as db:
            request_ids = dict(db.execute(select(AuditLog.action, AuditLog.request_id)).all())
        self.assertEqual(request_ids["SCHEDULE_FORCE_CANCELLED"], "req-cancel-1")
        self.assertEqual(request_ids["SCHEDULE_DELETED"], "req-delete-1")

    def test_today_schedules_for_employee(self) -> None:
        schedule = self._create_schedule()
        self.as_employee()

        with patch(
            "shiftops.services.schedules._utcnow",
            return_value=datetime(2025, 3, 3, 12, 0, tzinfo=timezone.utc),
        ):
            today = self.client.get("/schedules/today")
        with patch(
            "shiftops.services.schedules._utcnow",
            return_value=datetime(2025, 3, 4, 12, 0, tzinfo=timezone.utc),
        ):
            tomorrow = self.client.get("/schedules/today")

        self.assertEqual(today.status_code, 200)
        self.assertEqual([item["id"] for item in today.json()], [schedule["id"]])
        self.assertEqual(tomorrow.json(), [])

    def test_recipient_roster_management(self) -> None:
        self.as_admin()
        created = self.client.post(
            "/admin/notification-recipients",
            json={"email": "Owner@Example.com", "name": "Owner", "recipient_type": "owner"},
        )
        self.assertEqual(created.status_code, 201)
        recipient = created.json()
        self.assertEqual(recipient["email"], "owner@example.com")

        duplicate = self.client.post(
            "/admin/notification-recipients",
            json={"email": "owner@example.com", "recipient_type": "owner"},
        )
        self.assertEqual(duplicate.json()["error"]["code"], "DUPLICATE_RECIPIENT")

        updated = self.client.patch(f"/admin/notification-recipients/{recipient['id']}", json={"is_active": False})
        self.assertFalse(updated.json()["is_active"])

        active = self.client.get("/admin/notification-recipients", params={"include_inactive": False}).json()
        self.assertEqual([item["email"] for item in active], ["manager@example.com"])

        removed = self.client.delete(f"/admin/notification-recipients/{recipient['id']}")
        self.assertEqual(removed.status_code, 204)

    def test_health(self) -> None:
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "ok")
        self.assertTrue(response.json()["database"])


if __name__ == "__main__":
    unittest.main()
