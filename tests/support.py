from __future__ import annotations

import shutil
import tempfile
from datetime import date, time
from decimal import Decimal
from pathlib import Path
from typing import Any

from sqlalchemy.orm import Session, sessionmaker

from shiftops.db import Base, create_db_engine, create_session_factory
from shiftops.models import Employee, NotificationRecipient, RecipientType, Schedule, ScheduleStatus
from shiftops.services.notification_ledger import NotificationChannel, NotificationMessage
from shiftops.settings import Settings


def make_settings(database_url: str, **overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "database_url": database_url,
        "attendance_timezone": "UTC",
        "late_grace_minutes": 5,
        "early_checkout_tolerance_minutes": 5,
        "overtime_threshold_hours": 8.0,
        "notification_email_enabled": False,
        "smtp_host": "",
        "smtp_from": "",
        "jwt_secret": "test-secret",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


class RecordingChannel(NotificationChannel):
    """Captures outgoing messages; addresses in ``fail_for`` raise like a dead SMTP relay."""

    configured = True

    def __init__(self, *, fail_for: tuple[str, ...] = ()) -> None:
        self.messages: list[NotificationMessage] = []
        self.fail_for = set(fail_for)

    def send(self, message: NotificationMessage) -> dict[str, Any]:
        self.messages.append(message)
        if self.fail_for.intersection(message.recipients):
            raise RuntimeError("smtp relay unavailable")
        return {"mode": "sent", "sent": len(message.recipients), "recipients": list(message.recipients)}


class SQLiteTestCase:
    """Mixin giving each test a throwaway file-backed SQLite store."""

    settings: Settings
    session_factory: sessionmaker[Session]

    def setUp(self) -> None:  # type: ignore[override]
        self._tmp_dir = tempfile.mkdtemp(prefix="shiftops-test-")
        db_path = Path(self._tmp_dir) / "test.db"
        self.settings = make_settings(f"sqlite:///{db_path}")
        self.engine = create_db_engine(self.settings)
        Base.metadata.create_all(self.engine)
        self.session_factory = create_session_factory(self.engine)
        self.db = self.session_factory()

    def tearDown(self) -> None:  # type: ignore[override]
        self.db.close()
        self.engine.dispose()
        shutil.rmtree(self._tmp_dir, ignore_errors=True)

    def add_employee(
        self,
        *,
        full_name: str = "Jordan Reyes",
        email: str | None = "jordan@example.com",
        is_active: bool = True,
        shift_start_local: time | None = None,
        shift_end_local: time | None = None,
        hourly_rate: Decimal | None = None,
    ) -> Employee:
        employee = Employee(
            full_name=full_name,
            email=email,
            is_active=is_active,
            shift_start_local=shift_start_local,
            shift_end_local=shift_end_local,
            hourly_rate=hourly_rate,
        )
        self.db.add(employee)
        self.db.commit()
        self.db.refresh(employee)
        return employee

    def add_recipient(
        self,
        email: str,
        *,
        recipient_type: RecipientType = RecipientType.MANAGER,
        is_active: bool = True,
    ) -> NotificationRecipient:
        recipient = NotificationRecipient(
            email=email,
            name=email.split("@")[0].title(),
            recipient_type=recipient_type,
            is_active=is_active,
        )
        self.db.add(recipient)
        self.db.commit()
        self.db.refresh(recipient)
        return recipient

    def add_schedule(
        self,
        employee_id: int,
        *,
        schedule_date: date = date(2025, 3, 3),
        status: ScheduleStatus = ScheduleStatus.PENDING,
    ) -> Schedule:
        schedule = Schedule(
            employee_id=employee_id,
            schedule_date=schedule_date,
            start_time=time(9, 0),
            end_time=time(17, 0),
            title="Front desk",
            status=status,
            created_by="admin",
        )
        self.db.add(schedule)
        self.db.commit()
        self.db.refresh(schedule)
        return schedule
