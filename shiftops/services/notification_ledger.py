from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timezone
import logging
import re
import smtplib
from email.message import EmailMessage
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from shiftops.errors import NotFoundError, ValidationError
from shiftops.models import (
    DeliveryStatus,
    Employee,
    NotificationRecipient,
    RecipientType,
    Schedule,
    ScheduleEmailLog,
    ScheduleEmailType,
)
from shiftops.settings import Settings, get_settings, is_email_configured

logger = logging.getLogger("shiftops.notifications")

EMAIL_ADDRESS_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
ROSTER_RECIPIENT_TYPES = frozenset({RecipientType.MANAGER, RecipientType.OWNER})

# Schedule-level "already sent" markers. Types without a marker are guarded by the ledger itself.
EMAIL_SENT_FLAG_BY_TYPE: dict[ScheduleEmailType, str] = {
    ScheduleEmailType.CONFIRMED: "confirmation_email_sent",
    ScheduleEmailType.CANCELLATION_APPROVED: "cancellation_email_sent",
    ScheduleEmailType.CANCELLED_BY_ADMIN: "cancellation_email_sent",
}

_EMPLOYEE_SUBJECTS: dict[ScheduleEmailType, str] = {
    ScheduleEmailType.ASSIGNED: "New Schedule Assigned - {date}",
    ScheduleEmailType.CONFIRMED: "Schedule Confirmed - {date}",
    ScheduleEmailType.CANCELLATION_REQUESTED: "Cancellation Request Received - {date}",
    ScheduleEmailType.CANCELLATION_APPROVED: "Schedule Cancellation Approved - {date}",
    ScheduleEmailType.CANCELLED_BY_ADMIN: "Schedule Cancelled - {date}",
}
_STAFF_SUBJECTS: dict[ScheduleEmailType, str] = {
    ScheduleEmailType.ASSIGNED: "Schedule Assigned - {name} ({date})",
    ScheduleEmailType.CONFIRMED: "Schedule Confirmed - {name} ({date})",
    ScheduleEmailType.CANCELLATION_REQUESTED: "Cancellation Request - {name} ({date})",
    ScheduleEmailType.CANCELLATION_APPROVED: "Schedule Cancelled - {name} ({date})",
    ScheduleEmailType.CANCELLED_BY_ADMIN: "Schedule Cancelled - {name} ({date})",
}


@dataclass(frozen=True, slots=True)
class NotificationMessage:
    recipients: list[str]
    subject: str
    body: str


@dataclass(frozen=True, slots=True)
class ResolvedRecipient:
    email: str
    recipient_type: RecipientType


class NotificationChannel:
    configured: bool = False

    def send(self, message: NotificationMessage) -> dict[str, Any]:
        raise NotImplementedError


class EmailChannel(NotificationChannel):
    def __init__(self, settings: Settings | None = None) -> None:
        settings = settings or get_settings()
        self.enabled = bool(settings.notification_email_enabled)
        self.smtp_host = settings.smtp_host.strip()
        self.smtp_port = int(settings.smtp_port)
        self.smtp_user = settings.smtp_user.strip()
        self.smtp_pass = settings.smtp_pass
        self.smtp_from = settings.smtp_from.strip()
        self.smtp_use_tls = bool(settings.smtp_use_tls)
        self.timeout_seconds = float(settings.smtp_timeout_seconds)
        self.configured = is_email_configured(settings)

    def send(self, message: NotificationMessage) -> dict[str, Any]:
        recipients = [item.strip() for item in message.recipients if item and item.strip()]
        if not self.enabled:
            logger.info(
                "email_channel_disabled",
                extra={"subject": message.subject, "recipient_count": len(recipients)},
            )
            return {"mode": "disabled", "sent": 0, "recipients": recipients}
        if not recipients:
            return {"mode": "skipped_no_recipients", "sent": 0, "recipients": []}
        if not self.configured:
            logger.info(
                "email_channel_not_configured",
                extra={"subject": message.subject, "recipients": recipients},
            )
            return {"mode": "not_configured", "sent": 0, "recipients": recipients}

        email_message = EmailMessage()
        email_message["From"] = self.smtp_from
        email_message["To"] = ", ".join(recipients)
        email_message["Subject"] = message.subject
        email_message.set_content(message.body)

        with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout_seconds) as smtp_client:
            if self.smtp_use_tls:
                smtp_client.starttls()
            if self.smtp_user:
                smtp_client.login(self.smtp_user, self.smtp_pass)
            smtp_client.send_message(email_message)
        return {"mode": "sent", "sent": len(recipients), "recipients": recipients}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _safe_send_email(channel: NotificationChannel, message: NotificationMessage) -> dict[str, Any]:
    try:
        return channel.send(message)
    except Exception as exc:
        logger.exception(
            "notification_email_send_failed",
            extra={"subject": message.subject, "recipients": list(message.recipients)},
        )
        return {
            "mode": "send_exception",
            "sent": 0,
            "recipients": list(message.recipients),
            "error": str(exc)[:500],
        }


def normalize_notification_email(value: str | None) -> str | None:
    normalized = " ".join((value or "").strip().lower().split())
    if not normalized:
        return None
    if not EMAIL_ADDRESS_PATTERN.match(normalized):
        return None
    return normalized


def _format_date(value: date) -> str:
    return value.strftime("%A, %B %d, %Y")


def _format_time(value: time) -> str:
    return value.strftime("%I:%M %p").lstrip("0")


def _employee_display_name(employee: Employee | None) -> str:
    if employee is None:
        return "Employee"
    return (employee.full_name or "").strip() or "Employee"


# --- recipient roster -------------------------------------------------------


def list_notification_recipients(
    db: Session,
    *,
    include_inactive: bool = True,
) -> list[NotificationRecipient]:
    stmt = select(NotificationRecipient).order_by(
        NotificationRecipient.recipient_type.asc(),
        NotificationRecipient.name.asc(),
        NotificationRecipient.id.asc(),
    )
    if not include_inactive:
        stmt = stmt.where(NotificationRecipient.is_active.is_(True))
    return list(db.scalars(stmt).all())


def add_notification_recipient(
    db: Session,
    *,
    email: str,
    name: str | None,
    recipient_type: RecipientType,
) -> NotificationRecipient:
    normalized = normalize_notification_email(email)
    if normalized is None:
        raise ValidationError("A valid email address is required.", code="INVALID_EMAIL")
    if recipient_type not in ROSTER_RECIPIENT_TYPES:
        raise ValidationError("Recipient type must be manager or owner.", code="INVALID_RECIPIENT_TYPE")

    recipient = NotificationRecipient(
        email=normalized,
        name=(name or "").strip() or None,
        recipient_type=recipient_type,
        is_active=True,
    )
    db.add(recipient)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ValidationError("This email is already a notification recipient.", code="DUPLICATE_RECIPIENT") from None
    db.refresh(recipient)
    return recipient


def set_notification_recipient_active(db: Session, *, recipient_id: int, is_active: bool) -> NotificationRecipient:
    recipient = db.get(NotificationRecipient, recipient_id)
    if recipient is None:
        raise NotFoundError("Notification recipient not found.")
    recipient.is_active = is_active
    db.commit()
    db.refresh(recipient)
    return recipient


def remove_notification_recipient(db: Session, *, recipient_id: int) -> None:
    recipient = db.get(NotificationRecipient, recipient_id)
    if recipient is None:
        raise NotFoundError("Notification recipient not found.")
    db.delete(recipient)
    db.commit()


def resolve_schedule_recipients(db: Session, schedule: Schedule) -> list[ResolvedRecipient]:
    resolved: list[ResolvedRecipient] = []
    seen: set[str] = set()

    employee = db.get(Employee, schedule.employee_id)
    employee_email = normalize_notification_email(employee.email if employee else None)
    if employee_email is not None:
        resolved.append(ResolvedRecipient(email=employee_email, recipient_type=RecipientType.EMPLOYEE))
        seen.add(employee_email)

    for row in list_notification_recipients(db, include_inactive=False):
        email = normalize_notification_email(row.email)
        if email is None or email in seen:
            continue
        resolved.append(ResolvedRecipient(email=email, recipient_type=row.recipient_type))
        seen.add(email)
    return resolved


# --- ledger -----------------------------------------------------------------


def build_schedule_message(
    schedule: Schedule,
    *,
    email_type: ScheduleEmailType,
    recipient: ResolvedRecipient,
    employee_name: str,
) -> NotificationMessage:
    date_label = _format_date(schedule.schedule_date)
    if recipient.recipient_type == RecipientType.EMPLOYEE:
        subject = _EMPLOYEE_SUBJECTS[email_type].format(date=date_label)
    else:
        subject = _STAFF_SUBJECTS[email_type].format(date=date_label, name=employee_name)

    lines = [
        f"Employee: {employee_name}",
        f"Date: {date_label}",
        f"Time: {_format_time(schedule.start_time)} - {_format_time(schedule.end_time)}",
    ]
    if schedule.title:
        lines.append(f"Title: {schedule.title}")
    if schedule.location:
        lines.append(f"Location: {schedule.location}")
    if email_type == ScheduleEmailType.ASSIGNED and schedule.description:
        lines.append(f"Notes: {schedule.description}")
    if email_type in {
        ScheduleEmailType.CANCELLATION_REQUESTED,
        ScheduleEmailType.CANCELLED_BY_ADMIN,
    } and schedule.cancellation_reason:
        lines.append(f"Reason: {schedule.cancellation_reason}")
    return NotificationMessage(recipients=[recipient.email], subject=subject, body="\n".join(lines))


def _ledger_has_entries(db: Session, *, schedule_id: int, email_type: ScheduleEmailType) -> bool:
    existing_id = db.scalar(
        select(ScheduleEmailLog.id)
        .where(
            ScheduleEmailLog.schedule_id == schedule_id,
            ScheduleEmailLog.email_type == email_type,
        )
        .limit(1)
    )
    return existing_id is not None


def _claim_notification(db: Session, *, schedule: Schedule, email_type: ScheduleEmailType) -> bool:
    flag_name = EMAIL_SENT_FLAG_BY_TYPE.get(email_type)
    if flag_name is None:
        return not _ledger_has_entries(db, schedule_id=schedule.id, email_type=email_type)

    flag_column = getattr(Schedule, flag_name)
    result = db.execute(
        update(Schedule)
        .where(Schedule.id == schedule.id, flag_column.is_(False))
        .values({flag_name: True})
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def record_schedule_notification(
    db: Session,
    *,
    schedule: Schedule,
    email_type: ScheduleEmailType,
    channel: NotificationChannel | None = None,
    recipients: list[ResolvedRecipient] | None = None,
) -> list[ScheduleEmailLog]:
    """Fan one lifecycle transition out to the employee and the active roster.

    One ledger row is appended per recipient whatever the delivery outcome.
    A transition that was already notified produces no new rows. The claim
    is committed before delivery and the ledger rows follow in a second
    commit.
    """
    if not _claim_notification(db, schedule=schedule, email_type=email_type):
        db.rollback()
        logger.info(
            "schedule_notification_already_recorded",
            extra={"schedule_id": schedule.id, "email_type": email_type.value},
        )
        return []
    db.commit()

    channel = channel or EmailChannel()
    resolved = recipients if recipients is not None else resolve_schedule_recipients(db, schedule)
    employee_name = _employee_display_name(db.get(Employee, schedule.employee_id))

    entries: list[ScheduleEmailLog] = []
    for recipient in resolved:
        message = build_schedule_message(
            schedule,
            email_type=email_type,
            recipient=recipient,
            employee_name=employee_name,
        )
        result = _safe_send_email(channel, message)
        delivered = int(result.get("sent", 0) or 0) > 0
        error_text = None
        if not delivered:
            error_text = str(result.get("error") or result.get("mode") or "EMAIL_NOT_SENT")[:1000]
        entry = ScheduleEmailLog(
            schedule_id=schedule.id,
            email_type=email_type,
            recipient_email=recipient.email,
            recipient_type=recipient.recipient_type,
            status=DeliveryStatus.SENT if delivered else DeliveryStatus.FAILED,
            error_message=error_text,
            sent_at=_utcnow(),
        )
        db.add(entry)
        entries.append(entry)

    db.commit()
    db.refresh(schedule)
    logger.info(
        "schedule_notification_recorded",
        extra={
            "schedule_id": schedule.id,
            "email_type": email_type.value,
            "recipient_count": len(entries),
            "failed_count": sum(1 for item in entries if item.status == DeliveryStatus.FAILED),
        },
    )
    return entries


def list_schedule_email_logs(db: Session, *, schedule_id: int) -> list[ScheduleEmailLog]:
    return list(
        db.scalars(
            select(ScheduleEmailLog)
            .where(ScheduleEmailLog.schedule_id == schedule_id)
            .order_by(ScheduleEmailLog.sent_at.desc(), ScheduleEmailLog.id.desc())
        ).all()
    )


def send_bulk_schedule_summary(
    db: Session,
    *,
    employee: Employee,
    schedule_count: int,
    start_date: date,
    end_date: date,
    weekdays: list[str],
    start_time: time,
    end_time: time,
    channel: NotificationChannel | None = None,
) -> dict[str, Any]:
    roster = [
        email
        for email in (
            normalize_notification_email(row.email)
            for row in list_notification_recipients(db, include_inactive=False)
        )
        if email is not None
    ]
    employee_name = _employee_display_name(employee)
    message = NotificationMessage(
        recipients=sorted(set(roster)),
        subject=f"Bulk Schedules Created - {employee_name} ({schedule_count} schedules)",
        body="\n".join(
            [
                f"Employee: {employee_name}",
                f"Schedules created: {schedule_count}",
                f"Period: {_format_date(start_date)} - {_format_date(end_date)}",
                f"Days: {', '.join(day.capitalize() for day in weekdays)}",
                f"Time: {_format_time(start_time)} - {_format_time(end_time)}",
            ]
        ),
    )
    result = _safe_send_email(channel or EmailChannel(), message)
    logger.info(
        "bulk_schedule_summary_sent",
        extra={
            "employee_id": employee.id,
            "schedule_count": schedule_count,
            "mode": result.get("mode"),
            "sent": result.get("sent", 0),
        },
    )
    return result
