from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
import logging
from typing import Any, Iterable

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from shiftops.audit import log_audit
from shiftops.errors import ForbiddenError, InvalidTransitionError, NotFoundError, ValidationError
from shiftops.models import AuditActorType, Employee, Schedule, ScheduleEmailType, ScheduleStatus
from shiftops.services.attendance import resolve_timezone
from shiftops.services.notification_ledger import NotificationChannel, record_schedule_notification
from shiftops.settings import Settings, get_settings

logger = logging.getLogger("shiftops.schedules")

ALLOWED_TRANSITIONS: dict[ScheduleStatus, frozenset[ScheduleStatus]] = {
    ScheduleStatus.PENDING: frozenset(
        {
            ScheduleStatus.CONFIRMED,
            ScheduleStatus.CANCELLATION_REQUESTED,
            ScheduleStatus.CANCELLED,
        }
    ),
    ScheduleStatus.CONFIRMED: frozenset(
        {
            ScheduleStatus.COMPLETED,
            ScheduleStatus.CANCELLATION_REQUESTED,
            ScheduleStatus.CANCELLED,
        }
    ),
    ScheduleStatus.CANCELLATION_REQUESTED: frozenset({ScheduleStatus.CANCELLED}),
    ScheduleStatus.CANCELLED: frozenset(),
    ScheduleStatus.COMPLETED: frozenset(),
}


@dataclass(frozen=True, slots=True)
class ScheduleDraft:
    employee_id: int
    schedule_date: date
    start_time: time
    end_time: time
    title: str | None = None
    description: str | None = None
    location: str | None = None


@dataclass(frozen=True, slots=True)
class ScheduleStats:
    pending: int
    cancellation_requested: int
    today: int


def can_transition(current: ScheduleStatus, target: ScheduleStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _clean_text(value: str | None) -> str | None:
    cleaned = (value or "").strip()
    return cleaned or None


def local_today(settings: Settings | None = None) -> date:
    settings = settings or get_settings()
    return _utcnow().astimezone(resolve_timezone(settings.attendance_timezone)).date()


def validate_draft(draft: ScheduleDraft) -> None:
    if draft.start_time == draft.end_time:
        raise ValidationError("Schedule start and end time must differ.", code="INVALID_SCHEDULE_TIME")


def _require_employee(db: Session, employee_id: int) -> Employee:
    employee = db.get(Employee, employee_id)
    if employee is None:
        raise NotFoundError("Employee not found.", code="EMPLOYEE_NOT_FOUND")
    return employee


def _build_schedule(draft: ScheduleDraft, *, creator_id: str) -> Schedule:
    return Schedule(
        employee_id=draft.employee_id,
        schedule_date=draft.schedule_date,
        start_time=draft.start_time,
        end_time=draft.end_time,
        title=_clean_text(draft.title),
        description=_clean_text(draft.description),
        location=_clean_text(draft.location),
        status=ScheduleStatus.PENDING,
        created_by=creator_id,
        confirmation_email_sent=False,
        cancellation_email_sent=False,
    )


def get_schedule(db: Session, schedule_id: int) -> Schedule:
    schedule = db.get(Schedule, schedule_id, populate_existing=True)
    if schedule is None:
        raise NotFoundError("Schedule not found.", code="SCHEDULE_NOT_FOUND")
    return schedule


def _require_owner(schedule: Schedule, employee_id: int) -> None:
    if schedule.employee_id != employee_id:
        raise ForbiddenError("Only the scheduled employee can change this schedule.")


def _transition(
    db: Session,
    *,
    schedule: Schedule,
    from_statuses: Iterable[ScheduleStatus],
    target: ScheduleStatus,
    values: dict[str, Any],
    actor_id: str,
) -> Schedule:
    observed = schedule.status
    if observed not in set(from_statuses) or not can_transition(observed, target):
        raise InvalidTransitionError(
            f"Schedule is {observed.value}; it cannot move to {target.value}."
        )

    # Compare-and-swap on the status we read; a concurrent change makes this a no-op.
    result = db.execute(
        update(Schedule)
        .where(Schedule.id == schedule.id, Schedule.status == observed)
        .values(status=target, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        logger.info(
            "schedule_transition_conflict",
            extra={"schedule_id": schedule.id, "expected_status": observed.value, "target_status": target.value},
        )
        raise InvalidTransitionError("Schedule was changed by someone else; reload and try again.")

    db.commit()
    db.refresh(schedule)
    logger.info(
        "schedule_transition",
        extra={
            "schedule_id": schedule.id,
            "from_status": observed.value,
            "to_status": target.value,
            "actor_id": actor_id,
        },
    )
    return schedule


def create_schedule(
    db: Session,
    *,
    draft: ScheduleDraft,
    creator_id: str,
    channel: NotificationChannel | None = None,
) -> Schedule:
    validate_draft(draft)
    _require_employee(db, draft.employee_id)

    schedule = _build_schedule(draft, creator_id=creator_id)
    db.add(schedule)
    db.commit()
    db.refresh(schedule)
    logger.info(
        "schedule_created",
        extra={
            "schedule_id": schedule.id,
            "employee_id": schedule.employee_id,
            "schedule_date": schedule.schedule_date.isoformat(),
            "creator_id": creator_id,
        },
    )
    record_schedule_notification(db, schedule=schedule, email_type=ScheduleEmailType.ASSIGNED, channel=channel)
    return schedule


def create_schedules_batch(db: Session, *, drafts: list[ScheduleDraft], creator_id: str) -> list[Schedule]:
    """Insert every draft in one transaction, or none of them."""
    for draft in drafts:
        validate_draft(draft)
    for employee_id in sorted({draft.employee_id for draft in drafts}):
        _require_employee(db, employee_id)

    schedules = [_build_schedule(draft, creator_id=creator_id) for draft in drafts]
    db.add_all(schedules)
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("schedule_batch_insert_failed", extra={"draft_count": len(drafts)})
        raise

    for schedule in schedules:
        db.refresh(schedule)
    return schedules


def confirm_schedule(
    db: Session,
    *,
    schedule_id: int,
    employee_id: int,
    channel: NotificationChannel | None = None,
) -> Schedule:
    schedule = get_schedule(db, schedule_id)
    _require_owner(schedule, employee_id)
    _transition(
        db,
        schedule=schedule,
        from_statuses=(ScheduleStatus.PENDING,),
        target=ScheduleStatus.CONFIRMED,
        values={"confirmed_at": _utcnow()},
        actor_id=str(employee_id),
    )
    record_schedule_notification(db, schedule=schedule, email_type=ScheduleEmailType.CONFIRMED, channel=channel)
    return schedule


def request_schedule_cancellation(
    db: Session,
    *,
    schedule_id: int,
    employee_id: int,
    reason: str | None,
    channel: NotificationChannel | None = None,
) -> Schedule:
    normalized_reason = _clean_text(reason)
    if normalized_reason is None:
        raise ValidationError("A cancellation reason is required.", code="CANCELLATION_REASON_REQUIRED")

    schedule = get_schedule(db, schedule_id)
    _require_owner(schedule, employee_id)
    _transition(
        db,
        schedule=schedule,
        from_statuses=(ScheduleStatus.PENDING, ScheduleStatus.CONFIRMED),
        target=ScheduleStatus.CANCELLATION_REQUESTED,
        values={
            "cancellation_reason": normalized_reason,
            "cancellation_requested_at": _utcnow(),
        },
        actor_id=str(employee_id),
    )
    record_schedule_notification(
        db,
        schedule=schedule,
        email_type=ScheduleEmailType.CANCELLATION_REQUESTED,
        channel=channel,
    )
    return schedule


def approve_schedule_cancellation(
    db: Session,
    *,
    schedule_id: int,
    admin_id: str,
    channel: NotificationChannel | None = None,
) -> Schedule:
    schedule = get_schedule(db, schedule_id)
    _transition(
        db,
        schedule=schedule,
        from_statuses=(ScheduleStatus.CANCELLATION_REQUESTED,),
        target=ScheduleStatus.CANCELLED,
        values={"cancelled_at": _utcnow(), "cancelled_by": admin_id},
        actor_id=admin_id,
    )
    record_schedule_notification(
        db,
        schedule=schedule,
        email_type=ScheduleEmailType.CANCELLATION_APPROVED,
        channel=channel,
    )
    return schedule


def admin_cancel_schedule(
    db: Session,
    *,
    schedule_id: int,
    admin_id: str,
    reason: str | None = None,
    channel: NotificationChannel | None = None,
    settings: Settings | None = None,
    request_id: str | None = None,
) -> Schedule:
    settings = settings or get_settings()
    schedule = get_schedule(db, schedule_id)
    _transition(
        db,
        schedule=schedule,
        from_statuses=(ScheduleStatus.PENDING, ScheduleStatus.CONFIRMED),
        target=ScheduleStatus.CANCELLED,
        values={
            "cancelled_at": _utcnow(),
            "cancelled_by": admin_id,
            "cancellation_reason": _clean_text(reason) or settings.admin_force_cancel_reason,
        },
        actor_id=admin_id,
    )
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=admin_id,
        action="SCHEDULE_FORCE_CANCELLED",
        entity_type="schedule",
        entity_id=str(schedule.id),
        details={"reason": schedule.cancellation_reason},
        request_id=request_id,
    )
    record_schedule_notification(
        db,
        schedule=schedule,
        email_type=ScheduleEmailType.CANCELLED_BY_ADMIN,
        channel=channel,
    )
    return schedule


def mark_schedule_completed(db: Session, *, schedule_id: int, admin_id: str) -> Schedule:
    schedule = get_schedule(db, schedule_id)
    return _transition(
        db,
        schedule=schedule,
        from_statuses=(ScheduleStatus.CONFIRMED,),
        target=ScheduleStatus.COMPLETED,
        values={},
        actor_id=admin_id,
    )


def delete_schedule(db: Session, *, schedule_id: int, admin_id: str, request_id: str | None = None) -> None:
    schedule = get_schedule(db, schedule_id)
    details = {
        "employee_id": schedule.employee_id,
        "schedule_date": schedule.schedule_date.isoformat(),
        "status": schedule.status.value,
    }
    db.delete(schedule)
    db.commit()
    logger.info("schedule_deleted", extra={"schedule_id": schedule_id, "admin_id": admin_id, **details})
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=admin_id,
        action="SCHEDULE_DELETED",
        entity_type="schedule",
        entity_id=str(schedule_id),
        details=details,
        request_id=request_id,
    )


def list_schedules(
    db: Session,
    *,
    start_date: date | None = None,
    end_date: date | None = None,
    status: ScheduleStatus | None = None,
    employee_id: int | None = None,
) -> list[Schedule]:
    stmt = select(Schedule)
    if start_date is not None:
        stmt = stmt.where(Schedule.schedule_date >= start_date)
    if end_date is not None:
        stmt = stmt.where(Schedule.schedule_date <= end_date)
    if status is not None:
        stmt = stmt.where(Schedule.status == status)
    if employee_id is not None:
        stmt = stmt.where(Schedule.employee_id == employee_id)
    stmt = stmt.order_by(Schedule.schedule_date.asc(), Schedule.start_time.asc(), Schedule.id.asc())
    return list(db.scalars(stmt).all())


def list_employee_schedules(
    db: Session,
    *,
    employee_id: int,
    start_date: date | None = None,
    end_date: date | None = None,
) -> list[Schedule]:
    return list_schedules(db, start_date=start_date, end_date=end_date, employee_id=employee_id)


def list_pending_confirmations(db: Session) -> list[Schedule]:
    return list_schedules(db, status=ScheduleStatus.PENDING)


def list_pending_cancellations(db: Session) -> list[Schedule]:
    return list(
        db.scalars(
            select(Schedule)
            .where(Schedule.status == ScheduleStatus.CANCELLATION_REQUESTED)
            .order_by(Schedule.cancellation_requested_at.asc(), Schedule.id.asc())
        ).all()
    )


def list_upcoming_schedules(
    db: Session,
    *,
    employee_id: int,
    days: int = 7,
    settings: Settings | None = None,
) -> list[Schedule]:
    today = local_today(settings)
    return list(
        db.scalars(
            select(Schedule)
            .where(
                Schedule.employee_id == employee_id,
                Schedule.schedule_date >= today,
                Schedule.schedule_date <= today + timedelta(days=max(0, days)),
                Schedule.status != ScheduleStatus.CANCELLED,
            )
            .order_by(Schedule.schedule_date.asc(), Schedule.start_time.asc())
        ).all()
    )


def list_today_schedules(db: Session, *, employee_id: int, settings: Settings | None = None) -> list[Schedule]:
    today = local_today(settings)
    return list(
        db.scalars(
            select(Schedule)
            .where(
                Schedule.employee_id == employee_id,
                Schedule.schedule_date == today,
                Schedule.status != ScheduleStatus.CANCELLED,
            )
            .order_by(Schedule.start_time.asc(), Schedule.id.asc())
        ).all()
    )


def get_schedule_stats(db: Session, *, settings: Settings | None = None) -> ScheduleStats:
    today = local_today(settings)
    counts = dict(
        db.execute(
            select(Schedule.status, func.count(Schedule.id))
            .where(Schedule.status.in_([ScheduleStatus.PENDING, ScheduleStatus.CANCELLATION_REQUESTED]))
            .group_by(Schedule.status)
        ).all()
    )
    today_count = db.scalar(
        select(func.count(Schedule.id)).where(
            Schedule.schedule_date == today,
            Schedule.status != ScheduleStatus.CANCELLED,
        )
    )
    return ScheduleStats(
        pending=int(counts.get(ScheduleStatus.PENDING, 0)),
        cancellation_requested=int(counts.get(ScheduleStatus.CANCELLATION_REQUESTED, 0)),
        today=int(today_count or 0),
    )
