from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, time, timedelta
import enum
import logging
from typing import Iterable

from sqlalchemy.orm import Session

from shiftops.audit import log_audit
from shiftops.errors import ValidationError
from shiftops.models import AuditActorType, Employee, Schedule
from shiftops.services.notification_ledger import NotificationChannel, send_bulk_schedule_summary
from shiftops.services.schedules import ScheduleDraft, create_schedules_batch

logger = logging.getLogger("shiftops.schedules")

WEEKDAY_NAMES: tuple[str, ...] = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)
_WEEKDAY_INDEX = {name: index for index, name in enumerate(WEEKDAY_NAMES)}
_WEEKDAY_INDEX.update({name[:3]: index for index, name in enumerate(WEEKDAY_NAMES)})
MAX_BULK_RANGE_DAYS = 366


class BulkOutcome(str, enum.Enum):
    CREATED = "created"
    NOTHING_TO_CREATE = "nothing_to_create"


@dataclass(frozen=True, slots=True)
class BulkScheduleRequest:
    employee_id: int
    start_date: date
    end_date: date
    weekdays: tuple[str, ...]
    start_time: time
    end_time: time
    title: str | None = None
    description: str | None = None
    location: str | None = None


@dataclass(slots=True)
class BulkScheduleResult:
    outcome: BulkOutcome
    dates: list[date] = field(default_factory=list)
    schedules: list[Schedule] = field(default_factory=list)

    @property
    def created_count(self) -> int:
        return len(self.schedules)


def parse_weekdays(names: Iterable[str]) -> frozenset[int]:
    indexes: set[int] = set()
    for raw in names:
        key = (raw or "").strip().lower()
        if key not in _WEEKDAY_INDEX:
            raise ValidationError(f"Unknown weekday: {raw!r}.", code="INVALID_WEEKDAY")
        indexes.add(_WEEKDAY_INDEX[key])
    return frozenset(indexes)


def generate_schedule_dates(start_date: date, end_date: date, weekdays: Iterable[str]) -> list[date]:
    """Every local calendar date in [start_date, end_date] falling on one of ``weekdays``.

    Works on plain dates only, so the result does not depend on the server time zone.
    """
    if end_date < start_date:
        raise ValidationError("End date must not be before start date.", code="INVALID_DATE_RANGE")
    if (end_date - start_date).days + 1 > MAX_BULK_RANGE_DAYS:
        raise ValidationError(
            f"Bulk scheduling is limited to {MAX_BULK_RANGE_DAYS} days.",
            code="DATE_RANGE_TOO_LONG",
        )

    wanted = parse_weekdays(weekdays)
    if not wanted:
        return []

    dates: list[date] = []
    current = start_date
    while current <= end_date:
        if current.weekday() in wanted:
            dates.append(current)
        current += timedelta(days=1)
    return dates


def build_schedule_drafts(request: BulkScheduleRequest) -> list[ScheduleDraft]:
    return [
        ScheduleDraft(
            employee_id=request.employee_id,
            schedule_date=day,
            start_time=request.start_time,
            end_time=request.end_time,
            title=request.title,
            description=request.description,
            location=request.location,
        )
        for day in generate_schedule_dates(request.start_date, request.end_date, request.weekdays)
    ]


def create_bulk_schedules(
    db: Session,
    *,
    request: BulkScheduleRequest,
    creator_id: str,
    channel: NotificationChannel | None = None,
    request_id: str | None = None,
) -> BulkScheduleResult:
    drafts = build_schedule_drafts(request)
    if not drafts:
        logger.info(
            "bulk_schedule_nothing_to_create",
            extra={
                "employee_id": request.employee_id,
                "start_date": request.start_date.isoformat(),
                "end_date": request.end_date.isoformat(),
                "weekdays": list(request.weekdays),
            },
        )
        return BulkScheduleResult(outcome=BulkOutcome.NOTHING_TO_CREATE)

    schedules = create_schedules_batch(db, drafts=drafts, creator_id=creator_id)
    dates = [item.schedule_date for item in schedules]
    logger.info(
        "bulk_schedule_created",
        extra={
            "employee_id": request.employee_id,
            "created_count": len(schedules),
            "creator_id": creator_id,
        },
    )
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=creator_id,
        action="SCHEDULES_BULK_CREATED",
        entity_type="employee",
        entity_id=str(request.employee_id),
        details={
            "schedule_ids": [item.id for item in schedules],
            "start_date": request.start_date.isoformat(),
            "end_date": request.end_date.isoformat(),
        },
        request_id=request_id,
    )

    employee = db.get(Employee, request.employee_id)
    if employee is not None:
        send_bulk_schedule_summary(
            db,
            employee=employee,
            schedule_count=len(schedules),
            start_date=request.start_date,
            end_date=request.end_date,
            weekdays=[WEEKDAY_NAMES[index] for index in sorted(parse_weekdays(request.weekdays))],
            start_time=request.start_time,
            end_time=request.end_time,
            channel=channel,
        )
    return BulkScheduleResult(outcome=BulkOutcome.CREATED, dates=dates, schedules=schedules)
