from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from functools import lru_cache
import logging
from typing import Callable
from zoneinfo import ZoneInfo

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from shiftops.errors import (
    AlreadyClosedError,
    AlreadyOpenError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from shiftops.models import AttendanceSession, Employee
from shiftops.services.location import UNKNOWN_LOCATION, LocationSample
from shiftops.settings import Settings, get_settings

logger = logging.getLogger("shiftops.attendance")

DEFAULT_WORK_TYPE = "regular"


@dataclass(frozen=True, slots=True)
class ShiftConfig:
    start_time_local: time | None = None
    end_time_local: time | None = None

    @property
    def crosses_midnight(self) -> bool:
        if self.start_time_local is None or self.end_time_local is None:
            return False
        return self.end_time_local <= self.start_time_local


ShiftLookup = Callable[[int], ShiftConfig]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_ts(ts_utc: datetime | None) -> datetime:
    if ts_utc is None:
        return _utcnow()

    if ts_utc.tzinfo is None:
        return ts_utc.replace(tzinfo=timezone.utc)

    return ts_utc.astimezone(timezone.utc)


@lru_cache
def resolve_timezone(name: str) -> ZoneInfo:
    raw_name = (name or "").strip() or "UTC"
    try:
        return ZoneInfo(raw_name)
    except Exception:
        logger.warning("attendance_timezone_invalid", extra={"timezone": raw_name})
        return ZoneInfo("UTC")


def compute_total_hours(clock_in_utc: datetime, clock_out_utc: datetime) -> float:
    elapsed = normalize_ts(clock_out_utc) - normalize_ts(clock_in_utc)
    return elapsed.total_seconds() / 3600.0


def _shift_start_date(local_in: datetime, shift: ShiftConfig) -> date:
    # An overnight shift clocked into after midnight started the day before.
    if shift.crosses_midnight and local_in.time() < shift.end_time_local:
        return local_in.date() - timedelta(days=1)
    return local_in.date()


def is_late_checkin(
    clock_in_utc: datetime,
    *,
    shift: ShiftConfig,
    tz: ZoneInfo,
    grace_minutes: int,
) -> bool:
    if shift.start_time_local is None:
        return False
    local_in = normalize_ts(clock_in_utc).astimezone(tz)
    shift_start = datetime.combine(_shift_start_date(local_in, shift), shift.start_time_local, tzinfo=tz)
    return local_in > shift_start + timedelta(minutes=max(0, grace_minutes))


def is_early_checkout(
    clock_in_utc: datetime,
    clock_out_utc: datetime,
    *,
    shift: ShiftConfig,
    tz: ZoneInfo,
    tolerance_minutes: int,
) -> bool:
    if shift.end_time_local is None:
        return False
    local_in = normalize_ts(clock_in_utc).astimezone(tz)
    local_out = normalize_ts(clock_out_utc).astimezone(tz)
    shift_end = datetime.combine(_shift_start_date(local_in, shift), shift.end_time_local, tzinfo=tz)
    if shift.crosses_midnight:
        shift_end += timedelta(days=1)
    return local_out < shift_end - timedelta(minutes=max(0, tolerance_minutes))


def resolve_shift_config(db: Session, employee_id: int) -> ShiftConfig:
    employee = db.get(Employee, employee_id)
    if employee is None:
        return ShiftConfig()
    return ShiftConfig(
        start_time_local=employee.shift_start_local,
        end_time_local=employee.shift_end_local,
    )


def _require_active_employee(db: Session, employee_id: int) -> Employee:
    employee = db.get(Employee, employee_id)
    if employee is None:
        raise NotFoundError("Employee not found.", code="EMPLOYEE_NOT_FOUND")
    if not employee.is_active:
        raise ForbiddenError(
            "Inactive employee cannot perform attendance actions.",
            code="EMPLOYEE_INACTIVE",
        )
    return employee


def get_open_session(db: Session, *, employee_id: int) -> AttendanceSession | None:
    return db.scalar(
        select(AttendanceSession).where(
            AttendanceSession.employee_id == employee_id,
            AttendanceSession.clock_out_utc.is_(None),
        )
    )


def list_sessions(
    db: Session,
    *,
    employee_id: int,
    start_utc: datetime | None = None,
    end_utc: datetime | None = None,
) -> list[AttendanceSession]:
    stmt = select(AttendanceSession).where(AttendanceSession.employee_id == employee_id)
    if start_utc is not None:
        stmt = stmt.where(AttendanceSession.clock_in_utc >= normalize_ts(start_utc))
    if end_utc is not None:
        stmt = stmt.where(AttendanceSession.clock_in_utc < normalize_ts(end_utc))
    stmt = stmt.order_by(AttendanceSession.clock_in_utc.desc(), AttendanceSession.id.desc())
    return list(db.scalars(stmt).all())


def clock_in(
    db: Session,
    *,
    employee_id: int,
    location: LocationSample | None = None,
    work_type: str = DEFAULT_WORK_TYPE,
) -> AttendanceSession:
    employee = _require_active_employee(db, employee_id)

    if get_open_session(db, employee_id=employee.id) is not None:
        raise AlreadyOpenError()

    sample = location or UNKNOWN_LOCATION
    record = AttendanceSession(
        employee_id=employee.id,
        clock_in_utc=_utcnow(),
        work_type=(work_type or "").strip() or DEFAULT_WORK_TYPE,
        break_minutes=0,
        clock_in_lat=sample.lat,
        clock_in_lng=sample.lng,
        clock_in_accuracy_m=sample.accuracy_m,
        clock_in_location_status=sample.status,
    )
    db.add(record)
    try:
        db.commit()
    except IntegrityError:
        # A concurrent clock-in won the partial unique index.
        db.rollback()
        logger.info("clock_in_rejected_open_session_exists", extra={"employee_id": employee.id})
        raise AlreadyOpenError() from None

    db.refresh(record)
    logger.info(
        "clock_in",
        extra={
            "employee_id": employee.id,
            "session_id": record.id,
            "location_status": sample.status.value,
            "work_type": record.work_type,
        },
    )
    return record


def clock_out(
    db: Session,
    *,
    session_id: int,
    employee_id: int,
    location: LocationSample | None = None,
    break_minutes: int | None = None,
    shift_lookup: ShiftLookup | None = None,
    settings: Settings | None = None,
) -> AttendanceSession:
    settings = settings or get_settings()
    if break_minutes is not None and break_minutes < 0:
        raise ValidationError("Break minutes cannot be negative.")

    record = db.get(AttendanceSession, session_id, populate_existing=True)
    if record is None or record.employee_id != employee_id:
        raise NotFoundError("Attendance session not found.", code="SESSION_NOT_FOUND")
    if record.clock_out_utc is not None:
        raise AlreadyClosedError()

    clock_in_utc = normalize_ts(record.clock_in_utc)
    # The store rejects clock_out < clock_in; clamp against server clock skew.
    clock_out_utc = max(_utcnow(), clock_in_utc)

    lookup = shift_lookup or (lambda emp_id: resolve_shift_config(db, emp_id))
    shift = lookup(employee_id)
    tz = resolve_timezone(settings.attendance_timezone)
    sample = location or UNKNOWN_LOCATION

    values: dict[str, object] = {
        "clock_out_utc": clock_out_utc,
        "total_hours": compute_total_hours(clock_in_utc, clock_out_utc),
        "is_late": is_late_checkin(
            clock_in_utc,
            shift=shift,
            tz=tz,
            grace_minutes=settings.late_grace_minutes,
        ),
        "is_early_checkout": is_early_checkout(
            clock_in_utc,
            clock_out_utc,
            shift=shift,
            tz=tz,
            tolerance_minutes=settings.early_checkout_tolerance_minutes,
        ),
        "clock_out_lat": sample.lat,
        "clock_out_lng": sample.lng,
        "clock_out_accuracy_m": sample.accuracy_m,
        "clock_out_location_status": sample.status,
    }
    if break_minutes is not None:
        values["break_minutes"] = break_minutes

    result = db.execute(
        update(AttendanceSession)
        .where(
            AttendanceSession.id == record.id,
            AttendanceSession.clock_out_utc.is_(None),
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        logger.info("clock_out_rejected_already_closed", extra={"session_id": record.id})
        raise AlreadyClosedError()

    db.commit()
    db.refresh(record)
    logger.info(
        "clock_out",
        extra={
            "employee_id": employee_id,
            "session_id": record.id,
            "total_hours": record.total_hours,
            "is_late": record.is_late,
            "is_early_checkout": record.is_early_checkout,
            "location_status": sample.status.value,
        },
    )
    return record


def clock_out_open_session(
    db: Session,
    *,
    employee_id: int,
    location: LocationSample | None = None,
    break_minutes: int | None = None,
    shift_lookup: ShiftLookup | None = None,
    settings: Settings | None = None,
) -> AttendanceSession:
    open_session = get_open_session(db, employee_id=employee_id)
    if open_session is None:
        raise NotFoundError("You are not clocked in.", code="NOT_CLOCKED_IN")
    return clock_out(
        db,
        session_id=open_session.id,
        employee_id=employee_id,
        location=location,
        break_minutes=break_minutes,
        shift_lookup=shift_lookup,
        settings=settings,
    )
