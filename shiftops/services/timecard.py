from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Iterable
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from shiftops.errors import NotFoundError, ValidationError
from shiftops.models import AttendanceSession, Employee
from shiftops.services.attendance import list_sessions, normalize_ts, resolve_timezone
from shiftops.settings import Settings, get_settings

DEFAULT_OVERTIME_THRESHOLD_HOURS = 8.0
_CENTS = Decimal("0.01")

RateLookup = Callable[[int], Decimal]


@dataclass(frozen=True)
class TimeCardSummary:
    employee_id: int
    year: int
    month: int
    total_hours: float
    regular_hours: float
    overtime_hours: float
    break_minutes: int
    days_worked: int
    open_sessions: int
    hourly_rate: Decimal
    estimated_earnings: Decimal


def local_month_bounds_utc(year: int, month: int, tz: ZoneInfo) -> tuple[datetime, datetime]:
    if not 1 <= month <= 12:
        raise ValidationError("Month must be between 1 and 12.", code="INVALID_MONTH")
    first_day = date(year, month, 1)
    next_first_day = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)
    local_start = datetime.combine(first_day, time.min, tzinfo=tz)
    local_end = datetime.combine(next_first_day, time.min, tzinfo=tz)
    return local_start.astimezone(timezone.utc), local_end.astimezone(timezone.utc)


def split_session_hours(total_hours: float, *, threshold_hours: float) -> tuple[float, float]:
    """Per-session split: hours beyond the threshold in one session are overtime."""
    worked = max(0.0, total_hours)
    threshold = max(0.0, threshold_hours)
    regular = min(worked, threshold)
    return regular, worked - regular


def build_time_card(
    sessions: Iterable[AttendanceSession],
    *,
    employee_id: int,
    year: int,
    month: int,
    hourly_rate: Decimal,
    tz: ZoneInfo,
    overtime_threshold_hours: float = DEFAULT_OVERTIME_THRESHOLD_HOURS,
) -> TimeCardSummary:
    start_utc, end_utc = local_month_bounds_utc(year, month, tz)

    total_hours = 0.0
    regular_hours = 0.0
    overtime_hours = 0.0
    break_minutes = 0
    days_worked = 0
    open_sessions = 0

    for session in sessions:
        if session.employee_id != employee_id:
            continue
        if not start_utc <= normalize_ts(session.clock_in_utc) < end_utc:
            continue
        break_minutes += max(0, session.break_minutes or 0)
        if session.clock_out_utc is None:
            open_sessions += 1
            continue

        days_worked += 1
        hours = float(session.total_hours or 0.0)
        regular, overtime = split_session_hours(hours, threshold_hours=overtime_threshold_hours)
        total_hours += hours
        regular_hours += regular
        overtime_hours += overtime

    rate = Decimal(hourly_rate or 0)
    earnings = (Decimal(str(round(total_hours, 6))) * rate).quantize(_CENTS, rounding=ROUND_HALF_UP)
    return TimeCardSummary(
        employee_id=employee_id,
        year=year,
        month=month,
        total_hours=round(total_hours, 6),
        regular_hours=round(regular_hours, 6),
        overtime_hours=round(overtime_hours, 6),
        break_minutes=break_minutes,
        days_worked=days_worked,
        open_sessions=open_sessions,
        hourly_rate=rate,
        estimated_earnings=earnings,
    )


def resolve_hourly_rate(db: Session, employee_id: int) -> Decimal:
    employee = db.get(Employee, employee_id)
    if employee is None:
        raise NotFoundError("Employee not found.", code="EMPLOYEE_NOT_FOUND")
    return Decimal(employee.hourly_rate or 0)


def get_monthly_time_card(
    db: Session,
    *,
    employee_id: int,
    year: int,
    month: int,
    settings: Settings | None = None,
    rate_lookup: RateLookup | None = None,
) -> TimeCardSummary:
    settings = settings or get_settings()
    tz = resolve_timezone(settings.attendance_timezone)
    start_utc, end_utc = local_month_bounds_utc(year, month, tz)
    lookup = rate_lookup or (lambda emp_id: resolve_hourly_rate(db, emp_id))
    return build_time_card(
        list_sessions(db, employee_id=employee_id, start_utc=start_utc, end_utc=end_utc),
        employee_id=employee_id,
        year=year,
        month=month,
        hourly_rate=lookup(employee_id),
        tz=tz,
        overtime_threshold_hours=settings.overtime_threshold_hours,
    )
