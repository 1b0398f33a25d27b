from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from shiftops.db import get_db
from shiftops.dependencies import get_app_settings
from shiftops.schemas import (
    AttendanceSessionRead,
    ClockInRequest,
    ClockOutRequest,
    LocationPayload,
    TimeCardRead,
)
from shiftops.security import Actor, require_employee
from shiftops.services.attendance import (
    clock_in,
    clock_out,
    clock_out_open_session,
    get_open_session,
    list_sessions,
)
from shiftops.services.location import UNKNOWN_LOCATION, LocationSample, normalize_location_sample
from shiftops.services.timecard import get_monthly_time_card
from shiftops.settings import Settings

router = APIRouter(tags=["attendance"])


def _to_location_sample(payload: LocationPayload | None) -> LocationSample:
    if payload is None:
        return UNKNOWN_LOCATION
    return normalize_location_sample(
        lat=payload.lat,
        lng=payload.lng,
        accuracy_m=payload.accuracy_m,
        status=payload.status,
    )


def _mark_request(request: Request, *, employee_id: int, session: AttendanceSessionRead, location: LocationSample) -> None:
    request.state.employee_id = employee_id
    request.state.session_id = session.id
    request.state.location_status = location.status.value


@router.post("/attendance/clock-in", response_model=AttendanceSessionRead, status_code=201)
def employee_clock_in(
    payload: ClockInRequest,
    request: Request,
    actor: Actor = Depends(require_employee),
    db: Session = Depends(get_db),
) -> AttendanceSessionRead:
    location = _to_location_sample(payload.location)
    record = clock_in(db, employee_id=actor.employee_id, location=location, work_type=payload.work_type)
    result = AttendanceSessionRead.model_validate(record)
    _mark_request(request, employee_id=actor.employee_id, session=result, location=location)
    return result


@router.post("/attendance/clock-out", response_model=AttendanceSessionRead)
def employee_clock_out(
    payload: ClockOutRequest,
    request: Request,
    actor: Actor = Depends(require_employee),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> AttendanceSessionRead:
    location = _to_location_sample(payload.location)
    if payload.session_id is None:
        record = clock_out_open_session(
            db,
            employee_id=actor.employee_id,
            location=location,
            break_minutes=payload.break_minutes,
            settings=settings,
        )
    else:
        record = clock_out(
            db,
            session_id=payload.session_id,
            employee_id=actor.employee_id,
            location=location,
            break_minutes=payload.break_minutes,
            settings=settings,
        )
    result = AttendanceSessionRead.model_validate(record)
    _mark_request(request, employee_id=actor.employee_id, session=result, location=location)
    return result


@router.get("/attendance/open", response_model=AttendanceSessionRead | None)
def employee_open_session(
    actor: Actor = Depends(require_employee),
    db: Session = Depends(get_db),
) -> AttendanceSessionRead | None:
    record = get_open_session(db, employee_id=actor.employee_id)
    if record is None:
        return None
    return AttendanceSessionRead.model_validate(record)


@router.get("/attendance/sessions", response_model=list[AttendanceSessionRead])
def employee_sessions(
    actor: Actor = Depends(require_employee),
    db: Session = Depends(get_db),
) -> list[AttendanceSessionRead]:
    return [AttendanceSessionRead.model_validate(item) for item in list_sessions(db, employee_id=actor.employee_id)]


@router.get("/attendance/time-card", response_model=TimeCardRead)
def employee_time_card(
    year: int = Query(ge=2000, le=2100),
    month: int = Query(ge=1, le=12),
    actor: Actor = Depends(require_employee),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> TimeCardRead:
    summary = get_monthly_time_card(
        db,
        employee_id=actor.employee_id,
        year=year,
        month=month,
        settings=settings,
    )
    return TimeCardRead.model_validate(summary)
