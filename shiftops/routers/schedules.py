from datetime import date

from fastapi import APIRouter, Depends, Query, Request, Response
from sqlalchemy.orm import Session

from shiftops.db import get_db
from shiftops.dependencies import get_app_settings, get_notification_channel
from shiftops.errors import get_request_id
from shiftops.models import ScheduleStatus
from shiftops.schemas import (
    AdminCancelRequest,
    BulkScheduleCreate,
    BulkScheduleResponse,
    CancellationRequest,
    NotificationRecipientCreate,
    NotificationRecipientRead,
    NotificationRecipientUpdate,
    ScheduleCreate,
    ScheduleEmailLogRead,
    ScheduleRead,
    ScheduleStatsRead,
)
from shiftops.security import Actor, require_admin, require_employee
from shiftops.services.bulk_schedules import BulkScheduleRequest, create_bulk_schedules
from shiftops.services.notification_ledger import (
    NotificationChannel,
    add_notification_recipient,
    list_notification_recipients,
    list_schedule_email_logs,
    remove_notification_recipient,
    set_notification_recipient_active,
)
from shiftops.services.schedules import (
    ScheduleDraft,
    admin_cancel_schedule,
    approve_schedule_cancellation,
    confirm_schedule,
    create_schedule,
    delete_schedule,
    get_schedule,
    get_schedule_stats,
    list_employee_schedules,
    list_schedules,
    list_today_schedules,
    list_upcoming_schedules,
    mark_schedule_completed,
    request_schedule_cancellation,
)
from shiftops.settings import Settings

router = APIRouter(tags=["schedules"])
admin_router = APIRouter(tags=["admin"], dependencies=[Depends(require_admin)])


def _to_schedule_reads(items) -> list[ScheduleRead]:
    return [ScheduleRead.model_validate(item) for item in items]


# --- employee ---------------------------------------------------------------


@router.get("/schedules/mine", response_model=list[ScheduleRead])
def my_schedules(
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    actor: Actor = Depends(require_employee),
    db: Session = Depends(get_db),
) -> list[ScheduleRead]:
    return _to_schedule_reads(
        list_employee_schedules(db, employee_id=actor.employee_id, start_date=start_date, end_date=end_date)
    )


@router.get("/schedules/upcoming", response_model=list[ScheduleRead])
def my_upcoming_schedules(
    days: int = Query(default=7, ge=0, le=90),
    actor: Actor = Depends(require_employee),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> list[ScheduleRead]:
    return _to_schedule_reads(
        list_upcoming_schedules(db, employee_id=actor.employee_id, days=days, settings=settings)
    )


@router.get("/schedules/today", response_model=list[ScheduleRead])
def my_today_schedules(
    actor: Actor = Depends(require_employee),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> list[ScheduleRead]:
    return _to_schedule_reads(list_today_schedules(db, employee_id=actor.employee_id, settings=settings))


@router.post("/schedules/{schedule_id}/confirm", response_model=ScheduleRead)
def employee_confirm_schedule(
    schedule_id: int,
    actor: Actor = Depends(require_employee),
    db: Session = Depends(get_db),
    channel: NotificationChannel = Depends(get_notification_channel),
) -> ScheduleRead:
    schedule = confirm_schedule(db, schedule_id=schedule_id, employee_id=actor.employee_id, channel=channel)
    return ScheduleRead.model_validate(schedule)


@router.post("/schedules/{schedule_id}/cancellation-request", response_model=ScheduleRead)
def employee_request_cancellation(
    schedule_id: int,
    payload: CancellationRequest,
    actor: Actor = Depends(require_employee),
    db: Session = Depends(get_db),
    channel: NotificationChannel = Depends(get_notification_channel),
) -> ScheduleRead:
    schedule = request_schedule_cancellation(
        db,
        schedule_id=schedule_id,
        employee_id=actor.employee_id,
        reason=payload.reason,
        channel=channel,
    )
    return ScheduleRead.model_validate(schedule)


# --- admin ------------------------------------------------------------------


@admin_router.post("/admin/schedules", response_model=ScheduleRead, status_code=201)
def admin_create_schedule(
    payload: ScheduleCreate,
    actor: Actor = Depends(require_admin),
    db: Session = Depends(get_db),
    channel: NotificationChannel = Depends(get_notification_channel),
) -> ScheduleRead:
    draft = ScheduleDraft(**payload.model_dump())
    schedule = create_schedule(db, draft=draft, creator_id=actor.subject, channel=channel)
    return ScheduleRead.model_validate(schedule)


@admin_router.get("/admin/schedules", response_model=list[ScheduleRead])
def admin_list_schedules(
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    status: ScheduleStatus | None = Query(default=None),
    employee_id: int | None = Query(default=None, ge=1),
    db: Session = Depends(get_db),
) -> list[ScheduleRead]:
    return _to_schedule_reads(
        list_schedules(db, start_date=start_date, end_date=end_date, status=status, employee_id=employee_id)
    )


@admin_router.post("/admin/schedules/bulk", response_model=BulkScheduleResponse)
def admin_bulk_create_schedules(
    payload: BulkScheduleCreate,
    request: Request,
    response: Response,
    actor: Actor = Depends(require_admin),
    db: Session = Depends(get_db),
    channel: NotificationChannel = Depends(get_notification_channel),
) -> BulkScheduleResponse:
    bulk_request = BulkScheduleRequest(
        employee_id=payload.employee_id,
        start_date=payload.start_date,
        end_date=payload.end_date,
        weekdays=tuple(payload.weekdays),
        start_time=payload.start_time,
        end_time=payload.end_time,
        title=payload.title,
        description=payload.description,
        location=payload.location,
    )
    result = create_bulk_schedules(
        db,
        request=bulk_request,
        creator_id=actor.subject,
        channel=channel,
        request_id=get_request_id(request),
    )
    if result.created_count:
        response.status_code = 201
    return BulkScheduleResponse(
        outcome=result.outcome.value,
        created_count=result.created_count,
        dates=result.dates,
        schedules=_to_schedule_reads(result.schedules),
    )


@admin_router.get("/admin/schedules/stats", response_model=ScheduleStatsRead)
def admin_schedule_stats(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> ScheduleStatsRead:
    return ScheduleStatsRead.model_validate(get_schedule_stats(db, settings=settings))


@admin_router.get("/admin/schedules/{schedule_id}", response_model=ScheduleRead)
def admin_get_schedule(schedule_id: int, db: Session = Depends(get_db)) -> ScheduleRead:
    return ScheduleRead.model_validate(get_schedule(db, schedule_id))


@admin_router.post("/admin/schedules/{schedule_id}/approve-cancellation", response_model=ScheduleRead)
def admin_approve_cancellation(
    schedule_id: int,
    actor: Actor = Depends(require_admin),
    db: Session = Depends(get_db),
    channel: NotificationChannel = Depends(get_notification_channel),
) -> ScheduleRead:
    schedule = approve_schedule_cancellation(db, schedule_id=schedule_id, admin_id=actor.subject, channel=channel)
    return ScheduleRead.model_validate(schedule)


@admin_router.post("/admin/schedules/{schedule_id}/cancel", response_model=ScheduleRead)
def admin_force_cancel(
    schedule_id: int,
    request: Request,
    payload: AdminCancelRequest | None = None,
    actor: Actor = Depends(require_admin),
    db: Session = Depends(get_db),
    channel: NotificationChannel = Depends(get_notification_channel),
    settings: Settings = Depends(get_app_settings),
) -> ScheduleRead:
    schedule = admin_cancel_schedule(
        db,
        schedule_id=schedule_id,
        admin_id=actor.subject,
        reason=payload.reason if payload else None,
        channel=channel,
        settings=settings,
        request_id=get_request_id(request),
    )
    return ScheduleRead.model_validate(schedule)


@admin_router.post("/admin/schedules/{schedule_id}/complete", response_model=ScheduleRead)
def admin_complete_schedule(
    schedule_id: int,
    actor: Actor = Depends(require_admin),
    db: Session = Depends(get_db),
) -> ScheduleRead:
    return ScheduleRead.model_validate(mark_schedule_completed(db, schedule_id=schedule_id, admin_id=actor.subject))


@admin_router.delete("/admin/schedules/{schedule_id}", status_code=204)
def admin_delete_schedule(
    schedule_id: int,
    request: Request,
    actor: Actor = Depends(require_admin),
    db: Session = Depends(get_db),
) -> Response:
    delete_schedule(db, schedule_id=schedule_id, admin_id=actor.subject, request_id=get_request_id(request))
    return Response(status_code=204)


@admin_router.get("/admin/schedules/{schedule_id}/email-logs", response_model=list[ScheduleEmailLogRead])
def admin_schedule_email_logs(schedule_id: int, db: Session = Depends(get_db)) -> list[ScheduleEmailLogRead]:
    return [ScheduleEmailLogRead.model_validate(item) for item in list_schedule_email_logs(db, schedule_id=schedule_id)]


@admin_router.get("/admin/notification-recipients", response_model=list[NotificationRecipientRead])
def admin_list_recipients(
    include_inactive: bool = Query(default=True),
    db: Session = Depends(get_db),
) -> list[NotificationRecipientRead]:
    return [
        NotificationRecipientRead.model_validate(item)
        for item in list_notification_recipients(db, include_inactive=include_inactive)
    ]


@admin_router.post("/admin/notification-recipients", response_model=NotificationRecipientRead, status_code=201)
def admin_add_recipient(payload: NotificationRecipientCreate, db: Session = Depends(get_db)) -> NotificationRecipientRead:
    recipient = add_notification_recipient(
        db,
        email=payload.email,
        name=payload.name,
        recipient_type=payload.recipient_type,
    )
    return NotificationRecipientRead.model_validate(recipient)


@admin_router.patch("/admin/notification-recipients/{recipient_id}", response_model=NotificationRecipientRead)
def admin_update_recipient(
    recipient_id: int,
    payload: NotificationRecipientUpdate,
    db: Session = Depends(get_db),
) -> NotificationRecipientRead:
    recipient = set_notification_recipient_active(db, recipient_id=recipient_id, is_active=payload.is_active)
    return NotificationRecipientRead.model_validate(recipient)


@admin_router.delete("/admin/notification-recipients/{recipient_id}", status_code=204)
def admin_remove_recipient(recipient_id: int, db: Session = Depends(get_db)) -> Response:
    remove_notification_recipient(db, recipient_id=recipient_id)
    return Response(status_code=204)
