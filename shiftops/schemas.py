from datetime import date, datetime, time
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from shiftops.models import DeliveryStatus, LocationStatus, RecipientType, ScheduleEmailType, ScheduleStatus


class LocationPayload(BaseModel):
    lat: float | None = None
    lng: float | None = None
    accuracy_m: float | None = Field(default=None, ge=0)
    status: str | None = None


class ClockInRequest(BaseModel):
    location: LocationPayload | None = None
    work_type: str = Field(default="regular", max_length=50)


class ClockOutRequest(BaseModel):
    session_id: int | None = Field(default=None, ge=1)
    location: LocationPayload | None = None
    break_minutes: int | None = None


class AttendanceSessionRead(BaseModel):
    id: int
    employee_id: int
    clock_in_utc: datetime
    clock_out_utc: datetime | None
    total_hours: float | None
    is_late: bool
    is_early_checkout: bool
    break_minutes: int
    work_type: str
    clock_in_lat: float | None = None
    clock_in_lng: float | None = None
    clock_in_accuracy_m: float | None = None
    clock_in_location_status: LocationStatus
    clock_out_lat: float | None = None
    clock_out_lng: float | None = None
    clock_out_accuracy_m: float | None = None
    clock_out_location_status: LocationStatus | None = None

    model_config = ConfigDict(from_attributes=True)


class TimeCardRead(BaseModel):
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

    model_config = ConfigDict(from_attributes=True)


class ScheduleCreate(BaseModel):
    employee_id: int = Field(ge=1)
    schedule_date: date
    start_time: time
    end_time: time
    title: str | None = Field(default=None, max_length=255)
    description: str | None = None
    location: str | None = Field(default=None, max_length=255)


class BulkScheduleCreate(BaseModel):
    employee_id: int = Field(ge=1)
    start_date: date
    end_date: date
    weekdays: list[str] = Field(default_factory=list)
    start_time: time
    end_time: time
    title: str | None = Field(default=None, max_length=255)
    description: str | None = None
    location: str | None = Field(default=None, max_length=255)


class ScheduleRead(BaseModel):
    id: int
    employee_id: int
    schedule_date: date
    start_time: time
    end_time: time
    title: str | None
    description: str | None
    location: str | None
    status: ScheduleStatus
    created_by: str
    confirmed_at: datetime | None
    cancellation_requested_at: datetime | None
    cancellation_reason: str | None
    cancelled_at: datetime | None
    cancelled_by: str | None
    confirmation_email_sent: bool
    cancellation_email_sent: bool

    model_config = ConfigDict(from_attributes=True)


class BulkScheduleResponse(BaseModel):
    outcome: str
    created_count: int
    dates: list[date]
    schedules: list[ScheduleRead]


class CancellationRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=2000)


class AdminCancelRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=2000)


class ScheduleStatsRead(BaseModel):
    pending: int
    cancellation_requested: int
    today: int

    model_config = ConfigDict(from_attributes=True)


class ScheduleEmailLogRead(BaseModel):
    id: int
    schedule_id: int
    email_type: ScheduleEmailType
    recipient_email: str
    recipient_type: RecipientType
    status: DeliveryStatus
    error_message: str | None
    sent_at: datetime

    model_config = ConfigDict(from_attributes=True)


class NotificationRecipientCreate(BaseModel):
    email: str = Field(min_length=3, max_length=320)
    name: str | None = Field(default=None, max_length=255)
    recipient_type: RecipientType = RecipientType.MANAGER


class NotificationRecipientUpdate(BaseModel):
    is_active: bool


class NotificationRecipientRead(BaseModel):
    id: int
    email: str
    name: str | None
    recipient_type: RecipientType
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
