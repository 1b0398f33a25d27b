"""Initial attendance and schedule schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 00:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

location_status = postgresql.ENUM(
    "CAPTURED",
    "DENIED",
    "TIMEOUT",
    "UNAVAILABLE",
    "UNKNOWN",
    name="location_status",
    create_type=False,
)
schedule_status = postgresql.ENUM(
    "PENDING",
    "CONFIRMED",
    "CANCELLATION_REQUESTED",
    "CANCELLED",
    "COMPLETED",
    name="schedule_status",
    create_type=False,
)
schedule_email_type = postgresql.ENUM(
    "ASSIGNED",
    "CONFIRMED",
    "CANCELLATION_REQUESTED",
    "CANCELLATION_APPROVED",
    "CANCELLED_BY_ADMIN",
    name="schedule_email_type",
    create_type=False,
)
notification_recipient_type = postgresql.ENUM(
    "EMPLOYEE",
    "MANAGER",
    "OWNER",
    name="notification_recipient_type",
    create_type=False,
)
email_delivery_status = postgresql.ENUM(
    "SENT",
    "FAILED",
    name="email_delivery_status",
    create_type=False,
)
audit_actor_type = postgresql.ENUM(
    "ADMIN",
    "EMPLOYEE",
    "SYSTEM",
    name="audit_actor_type",
    create_type=False,
)

_ENUM_TYPES = (
    location_status,
    schedule_status,
    schedule_email_type,
    notification_recipient_type,
    email_delivery_status,
    audit_actor_type,
)


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in _ENUM_TYPES:
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        "employees",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("shift_start_local", sa.Time(timezone=False), nullable=True),
        sa.Column("shift_end_local", sa.Time(timezone=False), nullable=True),
        sa.Column("hourly_rate", sa.Numeric(10, 2), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
    )

    op.create_table(
        "attendance_sessions",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("clock_in_utc", sa.DateTime(timezone=True), nullable=False),
        sa.Column("clock_out_utc", sa.DateTime(timezone=True), nullable=True),
        sa.Column("total_hours", sa.Float(), nullable=True),
        sa.Column("is_late", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_early_checkout", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("break_minutes", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("work_type", sa.String(length=50), nullable=False, server_default=sa.text("'regular'")),
        sa.Column("clock_in_lat", sa.Float(), nullable=True),
        sa.Column("clock_in_lng", sa.Float(), nullable=True),
        sa.Column("clock_in_accuracy_m", sa.Float(), nullable=True),
        sa.Column("clock_in_location_status", location_status, nullable=False),
        sa.Column("clock_out_lat", sa.Float(), nullable=True),
        sa.Column("clock_out_lng", sa.Float(), nullable=True),
        sa.Column("clock_out_accuracy_m", sa.Float(), nullable=True),
        sa.Column("clock_out_location_status", location_status, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
        sa.CheckConstraint(
            "clock_out_utc IS NULL OR clock_out_utc >= clock_in_utc",
            name="ck_attendance_sessions_clock_order",
        ),
        sa.CheckConstraint("break_minutes >= 0", name="ck_attendance_sessions_break_minutes"),
    )
    op.create_index(
        "uq_attendance_sessions_open_employee",
        "attendance_sessions",
        ["employee_id"],
        unique=True,
        postgresql_where=sa.text("clock_out_utc IS NULL"),
    )
    op.create_index(
        "ix_attendance_sessions_employee_clock_in",
        "attendance_sessions",
        ["employee_id", "clock_in_utc"],
        unique=False,
    )

    op.create_table(
        "schedules",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("schedule_date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.Time(timezone=False), nullable=False),
        sa.Column("end_time", sa.Time(timezone=False), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("location", sa.String(length=255), nullable=True),
        sa.Column("status", schedule_status, nullable=False),
        sa.Column("created_by", sa.String(length=255), nullable=False),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_requested_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_by", sa.String(length=255), nullable=True),
        sa.Column("confirmation_email_sent", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("cancellation_email_sent", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_schedules_employee_date", "schedules", ["employee_id", "schedule_date"], unique=False)
    op.create_index("ix_schedules_status", "schedules", ["status"], unique=False)
    op.create_index("ix_schedules_date", "schedules", ["schedule_date"], unique=False)

    op.create_table(
        "notification_recipients",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("recipient_type", notification_recipient_type, nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.UniqueConstraint("email", name="uq_notification_recipients_email"),
    )

    op.create_table(
        "schedule_email_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("schedule_id", sa.Integer(), nullable=False),
        sa.Column("email_type", schedule_email_type, nullable=False),
        sa.Column("recipient_email", sa.String(length=320), nullable=False),
        sa.Column("recipient_type", notification_recipient_type, nullable=False),
        sa.Column("status", email_delivery_status, nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_schedule_email_logs_schedule_id", "schedule_email_logs", ["schedule_id"], unique=False)

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("ts_utc", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("actor_type", audit_actor_type, nullable=False),
        sa.Column("actor_id", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=255), nullable=True),
        sa.Column("entity_id", sa.String(length=255), nullable=True),
        sa.Column("request_id", sa.String(length=128), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("details", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
    )
    op.create_index("ix_audit_logs_ts_utc", "audit_logs", ["ts_utc"], unique=False)
    op.create_index("ix_audit_logs_request_id", "audit_logs", ["request_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_audit_logs_request_id", table_name="audit_logs")
    op.drop_index("ix_audit_logs_ts_utc", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_schedule_email_logs_schedule_id", table_name="schedule_email_logs")
    op.drop_table("schedule_email_logs")
    op.drop_table("notification_recipients")
    op.drop_index("ix_schedules_date", table_name="schedules")
    op.drop_index("ix_schedules_status", table_name="schedules")
    op.drop_index("ix_schedules_employee_date", table_name="schedules")
    op.drop_table("schedules")
    op.drop_index("ix_attendance_sessions_employee_clock_in", table_name="attendance_sessions")
    op.drop_index("uq_attendance_sessions_open_employee", table_name="attendance_sessions")
    op.drop_table("attendance_sessions")
    op.drop_table("employees")

    bind = op.get_bind()
    for enum_type in reversed(_ENUM_TYPES):
        enum_type.drop(bind, checkfirst=True)
