from __future__ import annotations

from fastapi import Request

from shiftops.services.notification_ledger import EmailChannel, NotificationChannel
from shiftops.settings import Settings


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_notification_channel(request: Request) -> NotificationChannel:
    return EmailChannel(request.app.state.settings)
