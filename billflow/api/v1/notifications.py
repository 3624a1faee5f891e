"""
Notification API endpoints (settings, channels, history, scheduler)
"""
from datetime import datetime

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict
from sqlalchemy.orm import Session

from billflow.api.deps import get_db, get_notifier, http_errors
from billflow.application.notifications import NotificationService
from billflow.application.scheduler import get_scheduler_settings, update_scheduler_settings


router = APIRouter(prefix="/api/v1/notifications", tags=["notifications"])


# === Request/Response models ===

class NotificationSettingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    notification_type: str
    is_enabled: bool
    advance_days: int
    repeat_notification: bool
    notification_channels: list[str]


class UpdateNotificationSettingRequest(BaseModel):
    is_enabled: bool | None = None
    advance_days: int | None = None
    repeat_notification: bool | None = None
    notification_channels: list[str] | None = None


class ConfigureChannelRequest(BaseModel):
    config: dict
    is_active: bool = True


class SendNotificationRequest(BaseModel):
    subscription_id: int
    notification_type: str
    channels: list[str] | None = None


class SchedulerSettingsRequest(BaseModel):
    notification_check_time: str = "09:00"
    timezone: str = "Asia/Shanghai"
    is_enabled: bool = True


class NotificationHistoryItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    subscription_id: int
    notification_type: str
    channel_type: str
    status: str
    recipient: str | None
    message_content: str
    sent_at: datetime | None
    error_message: str | None
    created_at: datetime | None


# === Endpoints ===

@router.get("/settings", response_model=list[NotificationSettingResponse])
def list_settings(notifier: NotificationService = Depends(get_notifier)):
    return notifier.list_settings()


@router.put("/settings/{notification_type}", response_model=NotificationSettingResponse)
def update_setting(
    notification_type: str,
    req: UpdateNotificationSettingRequest,
    notifier: NotificationService = Depends(get_notifier),
):
    with http_errors():
        return notifier.update_setting(notification_type, **req.model_dump())


@router.put("/channels/{channel_type}")
def configure_channel(
    channel_type: str,
    req: ConfigureChannelRequest,
    notifier: NotificationService = Depends(get_notifier),
):
    channel = notifier.configure_channel(channel_type, req.config, req.is_active)
    return {"channel_type": channel.channel_type, "is_active": channel.is_active}


@router.post("/send")
def send_notification(req: SendNotificationRequest, notifier: NotificationService = Depends(get_notifier)):
    return notifier.send_notification(req.subscription_id, req.notification_type, req.channels)


@router.post("/check")
def check_now(notifier: NotificationService = Depends(get_notifier)):
    """Run the reminder / expiration scan immediately"""
    return notifier.check_and_send_notifications()


@router.get("/history")
def history(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    status: str | None = None,
    notification_type: str | None = None,
    notifier: NotificationService = Depends(get_notifier),
):
    result = notifier.get_history(page=page, limit=limit, status=status, notification_type=notification_type)
    result["data"] = [NotificationHistoryItem.model_validate(row) for row in result["data"]]
    return result


@router.get("/stats")
def stats(notifier: NotificationService = Depends(get_notifier)):
    return notifier.get_stats()


@router.get("/scheduler")
def scheduler_settings(db: Session = Depends(get_db)):
    return get_scheduler_settings(db)


@router.put("/scheduler")
def update_scheduler(req: SchedulerSettingsRequest, db: Session = Depends(get_db)):
    with http_errors():
        return update_scheduler_settings(db, req.notification_check_time, req.timezone, req.is_enabled)
