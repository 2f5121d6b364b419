from typing import Literal

from pydantic import BaseModel, Field


class NotificationCreate(BaseModel):
    test: bool = False
    title: str | None = Field(default=None, max_length=255)
    message: str | None = Field(default=None, max_length=4000)
    type: str | None = None
    priority: str | None = None
    action_url: str | None = Field(default=None, max_length=1024)


class MarkReadRequest(BaseModel):
    notification_ids: list[str] | None = Field(default=None, max_length=500)
    all: bool = False


class NotificationListOut(BaseModel):
    items: list[dict]
    unread_count: int
    has_more: bool
    next_cursor: str | None = None


class PreferenceUpdate(BaseModel):
    category: str
    in_app_enabled: bool | None = None
    email_enabled: bool | None = None
    sms_enabled: bool | None = None
    frequency: Literal["REALTIME", "HOURLY_DIGEST", "DAILY_DIGEST"] | None = None
    quiet_hours_start: str | None = Field(default=None, pattern=r"^\d{2}:\d{2}$")
    quiet_hours_end: str | None = Field(default=None, pattern=r"^\d{2}:\d{2}$")


class PreferencesUpdate(BaseModel):
    preferences: list[PreferenceUpdate] = Field(min_length=1, max_length=20)
