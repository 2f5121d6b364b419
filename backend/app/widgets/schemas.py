from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

WidgetType = Literal["CHAT_WIDGET", "POPUP", "EMBEDDED", "FLOATING"]
WidgetStatus = Literal["ACTIVE", "INACTIVE"]


class WidgetCreate(BaseModel):
    bot_id: str = Field(min_length=1, max_length=64)
    name: str = Field(min_length=1, max_length=255)
    type: WidgetType = "CHAT_WIDGET"
    config: dict = Field(default_factory=dict)
    allowed_origins: list[str] = Field(default_factory=list, max_length=50)


class WidgetUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    type: WidgetType | None = None
    status: WidgetStatus | None = None
    config: dict | None = None
    allowed_origins: list[str] | None = Field(default=None, max_length=50)


class WidgetConfigPatch(BaseModel):
    config: dict


class WidgetOut(BaseModel):
    id: str
    bot_id: str
    name: str
    type: str
    status: str
    config: dict
    allowed_origins: list[str]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class PublicWidgetOut(BaseModel):
    id: str
    name: str
    type: str
    config: dict
    bot_id: str
    status: str


class WidgetEmbedOut(BaseModel):
    widget_id: str
    bot_id: str
    snippet_html: str
