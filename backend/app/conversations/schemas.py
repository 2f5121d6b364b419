from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from app.chat.schemas import MessageOut


class ConversationOut(BaseModel):
    id: str
    bot_id: str
    user_id: str | None = None
    session_id: str | None = None
    title: str | None = None
    status: str
    channel: str
    message_count: int
    total_tokens: int
    started_at: datetime
    last_message_at: datetime
    closed_at: datetime | None = None

    class Config:
        from_attributes = True


class ConversationListOut(BaseModel):
    items: list[ConversationOut]
    total: int
    limit: int
    offset: int


class ConversationDetailOut(ConversationOut):
    messages: list[MessageOut] = []
    stats: dict = {}


class ConversationUpdate(BaseModel):
    title: str | None = Field(default=None, max_length=255)
    status: Literal["ACTIVE", "CLOSED", "ARCHIVED"] | None = None
