from datetime import datetime

from pydantic import BaseModel, Field

PUBLIC_MESSAGE_MAX_CHARS = 1000


class ChatRequest(BaseModel):
    # length is checked in the handler so the error is a 400 with a clear message
    message: str = Field(min_length=1)
    bot_id: str = Field(min_length=1, max_length=64)
    conversation_id: str | None = Field(default=None, max_length=64)
    session_id: str | None = Field(default=None, max_length=128)


class ChatResponse(BaseModel):
    conversation_id: str
    message: str
    sources: list[dict] = []
    metadata: dict = {}


class MessageOut(BaseModel):
    id: str
    role: str
    content: str
    tokens: int
    model: str | None = None
    response_time_ms: int | None = None
    created_at: datetime

    class Config:
        from_attributes = True


class ConversationHistoryOut(BaseModel):
    conversation_id: str
    bot_id: str
    status: str
    messages: list[MessageOut]
