from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

BotStatus = Literal["ACTIVE", "INACTIVE", "SUSPENDED", "DELETED"]


class BotCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=2000)
    avatar: str | None = Field(default=None, max_length=1024)
    personality: str | None = Field(default=None, max_length=4000)
    model: str | None = Field(default=None, max_length=64)
    temperature: float = Field(default=0.7, ge=0, le=2)
    max_tokens: int = Field(default=1000, ge=1, le=4000)
    config: dict = Field(default_factory=dict)


class BotUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=2000)
    avatar: str | None = Field(default=None, max_length=1024)
    personality: str | None = Field(default=None, max_length=4000)
    model: str | None = Field(default=None, max_length=64)
    temperature: float | None = Field(default=None, ge=0, le=2)
    max_tokens: int | None = Field(default=None, ge=1, le=4000)
    status: BotStatus | None = None
    config: dict | None = None


class BotOut(BaseModel):
    id: str
    tenant_id: str
    name: str
    description: str | None = None
    avatar: str | None = None
    personality: str | None = None
    model: str
    temperature: float
    max_tokens: int
    status: str
    config: dict
    created_at: datetime
    updated_at: datetime
    conversation_count: int = 0

    class Config:
        from_attributes = True


class BotDetailOut(BotOut):
    knowledge_bases: list[dict] = []
    widgets: list[dict] = []
