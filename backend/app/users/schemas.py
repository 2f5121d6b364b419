from datetime import datetime
from typing import Literal

from pydantic import BaseModel, EmailStr, Field

Role = Literal["SUPER_ADMIN", "TENANT_ADMIN", "BOT_OPERATOR", "USER"]
UserStatus = Literal["ACTIVE", "INACTIVE", "SUSPENDED"]


class UserOut(BaseModel):
    id: str
    email: str
    name: str | None = None
    role: str
    status: str
    last_active_at: datetime | None = None
    created_at: datetime
    conversation_count: int = 0

    class Config:
        from_attributes = True


class UserCreate(BaseModel):
    email: EmailStr
    name: str | None = Field(default=None, max_length=255)
    password: str = Field(min_length=8, max_length=72)
    role: Role = "USER"


class UserUpdate(BaseModel):
    name: str | None = Field(default=None, max_length=255)
    role: Role | None = None
    status: UserStatus | None = None


class SuspendRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class ProfileUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)


class PasswordChange(BaseModel):
    current_password: str = Field(min_length=1, max_length=72)
    new_password: str = Field(min_length=8, max_length=72)


class PreferencesPatch(BaseModel):
    preferences: dict
