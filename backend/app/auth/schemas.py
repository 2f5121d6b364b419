from datetime import datetime

from pydantic import BaseModel, EmailStr, Field


class SignupRequest(BaseModel):
    email: EmailStr
    # bcrypt hard limit = 72 bytes
    password: str = Field(min_length=8, max_length=72)
    name: str = Field(min_length=2, max_length=255)
    subdomain: str = Field(min_length=2, max_length=63)


class FreeTrialRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8, max_length=72)
    company: str | None = Field(default=None, max_length=255)


class LoginRequest(BaseModel):
    email: EmailStr
    # prevent bcrypt crash on long input
    password: str = Field(min_length=1, max_length=72)


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str | None = None
    token_type: str = "bearer"


class MeResponse(BaseModel):
    id: str
    tenant_id: str
    email: str
    name: str | None = None
    role: str
    status: str
    permissions: list[str] = []


class SignupResponse(BaseModel):
    user: MeResponse
    tenant_id: str
    subdomain: str
    plan: str
    subscription_status: str
    trial_ends_at: datetime | None = None
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class RefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=20)


class LogoutRequest(BaseModel):
    refresh_token: str = Field(min_length=20)
