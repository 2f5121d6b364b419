from datetime import datetime

from pydantic import BaseModel, Field


class TenantOut(BaseModel):
    id: str
    name: str
    subdomain: str
    custom_domain: str | None = None
    plan: str
    status: str
    avatar_url: str | None = None
    settings: dict = Field(default_factory=dict)
    created_at: datetime

    class Config:
        from_attributes = True


class TenantCounts(BaseModel):
    bots: int
    knowledge_bases: int
    documents: int
    conversations: int
    users: int


class TenantDetail(TenantOut):
    url: str
    counts: TenantCounts


class TenantSettingsPatch(BaseModel):
    name: str | None = Field(default=None, min_length=2, max_length=255)
    avatar_url: str | None = Field(default=None, max_length=1024)
    custom_domain: str | None = Field(default=None, max_length=255)
    settings: dict | None = None


class TenantPublic(BaseModel):
    id: str
    name: str
    subdomain: str
    avatar_url: str | None = None

    class Config:
        from_attributes = True
