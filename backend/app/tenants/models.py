from datetime import datetime

from sqlalchemy import DateTime, JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base

PLAN_FREE = "FREE"


class Tenant(Base):
    __tablename__ = "tenants"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)  # t_xxx
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    subdomain: Mapped[str] = mapped_column(String(63), nullable=False, unique=True, index=True)
    custom_domain: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)
    # FREE | STARTER | PROFESSIONAL | ENTERPRISE
    plan: Mapped[str] = mapped_column(String(32), nullable=False, default=PLAN_FREE)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="ACTIVE")
    avatar_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    settings: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )
