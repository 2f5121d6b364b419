import re

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.ids import make_id
from app.tenants.models import Tenant

MAX_DERIVED_SUBDOMAIN = 30
_SUBDOMAIN_RE = re.compile(r"^[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?$")


class InvalidSubdomain(ValueError):
    pass


def slugify_subdomain(value: str, fallback: str = "workspace") -> str:
    raw = re.sub(r"[^a-z0-9-]", "-", (value or "").strip().lower())
    raw = re.sub(r"-+", "-", raw).strip("-")
    raw = raw[:MAX_DERIVED_SUBDOMAIN].strip("-")
    if len(raw) < 2:
        return f"{raw}-{fallback}" if raw else fallback
    return raw


def validate_subdomain(value: str) -> str:
    sub = (value or "").strip().lower()
    if len(sub) < 2 or not _SUBDOMAIN_RE.match(sub):
        raise InvalidSubdomain("Subdomain may contain only lowercase letters, digits and hyphens")
    if sub in {r.lower() for r in settings.RESERVED_SUBDOMAINS}:
        raise InvalidSubdomain("This subdomain is reserved")
    return sub


def subdomain_taken(db: Session, subdomain: str) -> bool:
    return db.execute(select(Tenant.id).where(Tenant.subdomain == subdomain)).first() is not None


def unique_subdomain(db: Session, base: str) -> str:
    base = slugify_subdomain(base)
    if base in {r.lower() for r in settings.RESERVED_SUBDOMAINS}:
        base = f"{base}-team"
    candidate, counter = base, 1
    while subdomain_taken(db, candidate):
        suffix = f"-{counter}"
        candidate = f"{base[: MAX_DERIVED_SUBDOMAIN - len(suffix)]}{suffix}"
        counter += 1
    return candidate


def name_from_email(email: str) -> str:
    local = (email or "").split("@", 1)[0]
    parts = [p for p in re.split(r"[._-]+", local) if p]
    return " ".join(p.capitalize() for p in parts) or "User"


def create_tenant(db: Session, *, name: str, subdomain: str, plan: str = "FREE") -> Tenant:
    """Adds and flushes a tenant; the caller commits."""
    tenant = Tenant(
        id=make_id("t"),
        name=name,
        subdomain=subdomain,
        plan=plan,
        status="ACTIVE",
        settings={},
    )
    db.add(tenant)
    db.flush()
    return tenant
