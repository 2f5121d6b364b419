import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.auth.deps import get_current_user
from app.auth.models import User
from app.auth.permissions import require_permission
from app.db.session import get_db
from app.db.tenant_db import TenantDB
from app.tenants.deps import get_tenant_db
from app.tenants.models import Tenant
from app.tenants.resolver import (
    extract_host_tenant,
    get_tenant_by_subdomain,
    get_tenant_url,
    normalize_host,
    resolve_tenant,
)
from app.tenants.schemas import TenantCounts, TenantDetail, TenantOut, TenantPublic, TenantSettingsPatch

logger = logging.getLogger(__name__)

router = APIRouter()


def _tenant_or_404(tdb: TenantDB) -> Tenant:
    tenant = tdb.get_tenant()
    if not tenant:
        raise HTTPException(status_code=404, detail="Tenant not found")
    return tenant


@router.get("", response_model=TenantDetail)
def get_tenant(
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(get_current_user),
):
    tenant = _tenant_or_404(tdb)
    counts = TenantCounts(
        bots=tdb.count_bots(),
        knowledge_bases=tdb.count_knowledge_bases(),
        documents=tdb.count_documents(),
        conversations=tdb.count_conversations(),
        users=tdb.count_users(),
    )
    base = TenantOut.model_validate(tenant).model_dump()
    return TenantDetail(**base, url=get_tenant_url(tenant.subdomain), counts=counts)


@router.patch("/settings", response_model=TenantOut)
def update_tenant_settings(
    payload: TenantSettingsPatch,
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(require_permission("user:manage")),
):
    tenant = _tenant_or_404(tdb)
    fields = payload.model_dump(exclude_unset=True)

    if "name" in fields and fields["name"] is not None:
        tenant.name = fields["name"].strip()
    if "avatar_url" in fields:
        tenant.avatar_url = (fields["avatar_url"] or "").strip() or None
    if "custom_domain" in fields:
        domain = normalize_host(fields["custom_domain"]) or None
        if domain is not None:
            if "." not in domain:
                raise HTTPException(status_code=400, detail="Custom domain must be a fully qualified host name")
            owner = tdb.db.execute(
                select(Tenant.id).where(Tenant.custom_domain == domain, Tenant.id != tenant.id)
            ).first()
            if owner is not None:
                raise HTTPException(status_code=409, detail="Custom domain is already in use")
        tenant.custom_domain = domain
    if fields.get("settings"):
        tenant.settings = {**(tenant.settings or {}), **fields["settings"]}

    tdb.db.add(tenant)
    tdb.db.commit()
    tdb.db.refresh(tenant)
    logger.info("Tenant settings updated tenant=%s by=%s fields=%s", tenant.id, user.id, sorted(fields))
    return tenant


@router.get("/resolve", response_model=TenantPublic)
def resolve_public_tenant(
    request: Request,
    subdomain: str | None = Query(default=None, max_length=63),
    host: str | None = Query(default=None, max_length=255),
    db: Session = Depends(get_db),
):
    """Public lookup used by the login page to brand a tenant's subdomain."""
    if subdomain:
        tenant = get_tenant_by_subdomain(db, subdomain)
    elif host:
        tenant = resolve_tenant(db, extract_host_tenant(host))
    else:
        tenant = resolve_tenant(db, getattr(request.state, "host_tenant", None))
    if tenant is None or tenant.status != "ACTIVE":
        raise HTTPException(status_code=404, detail="Tenant not found")
    return tenant
