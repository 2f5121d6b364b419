import logging

from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from app.auth.deps import get_current_user
from app.auth.models import User
from app.db.session import get_db
from app.db.tenant_db import TenantDB, create_tenant_db
from app.tenants.resolver import SUBDOMAIN, resolve_tenant, validate_tenant_access

logger = logging.getLogger(__name__)


def get_tenant_db(
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> TenantDB:
    host_tenant = getattr(request.state, "host_tenant", None)
    if host_tenant is not None:
        tenant = resolve_tenant(db, host_tenant)
        if tenant is None and host_tenant.kind == SUBDOMAIN:
            raise HTTPException(status_code=404, detail="Tenant not found")
        # an unregistered custom host is the platform's own hostname
        if tenant is not None and not validate_tenant_access(tenant.id, user.tenant_id):
            logger.warning(
                "Cross-tenant access refused user=%s user_tenant=%s host_tenant=%s",
                user.id,
                user.tenant_id,
                tenant.id,
            )
            raise HTTPException(status_code=403, detail="Tenant access denied")
    return create_tenant_db(db, user.tenant_id)
