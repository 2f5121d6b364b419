"""Map a request host to the tenant it addresses.

Tenants are reached either through ``<subdomain>.<ROOT_DOMAIN>`` or through a
custom domain they registered. ``<subdomain>.localhost`` works for local
development.
"""
import ipaddress
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.config import settings
from app.tenants.models import Tenant

SUBDOMAIN = "subdomain"
CUSTOM_DOMAIN = "custom_domain"

_LOCAL_HOSTS = {"localhost", "127.0.0.1", "0.0.0.0"}


@dataclass(frozen=True)
class HostTenant:
    kind: str
    value: str


def normalize_host(host: str | None) -> str:
    if not host:
        return ""
    host = host.strip().lower()
    if host.startswith("["):
        # [::1]:8000
        return host[1 : host.find("]")] if "]" in host else host
    if host.count(":") == 1:
        host = host.split(":", 1)[0]
    return host.rstrip(".")


def _is_ip(host: str) -> bool:
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return False
    return True


def extract_host_tenant(
    host: str | None,
    root_domain: str | None = None,
    reserved: list[str] | tuple[str, ...] | None = None,
) -> HostTenant | None:
    root = (root_domain if root_domain is not None else settings.ROOT_DOMAIN).lower().strip(".")
    reserved_set = {r.lower() for r in (reserved if reserved is not None else settings.RESERVED_SUBDOMAINS)}

    host = normalize_host(host)
    if not host or host in _LOCAL_HOSTS or _is_ip(host):
        return None

    bases = [b for b in (root, "localhost") if b]
    for base in dict.fromkeys(bases):
        if host == base:
            return None
        suffix = "." + base
        if host.endswith(suffix):
            label = host[: -len(suffix)]
            # only a single label directly under the root addresses a tenant
            if "." in label or label in reserved_set:
                return None
            return HostTenant(SUBDOMAIN, label)

    if "." not in host:
        return None
    return HostTenant(CUSTOM_DOMAIN, host)


def is_subdomain(host: str | None) -> bool:
    found = extract_host_tenant(host)
    return found is not None and found.kind == SUBDOMAIN


def is_custom_domain(host: str | None) -> bool:
    found = extract_host_tenant(host)
    return found is not None and found.kind == CUSTOM_DOMAIN


def get_tenant_url(subdomain: str, path: str = "", root_domain: str | None = None) -> str:
    root = root_domain or settings.ROOT_DOMAIN
    scheme = "http" if root == "localhost" else "https"
    if path and not path.startswith("/"):
        path = "/" + path
    return f"{scheme}://{subdomain}.{root}{path}"


def resolve_tenant(db: Session, host_tenant: HostTenant | None) -> Tenant | None:
    if host_tenant is None:
        return None
    if host_tenant.kind == SUBDOMAIN:
        stmt = select(Tenant).where(Tenant.subdomain == host_tenant.value)
    else:
        stmt = select(Tenant).where(Tenant.custom_domain == host_tenant.value)
    return db.execute(stmt).scalar_one_or_none()


def get_tenant_by_subdomain(db: Session, subdomain: str) -> Tenant | None:
    return db.execute(
        select(Tenant).where(Tenant.subdomain == subdomain.strip().lower())
    ).scalar_one_or_none()


def validate_tenant_access(tenant_id: str | None, user_tenant_id: str | None) -> bool:
    return bool(tenant_id) and tenant_id == user_tenant_id
