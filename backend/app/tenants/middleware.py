from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from app.tenants.resolver import SUBDOMAIN, extract_host_tenant


class TenantHostMiddleware(BaseHTTPMiddleware):
    """Parses the Host header once per request into ``request.state.host_tenant``."""

    async def dispatch(self, request: Request, call_next):
        host_tenant = extract_host_tenant(request.headers.get("host"))
        request.state.host_tenant = host_tenant

        response = await call_next(request)
        if host_tenant is not None and host_tenant.kind == SUBDOMAIN:
            response.headers["X-Tenant-Subdomain"] = host_tenant.value
        return response
