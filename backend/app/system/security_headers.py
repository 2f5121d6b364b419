from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "camera=(), microphone=(), geolocation=()",
}

# The widget config endpoint is loaded cross-origin by the embed script.
_FRAMEABLE_PREFIXES = ("/api/v1/public/",)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            if name == "X-Frame-Options" and request.url.path.startswith(_FRAMEABLE_PREFIXES):
                continue
            response.headers.setdefault(name, value)
        return response
