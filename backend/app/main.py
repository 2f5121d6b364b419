import logging
from pathlib import Path

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy import text
from sqlalchemy.engine.url import make_url
from sqlalchemy.exc import SQLAlchemyError

from app.analytics.router import router as analytics_router
from app.auth.router import router as auth_router
from app.billing.router import router as billing_router
from app.bots.router import router as bots_router
from app.chat.router import public_router as public_chat_router
from app.chat.router import router as chat_router
from app.conversations.router import router as conversations_router
from app.core.config import settings
from app.db.init_db import init_db
from app.db.session import engine
from app.knowledge.router import router as knowledge_router
from app.notifications.router import preferences_router as notification_preferences_router
from app.notifications.router import router as notifications_router
from app.system.security_headers import SecurityHeadersMiddleware
from app.tenants.middleware import TenantHostMiddleware
from app.tenants.router import router as tenant_router
from app.users.router import router as users_router
from app.widgets.router import admin_router as widgets_router
from app.widgets.router import public_router as public_widgets_router

logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL, logging.INFO))
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Multi-tenant AI Chatbot SaaS",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
    expose_headers=["X-Tenant-Subdomain"],
)

app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(TenantHostMiddleware)


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error("Database error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": "Database error"})


@app.on_event("startup")
def on_startup() -> None:
    db_url = make_url(settings.DATABASE_URL)
    logger.info(
        "Config sanity: env=%s db_host=%s root_domain=%s cors_origins=%s llm=%s trial_days=%s",
        settings.ENV,
        db_url.host or "local",
        settings.ROOT_DOMAIN,
        len(settings.CORS_ORIGINS),
        "on" if settings.OPENAI_API_KEY else "off",
        settings.TRIAL_DAYS,
    )
    init_db()


# --- Routers ---
app.include_router(auth_router, prefix="/api/v1/auth", tags=["auth"])
app.include_router(tenant_router, prefix="/api/v1/tenant", tags=["tenant"])
app.include_router(users_router, prefix="/api/v1/users", tags=["users"])
app.include_router(billing_router, prefix="/api/v1/billing", tags=["billing"])
app.include_router(bots_router, prefix="/api/v1/bots", tags=["bots"])
app.include_router(knowledge_router, prefix="/api/v1/knowledge-bases", tags=["knowledge"])
app.include_router(widgets_router, prefix="/api/v1/widgets", tags=["widgets"])
app.include_router(public_widgets_router, prefix="/api/v1/public/widgets", tags=["public-widgets"])
app.include_router(chat_router, prefix="/api/v1/chat", tags=["chat"])
app.include_router(public_chat_router, prefix="/api/v1/public/chat", tags=["public-chat"])
app.include_router(conversations_router, prefix="/api/v1/conversations", tags=["conversations"])
app.include_router(analytics_router, prefix="/api/v1/analytics", tags=["analytics"])
app.include_router(notifications_router, prefix="/api/v1/notifications", tags=["notifications"])
app.include_router(
    notification_preferences_router,
    prefix="/api/v1/notification-preferences",
    tags=["notifications"],
)


# embed script referenced by widget snippets
app.mount(
    "/static",
    StaticFiles(directory=str(Path(__file__).parent / "widgets" / "static")),
    name="static",
)


# --- System ---
@app.get("/health", tags=["system"])
def health():
    return {"status": "ok"}


@app.get("/ready", tags=["system"])
def readiness():
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError:
        raise HTTPException(status_code=503, detail="Database not ready")
    return {"status": "ready"}
