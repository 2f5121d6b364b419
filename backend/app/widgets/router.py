import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Request, Response
from sqlalchemy.orm import Session

from app.auth.models import User
from app.auth.permissions import require_permission
from app.billing.guards import ensure_paid_action, require_paid_action
from app.core.config import settings
from app.db.session import get_db
from app.db.tenant_db import TenantDB, TenantScopeError
from app.tenants.deps import get_tenant_db
from app.widgets.models import Widget
from app.widgets.schemas import (
    PublicWidgetOut,
    WidgetConfigPatch,
    WidgetCreate,
    WidgetEmbedOut,
    WidgetOut,
    WidgetUpdate,
)

logger = logging.getLogger(__name__)

admin_router = APIRouter()
public_router = APIRouter()

PUBLIC_CACHE_CONTROL = "public, max-age=300"


def normalize_origins(origins: list[str]) -> list[str]:
    cleaned = []
    for origin in origins:
        value = (origin or "").strip().rstrip("/").lower()
        if value and value not in cleaned:
            cleaned.append(value)
    return cleaned


def origin_allowed(widget: Widget, origin: str | None) -> bool:
    allowed = widget.allowed_origins or []
    if not allowed:
        return True
    return (origin or "").strip().rstrip("/").lower() in allowed


def _js_escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("</", "<\\/")


def build_embed_snippet(widget: Widget, api_base: str) -> str:
    api_base = api_base.rstrip("/")
    return (
        f'<script src="{api_base}/static/chat-widget.js" defer></script>\n'
        "<script>\n"
        "window.addEventListener('load', function () {\n"
        "  window.ChatbotWidget.init({\n"
        f'    apiBase: "{_js_escape(api_base)}",\n'
        f'    widgetId: "{widget.id}",\n'
        f'    botId: "{widget.bot_id}",\n'
        f'    type: "{widget.type}"\n'
        "  });\n"
        "});\n"
        "</script>"
    )


def _widget_or_404(tdb: TenantDB, widget_id: str) -> Widget:
    widget = tdb.get_widget(widget_id)
    if not widget:
        raise HTTPException(status_code=404, detail="Widget not found")
    return widget


@admin_router.get("", response_model=list[WidgetOut])
def list_widgets(
    bot_id: str | None = None,
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(require_permission("widget:manage")),
):
    return tdb.list_widgets(bot_id=bot_id)


@admin_router.post("", response_model=WidgetOut, status_code=201)
def create_widget(
    payload: WidgetCreate,
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(require_permission("widget:manage")),
):
    ensure_paid_action(tdb.db, tdb.tenant_id)
    fields = payload.model_dump()
    fields["allowed_origins"] = normalize_origins(fields["allowed_origins"])
    try:
        widget = tdb.create_widget(**fields)
    except TenantScopeError as e:
        raise HTTPException(status_code=404, detail=str(e))
    logger.info("Widget created tenant=%s widget=%s bot=%s", tdb.tenant_id, widget.id, widget.bot_id)
    return widget


@admin_router.get("/{widget_id}", response_model=WidgetOut)
def get_widget(
    widget_id: str,
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(require_permission("widget:manage")),
):
    return _widget_or_404(tdb, widget_id)


@admin_router.put("/{widget_id}", response_model=WidgetOut, dependencies=[Depends(require_paid_action)])
def update_widget(
    widget_id: str,
    payload: WidgetUpdate,
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(require_permission("widget:manage")),
):
    _widget_or_404(tdb, widget_id)
    fields = payload.model_dump(exclude_unset=True)
    if fields.get("allowed_origins") is not None:
        fields["allowed_origins"] = normalize_origins(fields["allowed_origins"])
    return tdb.update_widget(widget_id, **fields)


@admin_router.put("/{widget_id}/config", response_model=WidgetOut, dependencies=[Depends(require_paid_action)])
def update_widget_config(
    widget_id: str,
    payload: WidgetConfigPatch,
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(require_permission("widget:manage")),
):
    widget = _widget_or_404(tdb, widget_id)
    merged = {**(widget.config or {}), **payload.config}
    return tdb.update_widget(widget_id, config=merged)


@admin_router.delete("/{widget_id}")
def delete_widget(
    widget_id: str,
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(require_permission("widget:manage")),
):
    if not tdb.delete_widget(widget_id):
        raise HTTPException(status_code=404, detail="Widget not found")
    return {"ok": True}


@admin_router.get("/{widget_id}/embed", response_model=WidgetEmbedOut)
def widget_embed_snippet(
    widget_id: str,
    request: Request,
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(require_permission("widget:manage")),
):
    widget = _widget_or_404(tdb, widget_id)
    api_base = settings.PUBLIC_BASE_URL or str(request.base_url)
    return WidgetEmbedOut(widget_id=widget.id, bot_id=widget.bot_id, snippet_html=build_embed_snippet(widget, api_base))


@public_router.get("/{widget_id}", response_model=PublicWidgetOut)
def public_widget_config(
    widget_id: str,
    response: Response,
    origin: str | None = Header(default=None),
    db: Session = Depends(get_db),
):
    widget = db.get(Widget, widget_id)
    if not widget or widget.status != "ACTIVE":
        raise HTTPException(status_code=404, detail="Widget not found")
    if not origin_allowed(widget, origin):
        raise HTTPException(status_code=403, detail="Origin not allowed")

    response.headers["Cache-Control"] = PUBLIC_CACHE_CONTROL
    return PublicWidgetOut(
        id=widget.id,
        name=widget.name,
        type=widget.type,
        config=widget.config or {},
        bot_id=widget.bot_id,
        status=widget.status,
    )
