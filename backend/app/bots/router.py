import logging

from fastapi import APIRouter, Depends, HTTPException

from app.auth.models import User
from app.auth.permissions import require_permission
from app.billing.guards import ensure_paid_action, ensure_plan_allows
from app.bots.schemas import BotCreate, BotDetailOut, BotOut, BotUpdate
from app.core.config import settings
from app.db.tenant_db import TenantDB
from app.tenants.deps import get_tenant_db

logger = logging.getLogger(__name__)

router = APIRouter()


def _out(bot, conversation_count: int = 0) -> BotOut:
    out = BotOut.model_validate(bot)
    out.conversation_count = conversation_count
    return out


@router.get("", response_model=list[BotOut])
def list_bots(
    status: str | None = None,
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(require_permission("bot:read")),
):
    counts = tdb.bot_conversation_counts()
    return [_out(b, counts.get(b.id, 0)) for b in tdb.list_bots(status=status)]


@router.post("", response_model=BotOut, status_code=201)
def create_bot(
    payload: BotCreate,
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(require_permission("bot:create")),
):
    ensure_paid_action(tdb.db, tdb.tenant_id)
    ensure_plan_allows(tdb.db, tdb.tenant_id, "bots")

    fields = payload.model_dump()
    fields["model"] = fields.get("model") or settings.CHAT_MODEL
    bot = tdb.create_bot(**fields)
    logger.info("Bot created tenant=%s bot=%s by=%s", tdb.tenant_id, bot.id, user.id)
    return _out(bot)


@router.get("/{bot_id}", response_model=BotDetailOut)
def get_bot(
    bot_id: str,
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(require_permission("bot:read")),
):
    bot = tdb.get_bot(bot_id)
    if not bot:
        raise HTTPException(status_code=404, detail="Bot not found")
    out = BotDetailOut.model_validate(bot)
    out.conversation_count = tdb.count_conversations(bot_id=bot.id)
    out.knowledge_bases = [
        {"id": kb.id, "name": kb.name, **tdb.knowledge_base_stats(kb.id)}
        for kb in tdb.list_knowledge_bases(bot_id=bot.id)
    ]
    out.widgets = [
        {"id": w.id, "name": w.name, "type": w.type, "status": w.status} for w in tdb.list_widgets(bot_id=bot.id)
    ]
    return out


@router.put("/{bot_id}", response_model=BotOut)
def update_bot(
    bot_id: str,
    payload: BotUpdate,
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(require_permission("bot:update")),
):
    if not tdb.get_bot(bot_id):
        raise HTTPException(status_code=404, detail="Bot not found")
    ensure_paid_action(tdb.db, tdb.tenant_id)
    bot = tdb.update_bot(bot_id, **payload.model_dump(exclude_unset=True))
    return _out(bot, tdb.count_conversations(bot_id=bot.id))


@router.delete("/{bot_id}")
def delete_bot(
    bot_id: str,
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(require_permission("bot:delete")),
):
    if not tdb.delete_bot(bot_id):
        raise HTTPException(status_code=404, detail="Bot not found")
    logger.info("Bot deleted tenant=%s bot=%s by=%s", tdb.tenant_id, bot_id, user.id)
    return {"ok": True}
