import logging
import time

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from app.auth.models import User
from app.auth.permissions import require_permission
from app.billing.guards import ensure_plan_allows
from app.billing.trial import can_perform_paid_action
from app.bots.models import Bot
from app.chat.llm import LLMUnavailableError
from app.chat.schemas import (
    PUBLIC_MESSAGE_MAX_CHARS,
    ChatRequest,
    ChatResponse,
    ConversationHistoryOut,
    MessageOut,
)
from app.chat.service import answer_message
from app.db.session import get_db
from app.db.tenant_db import TenantDB, create_tenant_db
from app.system.rate_limit import check_public_chat_rate
from app.system.usage_service import record_api_usage
from app.tenants.deps import get_tenant_db
from app.tenants.models import Tenant

logger = logging.getLogger(__name__)

router = APIRouter()
public_router = APIRouter()


def _validate_message(text: str) -> str:
    text = (text or "").strip()
    if not text:
        raise HTTPException(status_code=400, detail="Message is required")
    if len(text) > PUBLIC_MESSAGE_MAX_CHARS:
        raise HTTPException(
            status_code=400,
            detail=f"Message too long (max {PUBLIC_MESSAGE_MAX_CHARS} characters)",
        )
    return text


def _run_turn(tdb: TenantDB, bot: Bot, conversation, text: str, *, endpoint: str, user_id: str | None):
    started = time.perf_counter()
    try:
        turn = answer_message(tdb, bot, conversation, text)
    except LLMUnavailableError:
        logger.exception("Model provider failed tenant=%s bot=%s", tdb.tenant_id, bot.id)
        record_api_usage(
            tdb.db,
            tenant_id=tdb.tenant_id,
            endpoint=endpoint,
            status_code=503,
            response_time_ms=int((time.perf_counter() - started) * 1000),
            user_id=user_id,
            bot_id=bot.id,
            conversation_id=conversation.id,
        )
        raise HTTPException(status_code=503, detail="AI service temporarily unavailable")

    record_api_usage(
        tdb.db,
        tenant_id=tdb.tenant_id,
        endpoint=endpoint,
        status_code=200,
        response_time_ms=int((time.perf_counter() - started) * 1000),
        tokens_used=turn.metadata.get("tokens", 0),
        model=turn.metadata.get("model"),
        user_id=user_id,
        bot_id=bot.id,
        conversation_id=conversation.id,
    )
    return ChatResponse(
        conversation_id=conversation.id,
        message=turn.assistant_message.content,
        sources=turn.sources,
        metadata=turn.metadata,
    )


@public_router.post("", response_model=ChatResponse)
def public_chat(payload: ChatRequest, request: Request, db: Session = Depends(get_db)):
    text = _validate_message(payload.message)

    bot = db.get(Bot, payload.bot_id)
    if not bot or bot.status != "ACTIVE":
        raise HTTPException(status_code=404, detail="Bot not found or inactive")
    tenant = db.get(Tenant, bot.tenant_id)
    if not tenant or tenant.status != "ACTIVE":
        raise HTTPException(status_code=503, detail="Bot service temporarily unavailable")

    check = can_perform_paid_action(db, tenant.id)
    if not check.allowed:
        raise HTTPException(status_code=403, detail=check.reason)
    ensure_plan_allows(db, tenant.id, "api_calls", status_code=429)

    client_ip = request.client.host if request.client else None
    ok, reason = check_public_chat_rate(bot_id=bot.id, client_ip=client_ip)
    if not ok:
        raise HTTPException(status_code=429, detail=reason)

    tdb = create_tenant_db(db, tenant.id)
    if payload.conversation_id:
        conversation = tdb.get_conversation(payload.conversation_id)
        if not conversation or conversation.bot_id != bot.id:
            raise HTTPException(status_code=404, detail="Conversation not found")
        if conversation.status != "ACTIVE":
            raise HTTPException(status_code=400, detail="Conversation is closed")
    else:
        ensure_plan_allows(db, tenant.id, "conversations", status_code=429)
        conversation = tdb.create_conversation(
            bot_id=bot.id,
            session_id=payload.session_id,
            channel="public",
            metadata={
                "user_agent": request.headers.get("user-agent"),
                "origin": request.headers.get("origin"),
            },
        )

    return _run_turn(tdb, bot, conversation, text, endpoint="/api/v1/public/chat", user_id=None)


@public_router.get("", response_model=ConversationHistoryOut)
def public_chat_history(
    conversation_id: str = Query(min_length=1, max_length=64),
    bot_id: str = Query(min_length=1, max_length=64),
    db: Session = Depends(get_db),
):
    bot = db.get(Bot, bot_id)
    if not bot or bot.status != "ACTIVE":
        raise HTTPException(status_code=404, detail="Bot not found or inactive")
    tdb = create_tenant_db(db, bot.tenant_id)
    conversation = tdb.get_conversation(conversation_id)
    if not conversation or conversation.bot_id != bot.id:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return ConversationHistoryOut(
        conversation_id=conversation.id,
        bot_id=bot.id,
        status=conversation.status,
        messages=[MessageOut.model_validate(m) for m in tdb.list_messages(conversation.id)],
    )


@router.post("", response_model=ChatResponse)
def dashboard_chat(
    payload: ChatRequest,
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(require_permission("bot:read")),
):
    """Chat with one of the tenant's bots from the dashboard."""
    text = _validate_message(payload.message)
    bot = tdb.get_bot(payload.bot_id)
    if not bot:
        raise HTTPException(status_code=404, detail="Bot not found")

    if payload.conversation_id:
        conversation = tdb.get_conversation(payload.conversation_id)
        if not conversation or conversation.bot_id != bot.id:
            raise HTTPException(status_code=404, detail="Conversation not found")
    else:
        conversation = tdb.create_conversation(bot_id=bot.id, user_id=user.id, channel="dashboard")

    return _run_turn(tdb, bot, conversation, text, endpoint="/api/v1/chat", user_id=user.id)
