from fastapi import APIRouter, Depends, HTTPException, Query

from app.auth.models import User
from app.auth.permissions import require_permission
from app.chat.schemas import MessageOut
from app.conversations.schemas import (
    ConversationDetailOut,
    ConversationListOut,
    ConversationOut,
    ConversationUpdate,
)
from app.db.tenant_db import TenantDB
from app.tenants.deps import get_tenant_db

router = APIRouter()


@router.get("", response_model=ConversationListOut)
def list_conversations(
    bot_id: str | None = None,
    status: str | None = None,
    user_id: str | None = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(require_permission("bot:read")),
):
    items = tdb.list_conversations(bot_id=bot_id, user_id=user_id, status=status, limit=limit, offset=offset)
    return ConversationListOut(
        items=[ConversationOut.model_validate(c) for c in items],
        total=tdb.count_conversations(bot_id=bot_id, user_id=user_id, status=status),
        limit=limit,
        offset=offset,
    )


@router.get("/{conversation_id}", response_model=ConversationDetailOut)
def get_conversation(
    conversation_id: str,
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(require_permission("bot:read")),
):
    conversation = tdb.get_conversation(conversation_id)
    if not conversation:
        raise HTTPException(status_code=404, detail="Conversation not found")
    out = ConversationDetailOut.model_validate(conversation)
    out.messages = [MessageOut.model_validate(m) for m in tdb.list_messages(conversation.id)]
    out.stats = tdb.conversation_stats(conversation.id) or {}
    return out


@router.patch("/{conversation_id}", response_model=ConversationOut)
def update_conversation(
    conversation_id: str,
    payload: ConversationUpdate,
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(require_permission("bot:update")),
):
    conversation = tdb.update_conversation(conversation_id, **payload.model_dump(exclude_unset=True))
    if not conversation:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return conversation


@router.post("/{conversation_id}/close", response_model=ConversationOut)
def close_conversation(
    conversation_id: str,
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(require_permission("bot:update")),
):
    conversation = tdb.close_conversation(conversation_id)
    if not conversation:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return conversation


@router.delete("/{conversation_id}")
def delete_conversation(
    conversation_id: str,
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(require_permission("bot:delete")),
):
    if not tdb.delete_conversation(conversation_id):
        raise HTTPException(status_code=404, detail="Conversation not found")
    return {"ok": True}
