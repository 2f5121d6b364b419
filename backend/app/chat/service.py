import logging
import time
from dataclasses import dataclass, field

from app.bots.models import Bot
from app.chat.llm import generate_reply, llm_enabled
from app.chat.models import Conversation, Message
from app.chat.prompting import build_messages, estimate_tokens, fallback_reply
from app.db.tenant_db import TenantDB
from app.knowledge.service import match_faqs, search_chunks

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 20
TOP_K_CHUNKS = 4
FALLBACK_MODEL = "knowledge-fallback"


@dataclass
class ChatTurn:
    conversation: Conversation
    user_message: Message
    assistant_message: Message
    sources: list[dict] = field(default_factory=list)
    metadata: dict = field(default_factory=dict)


def answer_message(tdb: TenantDB, bot: Bot, conversation: Conversation, text: str) -> ChatTurn:
    """
    Runs one chat turn: retrieval from the bot's knowledge bases, prompt
    assembly, model call and persistence of both messages. Raises
    ``LLMUnavailableError`` when the provider fails; the user message is
    kept in that case.
    """
    kb_ids = [kb.id for kb in tdb.list_knowledge_bases(bot_id=bot.id)]
    chunks = search_chunks(tdb.db, tdb.tenant_id, text, top_k=TOP_K_CHUNKS, knowledge_base_ids=kb_ids)
    faqs = match_faqs(tdb.list_faqs(kb_ids=kb_ids), text) if kb_ids else []
    history = tdb.list_messages(conversation.id, limit=HISTORY_LIMIT)

    user_message = tdb.add_message(conversation.id, role="USER", content=text, tokens=estimate_tokens(text))

    started = time.perf_counter()
    if llm_enabled():
        result = generate_reply(
            build_messages(bot, text, history, chunks, faqs),
            model=bot.model,
            temperature=bot.temperature,
            max_tokens=bot.max_tokens,
        )
        content, model = result.content, result.model
        tokens = result.completion_tokens or estimate_tokens(content)
        total_tokens = result.total_tokens or tokens
    else:
        content, model = fallback_reply(bot, chunks, faqs), FALLBACK_MODEL
        tokens = total_tokens = estimate_tokens(content)
    elapsed_ms = int((time.perf_counter() - started) * 1000)

    sources = [
        {"type": "faq", "faq_id": f.id, "question": f.question} for f in faqs
    ] + [
        {"type": "document", "document_id": c.document_id, "chunk_id": c.id, "snippet": c.text[:200]}
        for c in chunks
    ]
    assistant_message = tdb.add_message(
        conversation.id,
        role="ASSISTANT",
        content=content,
        tokens=tokens,
        model=model,
        response_time_ms=elapsed_ms,
        metadata={"sources": sources},
    )
    if not conversation.title:
        tdb.update_conversation(conversation.id, title=text[:60])

    logger.info(
        "Chat turn tenant=%s bot=%s conversation=%s model=%s chunks=%d faqs=%d ms=%d",
        tdb.tenant_id,
        bot.id,
        conversation.id,
        model,
        len(chunks),
        len(faqs),
        elapsed_ms,
    )
    return ChatTurn(
        conversation=conversation,
        user_message=user_message,
        assistant_message=assistant_message,
        sources=sources,
        metadata={
            "model": model,
            "tokens": total_tokens,
            "response_time_ms": elapsed_ms,
            "knowledge_used": bool(chunks or faqs),
        },
    )
