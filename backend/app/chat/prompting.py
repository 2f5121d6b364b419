import math
from typing import Sequence

from app.bots.models import Bot
from app.knowledge.models import FAQ, Chunk

CHARS_PER_TOKEN = 4
CONTEXT_WINDOW_TOKENS = 16385
RESERVED_TOKENS = 2000
MAX_SYSTEM_PROMPT_TOKENS = 4000

DEFAULT_FALLBACK = (
    "I couldn't find that in the available information yet. "
    "Could you rephrase your question or ask something else?"
)

_ROLE_MAP = {"USER": "user", "ASSISTANT": "assistant", "SYSTEM": "system"}


def estimate_tokens(text: str | None) -> int:
    return math.ceil(len(text or "") / CHARS_PER_TOKEN)


def truncate_to_tokens(text: str, max_tokens: int) -> str:
    limit = max(0, max_tokens) * CHARS_PER_TOKEN
    if len(text) <= limit:
        return text
    return text[: max(0, limit - 3)] + "..."


def build_system_prompt(bot: Bot, chunks: Sequence[Chunk] = (), faqs: Sequence[FAQ] = ()) -> str:
    config = bot.config or {}
    parts = [config.get("system_prompt") or f"You are {bot.name}, a helpful assistant."]
    if bot.personality:
        parts.append(f"Personality: {bot.personality}")
    parts.append(
        "Answer using the knowledge below when it is relevant. "
        "If the answer is not in the knowledge, say so briefly instead of guessing."
    )
    if faqs:
        parts.append("Frequently asked questions:\n" + "\n".join(f"Q: {f.question}\nA: {f.answer}" for f in faqs))
    if chunks:
        parts.append("Knowledge:\n" + "\n\n---\n\n".join(c.text for c in chunks))
    return truncate_to_tokens("\n\n".join(parts), MAX_SYSTEM_PROMPT_TOKENS)


def fit_history(history: Sequence[dict], budget_tokens: int) -> list[dict]:
    """Keep the most recent turns that fit ``budget_tokens``, oldest first."""
    kept: list[dict] = []
    used = 0
    for msg in reversed(history):
        cost = estimate_tokens(msg["content"])
        if used + cost > budget_tokens:
            break
        kept.append(msg)
        used += cost
    kept.reverse()
    return kept


def build_messages(
    bot: Bot,
    question: str,
    history_messages: Sequence = (),
    chunks: Sequence[Chunk] = (),
    faqs: Sequence[FAQ] = (),
) -> list[dict]:
    system_prompt = build_system_prompt(bot, chunks, faqs)
    history = [
        {"role": _ROLE_MAP.get(m.role, "user"), "content": m.content}
        for m in history_messages
        if m.role in ("USER", "ASSISTANT")
    ]
    completion_budget = min(bot.max_tokens or 1000, RESERVED_TOKENS)
    budget = (
        CONTEXT_WINDOW_TOKENS
        - RESERVED_TOKENS
        - completion_budget
        - estimate_tokens(system_prompt)
        - estimate_tokens(question)
    )
    return [
        {"role": "system", "content": system_prompt},
        *fit_history(history, max(0, budget)),
        {"role": "user", "content": question},
    ]


def fallback_reply(bot: Bot, chunks: Sequence[Chunk] = (), faqs: Sequence[FAQ] = ()) -> str:
    """Deterministic reply used when no language model provider is configured."""
    if faqs:
        return faqs[0].answer
    if chunks:
        snippet = chunks[0].text.strip()
        if len(snippet) > 400:
            snippet = snippet[:397].rsplit(" ", 1)[0] + "..."
        return f"Here is what I found: {snippet}"
    return (bot.config or {}).get("fallback_message") or DEFAULT_FALLBACK
