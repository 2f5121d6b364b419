from dataclasses import dataclass

from openai import APIConnectionError, APIError, APITimeoutError, OpenAI, RateLimitError

from app.core.config import settings

_client: OpenAI | None = None


class LLMUnavailableError(RuntimeError):
    pass


@dataclass(frozen=True)
class LLMResult:
    content: str
    model: str
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None


def llm_enabled() -> bool:
    return bool(settings.OPENAI_API_KEY)


def _get_client() -> OpenAI:
    global _client
    if _client is None:
        _client = OpenAI(api_key=settings.OPENAI_API_KEY)
    return _client


def generate_reply(
    messages: list[dict],
    *,
    model: str | None = None,
    temperature: float = 0.7,
    max_tokens: int = 1000,
) -> LLMResult:
    model = model or settings.CHAT_MODEL
    try:
        resp = _get_client().chat.completions.create(
            model=model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
        )
    except (RateLimitError, APIConnectionError, APITimeoutError, APIError) as exc:
        raise LLMUnavailableError(str(exc)) from exc

    usage = getattr(resp, "usage", None)
    return LLMResult(
        content=resp.choices[0].message.content or "",
        model=getattr(resp, "model", None) or model,
        prompt_tokens=getattr(usage, "prompt_tokens", None) if usage else None,
        completion_tokens=getattr(usage, "completion_tokens", None) if usage else None,
        total_tokens=getattr(usage, "total_tokens", None) if usage else None,
    )
