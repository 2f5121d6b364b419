from typing import List

from openai import OpenAI

from app.core.config import settings

_client: OpenAI | None = None


def embeddings_enabled() -> bool:
    return bool(settings.OPENAI_API_KEY)


def _get_client() -> OpenAI:
    global _client
    if _client is None:
        _client = OpenAI(api_key=settings.OPENAI_API_KEY)
    return _client


def embed_text(text: str) -> List[float]:
    resp = _get_client().embeddings.create(
        model=settings.EMBEDDING_MODEL,
        input=text,
    )
    return resp.data[0].embedding
