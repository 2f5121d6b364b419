import logging
import re
from typing import Iterable, List

from sqlalchemy import case, or_, select
from sqlalchemy.orm import Session

from app.db.ids import make_id
from app.db.tenant_db import TenantDB
from app.knowledge.embeddings import embed_text, embeddings_enabled
from app.knowledge.models import FAQ, Chunk, Document

logger = logging.getLogger(__name__)

_WORD_RE = re.compile(r"\W+")
_STOPWORDS = {"the", "and", "for", "you", "your", "are", "what", "how", "can", "does", "with", "this", "that"}


def chunk_text(text: str, max_chars: int = 1000, overlap: int = 200) -> List[str]:
    """Whitespace-normalised fixed-size chunks with overlap."""
    cleaned = re.sub(r"\s+", " ", text or "").strip()
    if not cleaned:
        return []

    chunks: List[str] = []
    start = 0
    n = len(cleaned)
    while start < n:
        end = min(start + max_chars, n)
        piece = cleaned[start:end].strip()
        if piece:
            chunks.append(piece)
        if end == n:
            break
        start = max(0, end - overlap)
    return chunks


def _keywords(text: str) -> list[str]:
    words = [w.lower() for w in _WORD_RE.split(text or "") if len(w) >= 3]
    return [w for w in dict.fromkeys(words) if w not in _STOPWORDS]


def ingest_document(
    tdb: TenantDB,
    *,
    knowledge_base_id: str,
    title: str,
    doc_type: str,
    text: str,
    url: str | None = None,
) -> Document:
    """
    Stores the document, splits it into chunks and embeds each chunk when an
    embedding provider is configured. The first embedding failure switches
    the rest of the document to keyword-only retrieval.
    """
    doc = tdb.add_document(
        knowledge_base_id=knowledge_base_id,
        title=title,
        type=doc_type,
        content=text,
        url=url,
        size_bytes=len(text.encode("utf-8")),
    )
    db = tdb.db
    pieces = chunk_text(text)
    embedding_failed = not embeddings_enabled()

    try:
        for i, piece in enumerate(pieces):
            vec = None
            if not embedding_failed:
                try:
                    vec = embed_text(piece)
                except Exception:
                    logger.warning("Embedding failed for document=%s; continuing without vectors", doc.id)
                    embedding_failed = True
            db.add(
                Chunk(
                    id=make_id("c"),
                    tenant_id=tdb.tenant_id,
                    knowledge_base_id=knowledge_base_id,
                    document_id=doc.id,
                    chunk_index=i,
                    text=piece,
                    embedding=vec,
                )
            )
        doc.status = "PROCESSED" if pieces else "FAILED"
        doc.error = None if pieces else "No text content"
        db.commit()
    except Exception as exc:
        db.rollback()
        logger.exception("Ingestion failed for document=%s", doc.id)
        tdb.update_document(doc.id, status="FAILED", error=str(exc)[:500])
        raise
    db.refresh(doc)
    logger.info("Ingested document=%s kb=%s chunks=%d", doc.id, knowledge_base_id, len(pieces))
    return doc


def _keyword_search_chunks(
    db: Session,
    tenant_id: str,
    question: str,
    top_k: int,
    knowledge_base_ids: list[str] | None,
) -> list[Chunk]:
    keywords = _keywords(question) or [question.strip()]
    stmt = select(Chunk).where(Chunk.tenant_id == tenant_id)
    if knowledge_base_ids is not None:
        stmt = stmt.where(Chunk.knowledge_base_id.in_(knowledge_base_ids))
    conditions = [Chunk.text.ilike(f"%{kw}%") for kw in keywords[:8]]
    # rank by how many keywords each chunk contains across the whole tenant
    score = case((conditions[0], 1), else_=0)
    for cond in conditions[1:]:
        score = score + case((cond, 1), else_=0)
    stmt = stmt.where(or_(*conditions)).order_by(score.desc(), Chunk.document_id, Chunk.chunk_index)
    return list(db.execute(stmt.limit(top_k)).scalars().all())


def search_chunks(
    db: Session,
    tenant_id: str,
    question: str,
    top_k: int = 5,
    knowledge_base_ids: Iterable[str] | None = None,
) -> list[Chunk]:
    """
    Semantic retrieval (pgvector cosine distance) when embeddings are
    available, keyword ILIKE otherwise. Always filtered to ``tenant_id``.
    """
    q = (question or "").strip()
    if not q:
        return []
    kb_ids = list(knowledge_base_ids) if knowledge_base_ids is not None else None
    if kb_ids == []:
        return []

    if not embeddings_enabled():
        return _keyword_search_chunks(db, tenant_id, q, top_k, kb_ids)

    try:
        qvec = embed_text(q)
    except Exception:
        logger.warning("Query embedding failed for tenant=%s; using keyword search", tenant_id)
        return _keyword_search_chunks(db, tenant_id, q, top_k, kb_ids)

    stmt = select(Chunk).where(Chunk.tenant_id == tenant_id, Chunk.embedding.is_not(None))
    if kb_ids is not None:
        stmt = stmt.where(Chunk.knowledge_base_id.in_(kb_ids))
    rows = db.execute(stmt.order_by(Chunk.embedding.cosine_distance(qvec)).limit(top_k)).scalars().all()
    return list(rows) or _keyword_search_chunks(db, tenant_id, q, top_k, kb_ids)


def match_faqs(faqs: Iterable[FAQ], question: str, top_k: int = 3) -> list[FAQ]:
    """Rank FAQs by keyword overlap with the question."""
    wanted = set(_keywords(question))
    if not wanted:
        return []
    scored = []
    for faq in faqs:
        overlap = len(wanted & set(_keywords(f"{faq.question} {faq.answer}")))
        if overlap:
            scored.append((overlap, faq))
    scored.sort(key=lambda pair: pair[0], reverse=True)
    return [faq for _, faq in scored[:top_k]]
