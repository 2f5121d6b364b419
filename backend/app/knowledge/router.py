import logging
import math

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile

from app.auth.models import User
from app.auth.permissions import require_permission
from app.billing.guards import ensure_paid_action, ensure_plan_allows, enforce_plan_limit, require_paid_action
from app.billing.limits import PlanCheckResult
from app.db.tenant_db import TenantDB, TenantScopeError
from app.knowledge.file_extract import MAX_UPLOAD_BYTES, UnsupportedFileType, extract_text_from_upload
from app.knowledge.models import DOCUMENT_TYPES
from app.knowledge.schemas import (
    DocumentOut,
    FAQCreate,
    FAQOut,
    FAQUpdate,
    KnowledgeBaseCreate,
    KnowledgeBaseOut,
    KnowledgeBaseUpdate,
    QueryRequest,
    QueryResponse,
    QueryResultChunk,
    TextDocumentCreate,
)
from app.knowledge.service import ingest_document, match_faqs, search_chunks
from app.tenants.deps import get_tenant_db

logger = logging.getLogger(__name__)

router = APIRouter()

BYTES_PER_MB = 1024 * 1024


def _kb_or_404(tdb: TenantDB, kb_id: str):
    kb = tdb.get_knowledge_base(kb_id)
    if not kb:
        raise HTTPException(status_code=404, detail="Knowledge base not found")
    return kb


def _kb_out(tdb: TenantDB, kb) -> KnowledgeBaseOut:
    out = KnowledgeBaseOut.model_validate(kb)
    out.stats = tdb.knowledge_base_stats(kb.id)
    return out


def _ensure_document_quota(tdb: TenantDB, size_bytes: int) -> None:
    ensure_paid_action(tdb.db, tdb.tenant_id)
    ensure_plan_allows(tdb.db, tdb.tenant_id, "documents")
    ensure_plan_allows(tdb.db, tdb.tenant_id, "storage", increment=math.ceil(size_bytes / BYTES_PER_MB))


@router.get("", response_model=list[KnowledgeBaseOut])
def list_knowledge_bases(
    bot_id: str | None = None,
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(require_permission("knowledge:read")),
):
    return [_kb_out(tdb, kb) for kb in tdb.list_knowledge_bases(bot_id=bot_id)]


@router.post("", response_model=KnowledgeBaseOut, status_code=201)
def create_knowledge_base(
    payload: KnowledgeBaseCreate,
    user: User = Depends(require_permission("knowledge:create")),
    tdb: TenantDB = Depends(require_paid_action),
    quota: PlanCheckResult = Depends(enforce_plan_limit("knowledge_bases")),
):
    try:
        kb = tdb.create_knowledge_base(bot_id=payload.bot_id, name=payload.name, description=payload.description)
    except TenantScopeError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return _kb_out(tdb, kb)


@router.get("/{kb_id}", response_model=KnowledgeBaseOut)
def get_knowledge_base(
    kb_id: str,
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(require_permission("knowledge:read")),
):
    return _kb_out(tdb, _kb_or_404(tdb, kb_id))


@router.put("/{kb_id}", response_model=KnowledgeBaseOut)
def update_knowledge_base(
    kb_id: str,
    payload: KnowledgeBaseUpdate,
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(require_permission("knowledge:update")),
):
    _kb_or_404(tdb, kb_id)
    kb = tdb.update_knowledge_base(kb_id, **payload.model_dump(exclude_unset=True))
    return _kb_out(tdb, kb)


@router.delete("/{kb_id}")
def delete_knowledge_base(
    kb_id: str,
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(require_permission("knowledge:delete")),
):
    if not tdb.delete_knowledge_base(kb_id):
        raise HTTPException(status_code=404, detail="Knowledge base not found")
    return {"ok": True}


@router.get("/{kb_id}/documents", response_model=list[DocumentOut])
def list_documents(
    kb_id: str,
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(require_permission("knowledge:read")),
):
    _kb_or_404(tdb, kb_id)
    return tdb.list_documents(kb_id)


@router.post("/{kb_id}/documents", response_model=DocumentOut, status_code=201)
async def upload_document(
    kb_id: str,
    file: UploadFile = File(...),
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(require_permission("knowledge:create")),
):
    _kb_or_404(tdb, kb_id)
    raw = await file.read()
    if not raw:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")
    if len(raw) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail="File too large (max 10 MB)")

    try:
        doc_type, text = extract_text_from_upload(filename=file.filename or "", content_type=file.content_type, raw=raw)
    except UnsupportedFileType as e:
        raise HTTPException(status_code=415, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    _ensure_document_quota(tdb, len(text.encode("utf-8")))
    return ingest_document(
        tdb,
        knowledge_base_id=kb_id,
        title=file.filename or "Untitled document",
        doc_type=doc_type,
        text=text,
    )


@router.post("/{kb_id}/documents/text", response_model=DocumentOut, status_code=201)
def create_text_document(
    kb_id: str,
    payload: TextDocumentCreate,
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(require_permission("knowledge:create")),
):
    _kb_or_404(tdb, kb_id)
    doc_type = payload.type.upper()
    if doc_type not in DOCUMENT_TYPES:
        raise HTTPException(status_code=400, detail=f"Unsupported document type: {payload.type}")
    _ensure_document_quota(tdb, len(payload.content.encode("utf-8")))
    return ingest_document(
        tdb,
        knowledge_base_id=kb_id,
        title=payload.title,
        doc_type=doc_type,
        text=payload.content,
        url=payload.url,
    )


@router.delete("/{kb_id}/documents/{doc_id}")
def delete_document(
    kb_id: str,
    doc_id: str,
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(require_permission("knowledge:delete")),
):
    doc = tdb.get_document(doc_id)
    if not doc or doc.knowledge_base_id != kb_id:
        raise HTTPException(status_code=404, detail="Document not found")
    tdb.delete_document(doc_id)
    return {"ok": True}


@router.get("/{kb_id}/faqs", response_model=list[FAQOut])
def list_faqs(
    kb_id: str,
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(require_permission("knowledge:read")),
):
    _kb_or_404(tdb, kb_id)
    return tdb.list_faqs(kb_id=kb_id)


@router.post("/{kb_id}/faqs", response_model=FAQOut, status_code=201)
def create_faq(
    kb_id: str,
    payload: FAQCreate,
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(require_permission("knowledge:create")),
):
    _kb_or_404(tdb, kb_id)
    ensure_paid_action(tdb.db, tdb.tenant_id)
    return tdb.create_faq(knowledge_base_id=kb_id, **payload.model_dump())


@router.put("/{kb_id}/faqs/{faq_id}", response_model=FAQOut)
def update_faq(
    kb_id: str,
    faq_id: str,
    payload: FAQUpdate,
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(require_permission("knowledge:update")),
):
    faq = tdb.get_faq(faq_id)
    if not faq or faq.knowledge_base_id != kb_id:
        raise HTTPException(status_code=404, detail="FAQ not found")
    return tdb.update_faq(faq_id, **payload.model_dump(exclude_unset=True))


@router.delete("/{kb_id}/faqs/{faq_id}")
def delete_faq(
    kb_id: str,
    faq_id: str,
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(require_permission("knowledge:delete")),
):
    faq = tdb.get_faq(faq_id)
    if not faq or faq.knowledge_base_id != kb_id:
        raise HTTPException(status_code=404, detail="FAQ not found")
    tdb.delete_faq(faq_id)
    return {"ok": True}


@router.post("/{kb_id}/query", response_model=QueryResponse)
def query_knowledge_base(
    kb_id: str,
    payload: QueryRequest,
    tdb: TenantDB = Depends(get_tenant_db),
    user: User = Depends(require_permission("knowledge:read")),
):
    _kb_or_404(tdb, kb_id)
    chunks = search_chunks(tdb.db, tdb.tenant_id, payload.question, top_k=payload.top_k, knowledge_base_ids=[kb_id])
    faqs = match_faqs(tdb.list_faqs(kb_id=kb_id), payload.question)
    return QueryResponse(
        knowledge_base_id=kb_id,
        question=payload.question,
        results=[
            QueryResultChunk(document_id=c.document_id, chunk_id=c.id, chunk_index=c.chunk_index, text=c.text)
            for c in chunks
        ],
        faqs=[FAQOut.model_validate(f) for f in faqs],
    )
