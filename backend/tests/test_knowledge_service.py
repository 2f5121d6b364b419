import pytest
from fastapi import HTTPException

from app.db.tenant_db import create_tenant_db
from app.knowledge.file_extract import UnsupportedFileType, extract_text_from_upload, html_to_text
from app.knowledge.router import create_faq, create_knowledge_base, create_text_document, query_knowledge_base
from app.knowledge.schemas import FAQCreate, KnowledgeBaseCreate, QueryRequest, TextDocumentCreate
from app.knowledge.service import chunk_text, ingest_document, match_faqs, search_chunks
from conftest import expired_trial, make_tenant


def test_chunk_text_overlaps_and_normalises_whitespace():
    text = "word " * 500
    chunks = chunk_text(text, max_chars=1000, overlap=200)
    assert len(chunks) == 3
    assert all(len(c) <= 1000 for c in chunks)
    assert chunk_text("  \n\t ") == []
    assert chunk_text("a\n\nb") == ["a b"]


def test_ingest_and_keyword_search_stay_inside_tenant(db, tdb):
    bot = tdb.create_bot(name="Helper")
    kb = tdb.create_knowledge_base(bot_id=bot.id, name="Policies")
    doc = ingest_document(
        tdb,
        knowledge_base_id=kb.id,
        title="Refunds",
        doc_type="TXT",
        text="Refunds are issued within 14 days of purchase.",
    )
    assert doc.status == "PROCESSED"
    assert tdb.knowledge_base_stats(kb.id)["chunks"] == 1

    other = make_tenant(db, "globex")
    other_tdb = create_tenant_db(db, other.id)
    other_bot = other_tdb.create_bot(name="Spy")
    other_kb = other_tdb.create_knowledge_base(bot_id=other_bot.id, name="Spy KB")
    ingest_document(other_tdb, knowledge_base_id=other_kb.id, title="x", doc_type="TXT", text="Refunds never happen.")

    hits = search_chunks(db, tdb.tenant_id, "How do refunds work?")
    assert [c.document_id for c in hits] == [doc.id]
    assert search_chunks(db, tdb.tenant_id, "refunds", knowledge_base_ids=[]) == []
    assert search_chunks(db, tdb.tenant_id, "   ") == []


def test_keyword_search_ranks_best_match_first_across_the_knowledge_base(db, tdb):
    bot = tdb.create_bot(name="Helper")
    kb = tdb.create_knowledge_base(bot_id=bot.id, name="Logistics")
    for i in range(30):
        ingest_document(
            tdb, knowledge_base_id=kb.id, title=f"Note {i}", doc_type="TXT", text=f"Shipping update number {i}."
        )
    best = ingest_document(
        tdb,
        knowledge_base_id=kb.id,
        title="Policy",
        doc_type="TXT",
        text="Our international shipping refund policy covers damaged parcels.",
    )

    hits = search_chunks(db, tdb.tenant_id, "international shipping refund policy", top_k=3)
    assert len(hits) == 3
    assert hits[0].document_id == best.id


def test_empty_document_is_marked_failed(tdb):
    bot = tdb.create_bot(name="Helper")
    kb = tdb.create_knowledge_base(bot_id=bot.id, name="Empty")
    doc = ingest_document(tdb, knowledge_base_id=kb.id, title="blank", doc_type="TXT", text="   ")
    assert doc.status == "FAILED"


def test_match_faqs_ranks_by_overlap(tdb):
    bot = tdb.create_bot(name="Helper")
    kb = tdb.create_knowledge_base(bot_id=bot.id, name="FAQ")
    shipping = tdb.create_faq(knowledge_base_id=kb.id, question="Do you ship abroad?", answer="We ship worldwide.")
    returns = tdb.create_faq(knowledge_base_id=kb.id, question="Can I return shipping boxes?", answer="Yes, returns are free.")

    ranked = match_faqs([returns, shipping], "ship abroad worldwide")
    assert ranked[0].id == shipping.id
    assert match_faqs([shipping], "the and for") == []


def test_html_and_text_extraction():
    html = "<html><head><style>p{}</style><script>x()</script></head><body><p>Hello</p> <b>world</b></body></html>"
    assert html_to_text(html) == "Hello world"
    assert extract_text_from_upload(filename="notes.md", content_type=None, raw=b"# Title") == ("MARKDOWN", "# Title")
    assert extract_text_from_upload(filename="page.htm", content_type=None, raw=b"<p>Hi</p>") == ("HTML", "Hi")
    with pytest.raises(UnsupportedFileType):
        extract_text_from_upload(filename="image.png", content_type="image/png", raw=b"\x89PNG")
    with pytest.raises(ValueError):
        extract_text_from_upload(filename="empty.txt", content_type="text/plain", raw=b"  ")


def test_knowledge_routes_create_document_faq_and_query(tdb, admin):
    bot = tdb.create_bot(name="Helper")
    kb = create_knowledge_base(KnowledgeBaseCreate(bot_id=bot.id, name="Docs"), user=admin, tdb=tdb, quota=None)

    doc = create_text_document(
        kb.id, TextDocumentCreate(title="Warranty", content="The warranty lasts two years."), tdb=tdb, user=admin
    )
    assert doc.type == "TXT"
    create_faq(kb.id, FAQCreate(question="How long is the warranty?", answer="Two years."), tdb=tdb, user=admin)

    result = query_knowledge_base(kb.id, QueryRequest(question="warranty length"), tdb=tdb, user=admin)
    assert result.results[0].document_id == doc.id
    assert result.faqs[0].answer == "Two years."


def test_knowledge_routes_reject_bad_type_and_foreign_bot(db, tenant, tdb, admin):
    bot = tdb.create_bot(name="Helper")
    kb = tdb.create_knowledge_base(bot_id=bot.id, name="Docs")
    with pytest.raises(HTTPException) as exc:
        create_text_document(kb.id, TextDocumentCreate(title="t", content="c", type="EXE"), tdb=tdb, user=admin)
    assert exc.value.status_code == 400

    other = make_tenant(db, "globex")
    other_bot = create_tenant_db(db, other.id).create_bot(name="Theirs")
    with pytest.raises(HTTPException) as exc:
        create_knowledge_base(KnowledgeBaseCreate(bot_id=other_bot.id, name="x"), user=admin, tdb=tdb, quota=None)
    assert exc.value.status_code == 404

    expired_trial(db, tenant)
    with pytest.raises(HTTPException) as exc:
        create_faq(kb.id, FAQCreate(question="q", answer="a"), tdb=tdb, user=admin)
    assert exc.value.status_code == 403
