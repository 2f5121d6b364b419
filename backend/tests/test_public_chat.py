import pytest
from fastapi import HTTPException

from app.chat.llm import LLMResult, LLMUnavailableError
from app.chat.router import dashboard_chat, public_chat, public_chat_history
from app.chat.schemas import ChatRequest
from app.system.rate_limit import PUBLIC_CHAT_MAX_PER_WINDOW, public_chat_limiter
from app.system.usage_models import ApiUsageEvent
from conftest import expired_trial, fake_request


@pytest.fixture()
def bot(tdb):
    bot = tdb.create_bot(name="Front desk")
    kb = tdb.create_knowledge_base(bot_id=bot.id, name="Hours")
    tdb.create_faq(
        knowledge_base_id=kb.id,
        question="What are your opening hours?",
        answer="We are open 9am to 5pm, Monday to Friday.",
    )
    return bot


def _ask(db, bot, message="When are your opening hours?", request=None, **fields):
    return public_chat(ChatRequest(message=message, bot_id=bot.id, **fields), request or fake_request(), db=db)


def test_public_chat_answers_from_faq_without_model_key(db, tdb, bot):
    resp = _ask(db, bot, session_id="visitor-1")

    assert resp.message == "We are open 9am to 5pm, Monday to Friday."
    assert resp.sources[0]["type"] == "faq"
    assert resp.metadata["model"] == "knowledge-fallback"
    assert resp.metadata["knowledge_used"] is True

    conversation = tdb.get_conversation(resp.conversation_id)
    assert conversation.channel == "public"
    assert conversation.session_id == "visitor-1"
    assert conversation.message_count == 2
    assert conversation.title == "When are your opening hours?"

    usage = db.query(ApiUsageEvent).filter_by(tenant_id=tdb.tenant_id).one()
    assert usage.status_code == 200
    assert usage.endpoint == "/api/v1/public/chat"


def test_follow_up_reuses_conversation_and_history_lists_messages(db, bot):
    first = _ask(db, bot)
    second = _ask(db, bot, message="Thanks!", conversation_id=first.conversation_id)
    assert second.conversation_id == first.conversation_id

    history = public_chat_history(conversation_id=first.conversation_id, bot_id=bot.id, db=db)
    assert [m.role for m in history.messages] == ["USER", "ASSISTANT", "USER", "ASSISTANT"]


def test_conversation_must_belong_to_bot_and_be_open(db, tdb, bot):
    other_bot = tdb.create_bot(name="Other")
    foreign = tdb.create_conversation(bot_id=other_bot.id)
    with pytest.raises(HTTPException) as exc:
        _ask(db, bot, conversation_id=foreign.id)
    assert exc.value.status_code == 404

    closed = tdb.create_conversation(bot_id=bot.id)
    tdb.close_conversation(closed.id)
    with pytest.raises(HTTPException) as exc:
        _ask(db, bot, conversation_id=closed.id)
    assert exc.value.status_code == 400


def test_inactive_bot_and_suspended_tenant(db, tenant, tdb, bot):
    tdb.update_bot(bot.id, status="INACTIVE")
    with pytest.raises(HTTPException) as exc:
        _ask(db, bot)
    assert exc.value.status_code == 404

    tdb.update_bot(bot.id, status="ACTIVE")
    tenant.status = "SUSPENDED"
    db.commit()
    with pytest.raises(HTTPException) as exc:
        _ask(db, bot)
    assert exc.value.status_code == 503


def test_expired_trial_refuses_public_chat(db, tenant, bot):
    expired_trial(db, tenant)
    with pytest.raises(HTTPException) as exc:
        _ask(db, bot)
    assert exc.value.status_code == 403


def test_message_validation(db, bot):
    with pytest.raises(HTTPException) as exc:
        _ask(db, bot, message="x" * 1001)
    assert exc.value.status_code == 400
    with pytest.raises(HTTPException) as exc:
        _ask(db, bot, message="   ")
    assert exc.value.detail == "Message is required"


def test_rate_limit_per_bot_and_client(db, bot, monkeypatch):
    monkeypatch.setattr(public_chat_limiter, "max_hits", 2)
    _ask(db, bot, session_id="s1")
    _ask(db, bot, session_id="s1")
    with pytest.raises(HTTPException) as exc:
        _ask(db, bot, session_id="s1")
    assert exc.value.status_code == 429
    # a new session id from the same address shares the window
    with pytest.raises(HTTPException):
        _ask(db, bot, session_id="s2")
    # a different visitor has its own window
    assert _ask(db, bot, session_id="s3", request=fake_request(host="198.51.100.20")).message


def test_rotating_session_ids_do_not_lift_the_hourly_limit(db, bot):
    for i in range(PUBLIC_CHAT_MAX_PER_WINDOW):
        _ask(db, bot, session_id=f"s{i}")
    with pytest.raises(HTTPException) as exc:
        _ask(db, bot, session_id="one-more")
    assert exc.value.status_code == 429


def test_provider_failure_maps_to_503_and_keeps_user_message(db, tdb, bot, monkeypatch):
    def boom(*args, **kwargs):
        raise LLMUnavailableError("upstream timeout")

    monkeypatch.setattr("app.chat.service.llm_enabled", lambda: True)
    monkeypatch.setattr("app.chat.service.generate_reply", boom)

    with pytest.raises(HTTPException) as exc:
        _ask(db, bot)
    assert exc.value.status_code == 503

    conversation = tdb.list_conversations(bot_id=bot.id)[0]
    assert [m.role for m in tdb.list_messages(conversation.id)] == ["USER"]
    assert db.query(ApiUsageEvent).one().status_code == 503


def test_model_reply_is_persisted_with_usage(db, tdb, bot, monkeypatch):
    captured = {}

    def fake_generate(messages, **kwargs):
        captured["messages"] = messages
        captured.update(kwargs)
        return LLMResult(content="Open 9 to 5.", model="gpt-test", completion_tokens=4, total_tokens=120)

    monkeypatch.setattr("app.chat.service.llm_enabled", lambda: True)
    monkeypatch.setattr("app.chat.service.generate_reply", fake_generate)

    resp = _ask(db, bot)
    assert resp.message == "Open 9 to 5."
    assert resp.metadata["tokens"] == 120
    assert captured["messages"][0]["role"] == "system"
    assert "opening hours" in captured["messages"][0]["content"]
    assert captured["messages"][-1] == {"role": "user", "content": "When are your opening hours?"}
    assert db.query(ApiUsageEvent).one().tokens_used == 120


def test_dashboard_chat_links_conversation_to_user(tdb, admin, bot):
    resp = dashboard_chat(ChatRequest(message="opening hours?", bot_id=bot.id), tdb=tdb, user=admin)
    conversation = tdb.get_conversation(resp.conversation_id)
    assert conversation.user_id == admin.id
    assert conversation.channel == "dashboard"
