import pytest

from app.chat.models import Message
from app.db.tenant_db import TenantDB, TenantScopeError, create_tenant_db
from app.knowledge.models import FAQ
from conftest import make_tenant, make_user


@pytest.fixture()
def two_tenants(db):
    acme = make_tenant(db, "acme")
    globex = make_tenant(db, "globex")
    return create_tenant_db(db, acme.id), create_tenant_db(db, globex.id)


def test_tenant_id_is_required(db):
    with pytest.raises(ValueError):
        TenantDB(db, "")


def test_foreign_rows_are_invisible(two_tenants):
    acme, globex = two_tenants
    bot = acme.create_bot(name="Helper")
    kb = acme.create_knowledge_base(bot_id=bot.id, name="Docs")
    widget = acme.create_widget(bot_id=bot.id, name="Site")

    assert globex.get_bot(bot.id) is None
    assert globex.get_knowledge_base(kb.id) is None
    assert globex.get_widget(widget.id) is None
    assert globex.list_bots() == []
    assert globex.update_bot(bot.id, name="Hijacked") is None
    assert globex.delete_bot(bot.id) is False
    assert acme.get_bot(bot.id).name == "Helper"


def test_children_cannot_attach_to_foreign_parents(two_tenants):
    acme, globex = two_tenants
    bot = acme.create_bot(name="Helper")
    kb = acme.create_knowledge_base(bot_id=bot.id, name="Docs")

    with pytest.raises(TenantScopeError):
        globex.create_knowledge_base(bot_id=bot.id, name="Stolen")
    with pytest.raises(TenantScopeError):
        globex.create_faq(knowledge_base_id=kb.id, question="q", answer="a")
    with pytest.raises(TenantScopeError):
        globex.create_conversation(bot_id=bot.id)


def test_update_ignores_fields_outside_whitelist(tdb):
    bot = tdb.create_bot(name="Helper")
    updated = tdb.update_bot(bot.id, name="Renamed", tenant_id="t_other", id="bot_evil")
    assert updated.name == "Renamed"
    assert updated.tenant_id == tdb.tenant_id
    assert updated.id == bot.id


def test_add_message_updates_conversation_counters(tdb):
    bot = tdb.create_bot(name="Helper")
    conv = tdb.create_conversation(bot_id=bot.id, session_id="s1")
    tdb.add_message(conv.id, role="USER", content="hi", tokens=3)
    tdb.add_message(conv.id, role="ASSISTANT", content="hello", tokens=7, response_time_ms=40)

    conv = tdb.get_conversation(conv.id)
    assert conv.message_count == 2
    assert conv.total_tokens == 10
    assert [m.role for m in tdb.list_messages(conv.id)] == ["USER", "ASSISTANT"]
    assert [m.content for m in tdb.list_messages(conv.id, limit=1)] == ["hello"]
    stats = tdb.conversation_stats(conv.id)
    assert stats["user_messages"] == 1
    assert stats["avg_response_time_ms"] == 40


def test_delete_bot_cascades_tenant_rows(db, tdb):
    bot = tdb.create_bot(name="Helper")
    kb = tdb.create_knowledge_base(bot_id=bot.id, name="Docs")
    tdb.create_faq(knowledge_base_id=kb.id, question="Hours?", answer="9-5")
    tdb.add_document(knowledge_base_id=kb.id, title="Guide", content="text", size_bytes=4)
    tdb.create_widget(bot_id=bot.id, name="Site")
    conv = tdb.create_conversation(bot_id=bot.id)
    tdb.add_message(conv.id, role="USER", content="hi")

    assert tdb.delete_bot(bot.id) is True
    assert tdb.list_knowledge_bases() == []
    assert tdb.list_widgets() == []
    assert tdb.count_conversations() == 0
    assert tdb.count_documents() == 0
    assert db.query(FAQ).count() == 0
    assert db.query(Message).count() == 0


def test_counts_exclude_deleted_bots_and_track_storage(tdb):
    live = tdb.create_bot(name="Live")
    tdb.create_bot(name="Gone", status="DELETED")
    assert tdb.count_bots() == 1

    kb = tdb.create_knowledge_base(bot_id=live.id, name="Docs")
    tdb.add_document(knowledge_base_id=kb.id, title="a", content="x" * 10, size_bytes=10)
    tdb.add_document(knowledge_base_id=kb.id, title="b", content="y" * 5, size_bytes=5)
    assert tdb.storage_bytes() == 15
    assert tdb.knowledge_base_stats(kb.id)["documents"] == 2


def test_notifications_are_paged_newest_first(db, tenant, tdb):
    user = make_user(db, tenant)
    for i in range(5):
        tdb.add_notification(user_id=user.id, title=f"n{i}", message="m")

    first, more = tdb.list_notifications(user.id, limit=2)
    assert more is True
    second, more = tdb.list_notifications(user.id, limit=2, cursor=first[-1].id)
    assert more is True
    third, more = tdb.list_notifications(user.id, limit=2, cursor=second[-1].id)
    assert more is False

    seen = [n.id for n in first + second + third]
    assert len(seen) == len(set(seen)) == 5
    assert tdb.unread_notification_count(user.id) == 5
    assert tdb.mark_notifications_read(user.id, [first[0].id]) == 1
    assert tdb.mark_notifications_read(user.id) == 4
    assert tdb.unread_notification_count(user.id) == 0


def test_notifications_for_foreign_users_are_rejected(db, two_tenants):
    acme, globex = two_tenants
    acme_user = make_user(db, acme.get_tenant())
    with pytest.raises(TenantScopeError):
        globex.add_notification(user_id=acme_user.id, title="x", message="y")


def test_user_conversation_counts(db, tenant, tdb):
    user = make_user(db, tenant)
    bot = tdb.create_bot(name="Helper")
    tdb.create_conversation(bot_id=bot.id, user_id=user.id, channel="dashboard")
    tdb.create_conversation(bot_id=bot.id, user_id=user.id, channel="dashboard")
    tdb.create_conversation(bot_id=bot.id)
    assert tdb.user_conversation_counts() == {user.id: 2}
