from datetime import datetime, timedelta

import pytest
from fastapi import HTTPException

from app.analytics.service import dashboard_metrics, live_metrics, parse_time_range
from app.conversations.router import close_conversation, delete_conversation, get_conversation, list_conversations
from app.db.tenant_db import create_tenant_db
from conftest import make_tenant


@pytest.fixture()
def bot(tdb):
    return tdb.create_bot(name="Helpdesk")


def _list(tdb, user, **kwargs):
    params = {"bot_id": None, "status": None, "user_id": None, "limit": 50, "offset": 0}
    params.update(kwargs)
    return list_conversations(tdb=tdb, user=user, **params)


def test_list_filter_and_detail(tdb, admin, bot):
    first = tdb.create_conversation(bot_id=bot.id, session_id="s1")
    tdb.add_message(first.id, role="USER", content="hi", tokens=1)
    tdb.add_message(first.id, role="ASSISTANT", content="hello", tokens=2, response_time_ms=300)
    second = tdb.create_conversation(bot_id=bot.id)
    close_conversation(second.id, tdb=tdb, user=admin)

    assert _list(tdb, admin).total == 2
    active = _list(tdb, admin, status="ACTIVE")
    assert [c.id for c in active.items] == [first.id]

    detail = get_conversation(first.id, tdb=tdb, user=admin)
    assert [m.role for m in detail.messages] == ["USER", "ASSISTANT"]
    assert detail.stats["total_tokens"] == 3
    assert detail.stats["avg_response_time_ms"] == 300


def test_other_tenant_conversations_are_hidden(db, tdb, admin, bot):
    conv = tdb.create_conversation(bot_id=bot.id)
    other_tdb = create_tenant_db(db, make_tenant(db, "globex").id)
    with pytest.raises(HTTPException):
        get_conversation(conv.id, tdb=other_tdb, user=admin)
    with pytest.raises(HTTPException):
        delete_conversation(conv.id, tdb=other_tdb, user=admin)
    assert delete_conversation(conv.id, tdb=tdb, user=admin) == {"ok": True}


def test_dashboard_metrics(db, tdb, bot):
    conv = tdb.create_conversation(bot_id=bot.id, session_id="visitor")
    tdb.add_message(conv.id, role="USER", content="hi")
    tdb.add_message(conv.id, role="ASSISTANT", content="hello", response_time_ms=1500)
    tdb.close_conversation(conv.id)
    tdb.create_conversation(bot_id=bot.id, session_id="visitor")

    metrics = dashboard_metrics(db, tdb.tenant_id, "7d")
    assert metrics["conversations"] == {"total": 2, "active": 1, "completed": 1, "abandoned": 0}
    assert metrics["messages"]["total"] == 2
    assert metrics["users"]["unique_visitors"] == 1
    assert metrics["avg_response_time_seconds"] == 1.5
    assert metrics["completion_rate"] == 50.0
    assert metrics["top_bots"][0]["conversations"] == 2
    assert len(metrics["daily"]) == 8


def test_time_range_validation_and_live_metrics(db, tdb, bot):
    assert parse_time_range(None) == timedelta(days=7)
    with pytest.raises(ValueError):
        parse_time_range("1y")

    tdb.create_conversation(bot_id=bot.id)
    live = live_metrics(db, tdb.tenant_id, now=datetime.utcnow() + timedelta(minutes=1))
    assert live["last_hour"]["conversations"] == 1
    assert live["active_conversations"] == 1
    assert len(live["recent_conversations"]) == 1
