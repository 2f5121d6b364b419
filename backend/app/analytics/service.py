from collections import Counter
from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.auth.models import User
from app.bots.models import Bot
from app.chat.models import Conversation, Message
from app.system.usage_service import api_usage_summary

TIME_RANGES = {
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
    "90d": timedelta(days=90),
}
DEFAULT_TIME_RANGE = "7d"
TOP_BOTS = 5


def parse_time_range(value: str | None) -> timedelta:
    key = value or DEFAULT_TIME_RANGE
    if key not in TIME_RANGES:
        raise ValueError(f"Invalid time range: {value}; expected one of {', '.join(TIME_RANGES)}")
    return TIME_RANGES[key]


def _daily_series(since: datetime, now: datetime, conv_times, message_times) -> list[dict]:
    conv_days = Counter(t.date().isoformat() for t in conv_times)
    msg_days = Counter(t.date().isoformat() for t in message_times)
    series = []
    day = since.date()
    while day <= now.date():
        key = day.isoformat()
        series.append({"date": key, "conversations": conv_days.get(key, 0), "messages": msg_days.get(key, 0)})
        day += timedelta(days=1)
    return series


def dashboard_metrics(db: Session, tenant_id: str, time_range: str | None = None, now: datetime | None = None) -> dict:
    now = now or datetime.utcnow()
    window = parse_time_range(time_range)
    since = now - window
    in_window = (Conversation.tenant_id == tenant_id, Conversation.started_at >= since)

    by_status = dict(
        db.execute(
            select(Conversation.status, func.count(Conversation.id)).where(*in_window).group_by(Conversation.status)
        ).all()
    )
    total = int(sum(by_status.values()))
    closed = int(by_status.get("CLOSED", 0))

    message_scope = (
        Conversation.tenant_id == tenant_id,
        Message.created_at >= since,
    )
    message_times = db.execute(
        select(Message.created_at)
        .join(Conversation, Conversation.id == Message.conversation_id)
        .where(*message_scope)
    ).scalars().all()
    avg_response_ms = db.execute(
        select(func.avg(Message.response_time_ms))
        .join(Conversation, Conversation.id == Message.conversation_id)
        .where(*message_scope, Message.role == "ASSISTANT", Message.response_time_ms.is_not(None))
    ).scalar_one()
    conv_times = db.execute(select(Conversation.started_at).where(*in_window)).scalars().all()

    total_users = db.execute(select(func.count(User.id)).where(User.tenant_id == tenant_id)).scalar_one()
    new_users = db.execute(
        select(func.count(User.id)).where(User.tenant_id == tenant_id, User.created_at >= now - timedelta(hours=24))
    ).scalar_one()
    visitors = db.execute(
        select(func.count(func.distinct(Conversation.session_id))).where(
            *in_window, Conversation.session_id.is_not(None)
        )
    ).scalar_one()

    bot_rows = db.execute(
        select(Bot.id, Bot.name, func.count(Conversation.id))
        .join(Conversation, Conversation.bot_id == Bot.id)
        .where(Bot.tenant_id == tenant_id, *in_window)
        .group_by(Bot.id, Bot.name)
        .order_by(func.count(Conversation.id).desc())
        .limit(TOP_BOTS)
    ).all()

    return {
        "time_range": time_range or DEFAULT_TIME_RANGE,
        "since": since.isoformat(),
        "conversations": {
            "total": total,
            "active": int(by_status.get("ACTIVE", 0)),
            "completed": closed,
            "abandoned": int(by_status.get("ARCHIVED", 0)),
        },
        "messages": {"total": len(message_times)},
        "users": {"total": int(total_users or 0), "new_24h": int(new_users or 0), "unique_visitors": int(visitors or 0)},
        "avg_response_time_seconds": round(float(avg_response_ms) / 1000, 2) if avg_response_ms is not None else None,
        "completion_rate": round(closed / total * 100, 1) if total else 0.0,
        "daily": _daily_series(since, now, conv_times, message_times),
        "top_bots": [{"bot_id": bid, "name": name, "conversations": int(n)} for bid, name, n in bot_rows],
        "api_usage": api_usage_summary(db, tenant_id=tenant_id, since_days=max(1, window.days)),
    }


def live_metrics(db: Session, tenant_id: str, now: datetime | None = None) -> dict:
    now = now or datetime.utcnow()

    def conversations_since(delta: timedelta) -> int:
        return int(
            db.execute(
                select(func.count(Conversation.id)).where(
                    Conversation.tenant_id == tenant_id, Conversation.started_at >= now - delta
                )
            ).scalar_one()
        )

    def messages_since(delta: timedelta) -> int:
        return int(
            db.execute(
                select(func.count(Message.id))
                .join(Conversation, Conversation.id == Message.conversation_id)
                .where(Conversation.tenant_id == tenant_id, Message.created_at >= now - delta)
            ).scalar_one()
        )

    active = db.execute(
        select(func.count(Conversation.id)).where(Conversation.tenant_id == tenant_id, Conversation.status == "ACTIVE")
    ).scalar_one()
    recent = db.execute(
        select(Conversation)
        .where(Conversation.tenant_id == tenant_id)
        .order_by(Conversation.last_message_at.desc())
        .limit(10)
    ).scalars().all()

    return {
        "generated_at": now.isoformat(),
        "last_hour": {"conversations": conversations_since(timedelta(hours=1)), "messages": messages_since(timedelta(hours=1))},
        "last_24h": {
            "conversations": conversations_since(timedelta(hours=24)),
            "messages": messages_since(timedelta(hours=24)),
        },
        "active_conversations": int(active or 0),
        "recent_conversations": [
            {
                "id": c.id,
                "bot_id": c.bot_id,
                "title": c.title,
                "status": c.status,
                "message_count": c.message_count,
                "last_message_at": c.last_message_at.isoformat(),
            }
            for c in recent
        ],
    }
