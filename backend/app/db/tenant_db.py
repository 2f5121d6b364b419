"""Tenant-scoped data access.

``create_tenant_db(db, tenant_id)`` returns a ``TenantDB`` whose reads and
writes are all constrained to one tenant. Rows that carry no ``tenant_id`` of
their own (messages) are reached through their tenant-scoped parent. Asking
for another tenant's id returns ``None``, never the foreign row.
"""
from datetime import datetime
from typing import Any, Iterable

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.orm import Session

from app.auth.models import RefreshToken, User
from app.bots.models import Bot
from app.chat.models import Conversation, Message
from app.db.ids import make_id
from app.knowledge.models import FAQ, Chunk, Document, KnowledgeBase
from app.notifications.models import Notification, NotificationPreference
from app.system.usage_models import ApiUsageEvent
from app.tenants.models import Tenant
from app.widgets.models import Widget

BOT_FIELDS = {"name", "description", "avatar", "personality", "model", "temperature", "max_tokens", "status", "config"}
KB_FIELDS = {"name", "description"}
DOCUMENT_FIELDS = {"title", "type", "content", "url", "status", "size_bytes", "error"}
FAQ_FIELDS = {"question", "answer", "category"}
WIDGET_FIELDS = {"name", "type", "config", "status", "allowed_origins"}
CONVERSATION_FIELDS = {"title", "status", "metadata_json", "closed_at"}
USER_FIELDS = {"name", "role", "status", "preferences", "password_hash", "last_active_at"}
PREFERENCE_FIELDS = {
    "in_app_enabled",
    "email_enabled",
    "sms_enabled",
    "frequency",
    "quiet_hours_start",
    "quiet_hours_end",
}


class TenantScopeError(LookupError):
    """A referenced parent row does not exist inside the current tenant."""


def _apply(obj, fields: dict[str, Any], allowed: set[str]) -> None:
    for key, value in fields.items():
        if key in allowed:
            setattr(obj, key, value)


class TenantDB:
    def __init__(self, db: Session, tenant_id: str):
        if not tenant_id:
            raise ValueError("tenant_id is required")
        self.db = db
        self.tenant_id = tenant_id

    def _one(self, model, obj_id: str):
        if not obj_id:
            return None
        return self.db.execute(
            select(model).where(model.id == obj_id, model.tenant_id == self.tenant_id)
        ).scalar_one_or_none()

    def _save(self, obj):
        self.db.add(obj)
        self.db.commit()
        self.db.refresh(obj)
        return obj

    # -- tenant -----------------------------------------------------------

    def get_tenant(self) -> Tenant | None:
        return self.db.get(Tenant, self.tenant_id)

    # -- bots -------------------------------------------------------------

    def list_bots(self, status: str | None = None) -> list[Bot]:
        stmt = select(Bot).where(Bot.tenant_id == self.tenant_id)
        if status:
            stmt = stmt.where(Bot.status == status)
        return list(self.db.execute(stmt.order_by(Bot.created_at.desc())).scalars().all())

    def bot_conversation_counts(self) -> dict[str, int]:
        rows = self.db.execute(
            select(Conversation.bot_id, func.count(Conversation.id))
            .where(Conversation.tenant_id == self.tenant_id)
            .group_by(Conversation.bot_id)
        ).all()
        return {bot_id: int(n) for bot_id, n in rows}

    def get_bot(self, bot_id: str) -> Bot | None:
        return self._one(Bot, bot_id)

    def create_bot(self, *, name: str, **fields) -> Bot:
        bot = Bot(id=make_id("bot"), tenant_id=self.tenant_id, name=name, status="ACTIVE", config={})
        _apply(bot, fields, BOT_FIELDS)
        return self._save(bot)

    def update_bot(self, bot_id: str, **fields) -> Bot | None:
        bot = self.get_bot(bot_id)
        if not bot:
            return None
        _apply(bot, fields, BOT_FIELDS)
        return self._save(bot)

    def delete_bot(self, bot_id: str) -> bool:
        bot = self.get_bot(bot_id)
        if not bot:
            return False
        kb_ids = [kb.id for kb in self.list_knowledge_bases(bot_id=bot.id)]
        for kb_id in kb_ids:
            self._delete_knowledge_base_rows(kb_id)
        conv_ids = select(Conversation.id).where(
            Conversation.tenant_id == self.tenant_id, Conversation.bot_id == bot.id
        )
        self.db.execute(delete(Message).where(Message.conversation_id.in_(conv_ids)))
        self.db.execute(
            delete(Conversation).where(
                Conversation.tenant_id == self.tenant_id, Conversation.bot_id == bot.id
            )
        )
        self.db.execute(delete(Widget).where(Widget.tenant_id == self.tenant_id, Widget.bot_id == bot.id))
        self.db.delete(bot)
        self.db.commit()
        return True

    def count_bots(self) -> int:
        return self._count(Bot, Bot.status != "DELETED")

    # -- knowledge bases --------------------------------------------------

    def list_knowledge_bases(self, bot_id: str | None = None) -> list[KnowledgeBase]:
        stmt = select(KnowledgeBase).where(KnowledgeBase.tenant_id == self.tenant_id)
        if bot_id:
            stmt = stmt.where(KnowledgeBase.bot_id == bot_id)
        return list(self.db.execute(stmt.order_by(KnowledgeBase.created_at.desc())).scalars().all())

    def get_knowledge_base(self, kb_id: str) -> KnowledgeBase | None:
        return self._one(KnowledgeBase, kb_id)

    def create_knowledge_base(self, *, bot_id: str, name: str, description: str | None = None) -> KnowledgeBase:
        if not self.get_bot(bot_id):
            raise TenantScopeError("Bot not found")
        kb = KnowledgeBase(
            id=make_id("kb"),
            tenant_id=self.tenant_id,
            bot_id=bot_id,
            name=name,
            description=description,
        )
        return self._save(kb)

    def update_knowledge_base(self, kb_id: str, **fields) -> KnowledgeBase | None:
        kb = self.get_knowledge_base(kb_id)
        if not kb:
            return None
        _apply(kb, fields, KB_FIELDS)
        return self._save(kb)

    def _delete_knowledge_base_rows(self, kb_id: str) -> None:
        self.db.execute(delete(Chunk).where(Chunk.tenant_id == self.tenant_id, Chunk.knowledge_base_id == kb_id))
        self.db.execute(
            delete(Document).where(Document.tenant_id == self.tenant_id, Document.knowledge_base_id == kb_id)
        )
        self.db.execute(delete(FAQ).where(FAQ.tenant_id == self.tenant_id, FAQ.knowledge_base_id == kb_id))
        self.db.execute(
            delete(KnowledgeBase).where(KnowledgeBase.tenant_id == self.tenant_id, KnowledgeBase.id == kb_id)
        )

    def delete_knowledge_base(self, kb_id: str) -> bool:
        if not self.get_knowledge_base(kb_id):
            return False
        self._delete_knowledge_base_rows(kb_id)
        self.db.commit()
        return True

    def knowledge_base_stats(self, kb_id: str) -> dict[str, int]:
        docs_by_status = dict(
            self.db.execute(
                select(Document.status, func.count(Document.id))
                .where(Document.tenant_id == self.tenant_id, Document.knowledge_base_id == kb_id)
                .group_by(Document.status)
            ).all()
        )
        size = self.db.execute(
            select(func.coalesce(func.sum(Document.size_bytes), 0)).where(
                Document.tenant_id == self.tenant_id, Document.knowledge_base_id == kb_id
            )
        ).scalar_one()
        return {
            "documents": int(sum(docs_by_status.values())),
            "processed": int(docs_by_status.get("PROCESSED", 0)),
            "processing": int(docs_by_status.get("PROCESSING", 0)),
            "failed": int(docs_by_status.get("FAILED", 0)),
            "faqs": self._count(FAQ, FAQ.knowledge_base_id == kb_id),
            "chunks": self._count(Chunk, Chunk.knowledge_base_id == kb_id),
            "size_bytes": int(size or 0),
        }

    def count_knowledge_bases(self) -> int:
        return self._count(KnowledgeBase)

    # -- documents --------------------------------------------------------

    def list_documents(self, kb_id: str) -> list[Document]:
        return list(
            self.db.execute(
                select(Document)
                .where(Document.tenant_id == self.tenant_id, Document.knowledge_base_id == kb_id)
                .order_by(Document.created_at.desc())
            ).scalars().all()
        )

    def get_document(self, doc_id: str) -> Document | None:
        return self._one(Document, doc_id)

    def add_document(self, *, knowledge_base_id: str, title: str, **fields) -> Document:
        if not self.get_knowledge_base(knowledge_base_id):
            raise TenantScopeError("Knowledge base not found")
        doc = Document(
            id=make_id("doc"),
            tenant_id=self.tenant_id,
            knowledge_base_id=knowledge_base_id,
            title=title,
            status="PROCESSING",
            content="",
        )
        _apply(doc, fields, DOCUMENT_FIELDS)
        if not doc.size_bytes:
            doc.size_bytes = len((doc.content or "").encode("utf-8"))
        return self._save(doc)

    def update_document(self, doc_id: str, **fields) -> Document | None:
        doc = self.get_document(doc_id)
        if not doc:
            return None
        _apply(doc, fields, DOCUMENT_FIELDS)
        return self._save(doc)

    def delete_document(self, doc_id: str) -> bool:
        doc = self.get_document(doc_id)
        if not doc:
            return False
        self.db.execute(delete(Chunk).where(Chunk.tenant_id == self.tenant_id, Chunk.document_id == doc.id))
        self.db.delete(doc)
        self.db.commit()
        return True

    def count_documents(self) -> int:
        return self._count(Document)

    def storage_bytes(self) -> int:
        total = self.db.execute(
            select(func.coalesce(func.sum(Document.size_bytes), 0)).where(Document.tenant_id == self.tenant_id)
        ).scalar_one()
        return int(total or 0)

    # -- faqs -------------------------------------------------------------

    def list_faqs(self, kb_id: str | None = None, kb_ids: Iterable[str] | None = None) -> list[FAQ]:
        stmt = select(FAQ).where(FAQ.tenant_id == self.tenant_id)
        if kb_id:
            stmt = stmt.where(FAQ.knowledge_base_id == kb_id)
        if kb_ids is not None:
            stmt = stmt.where(FAQ.knowledge_base_id.in_(list(kb_ids)))
        return list(self.db.execute(stmt.order_by(FAQ.created_at.asc())).scalars().all())

    def get_faq(self, faq_id: str) -> FAQ | None:
        return self._one(FAQ, faq_id)

    def create_faq(self, *, knowledge_base_id: str, question: str, answer: str, category: str | None = None) -> FAQ:
        if not self.get_knowledge_base(knowledge_base_id):
            raise TenantScopeError("Knowledge base not found")
        faq = FAQ(
            id=make_id("faq"),
            tenant_id=self.tenant_id,
            knowledge_base_id=knowledge_base_id,
            question=question,
            answer=answer,
            category=category,
        )
        return self._save(faq)

    def update_faq(self, faq_id: str, **fields) -> FAQ | None:
        faq = self.get_faq(faq_id)
        if not faq:
            return None
        _apply(faq, fields, FAQ_FIELDS)
        return self._save(faq)

    def delete_faq(self, faq_id: str) -> bool:
        faq = self.get_faq(faq_id)
        if not faq:
            return False
        self.db.delete(faq)
        self.db.commit()
        return True

    # -- widgets ----------------------------------------------------------

    def list_widgets(self, bot_id: str | None = None) -> list[Widget]:
        stmt = select(Widget).where(Widget.tenant_id == self.tenant_id)
        if bot_id:
            stmt = stmt.where(Widget.bot_id == bot_id)
        return list(self.db.execute(stmt.order_by(Widget.created_at.desc())).scalars().all())

    def get_widget(self, widget_id: str) -> Widget | None:
        return self._one(Widget, widget_id)

    def create_widget(self, *, bot_id: str, name: str, **fields) -> Widget:
        if not self.get_bot(bot_id):
            raise TenantScopeError("Bot not found")
        widget = Widget(
            id=make_id("w"),
            tenant_id=self.tenant_id,
            bot_id=bot_id,
            name=name,
            type="CHAT_WIDGET",
            status="ACTIVE",
            config={},
            allowed_origins=[],
        )
        _apply(widget, fields, WIDGET_FIELDS)
        return self._save(widget)

    def update_widget(self, widget_id: str, **fields) -> Widget | None:
        widget = self.get_widget(widget_id)
        if not widget:
            return None
        _apply(widget, fields, WIDGET_FIELDS)
        return self._save(widget)

    def delete_widget(self, widget_id: str) -> bool:
        widget = self.get_widget(widget_id)
        if not widget:
            return False
        self.db.delete(widget)
        self.db.commit()
        return True

    # -- conversations ----------------------------------------------------

    def create_conversation(
        self,
        *,
        bot_id: str,
        user_id: str | None = None,
        session_id: str | None = None,
        channel: str = "public",
        title: str | None = None,
        metadata: dict | None = None,
    ) -> Conversation:
        if not self.get_bot(bot_id):
            raise TenantScopeError("Bot not found")
        now = datetime.utcnow()
        conv = Conversation(
            id=make_id("conv"),
            tenant_id=self.tenant_id,
            bot_id=bot_id,
            user_id=user_id,
            session_id=session_id,
            channel=channel,
            title=title,
            status="ACTIVE",
            metadata_json=metadata or {},
            message_count=0,
            total_tokens=0,
            started_at=now,
            last_message_at=now,
        )
        return self._save(conv)

    def _conversation_filter(self, bot_id=None, user_id=None, status=None):
        clauses = [Conversation.tenant_id == self.tenant_id]
        if bot_id:
            clauses.append(Conversation.bot_id == bot_id)
        if user_id:
            clauses.append(Conversation.user_id == user_id)
        if status:
            clauses.append(Conversation.status == status)
        return clauses

    def list_conversations(
        self,
        *,
        bot_id: str | None = None,
        user_id: str | None = None,
        status: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Conversation]:
        stmt = (
            select(Conversation)
            .where(*self._conversation_filter(bot_id, user_id, status))
            .order_by(Conversation.last_message_at.desc())
            .offset(max(0, offset))
            .limit(max(1, min(limit, 200)))
        )
        return list(self.db.execute(stmt).scalars().all())

    def count_conversations(self, *, bot_id=None, user_id=None, status=None) -> int:
        return int(
            self.db.execute(
                select(func.count(Conversation.id)).where(*self._conversation_filter(bot_id, user_id, status))
            ).scalar_one()
        )

    def count_conversations_since(self, since: datetime) -> int:
        return self._count(Conversation, Conversation.started_at >= since)

    def get_conversation(self, conversation_id: str) -> Conversation | None:
        return self._one(Conversation, conversation_id)

    def update_conversation(self, conversation_id: str, **fields) -> Conversation | None:
        conv = self.get_conversation(conversation_id)
        if not conv:
            return None
        _apply(conv, fields, CONVERSATION_FIELDS)
        if fields.get("status") == "CLOSED" and not conv.closed_at:
            conv.closed_at = datetime.utcnow()
        return self._save(conv)

    def close_conversation(self, conversation_id: str) -> Conversation | None:
        return self.update_conversation(conversation_id, status="CLOSED", closed_at=datetime.utcnow())

    def delete_conversation(self, conversation_id: str) -> bool:
        conv = self.get_conversation(conversation_id)
        if not conv:
            return False
        self.db.execute(delete(Message).where(Message.conversation_id == conv.id))
        self.db.delete(conv)
        self.db.commit()
        return True

    def conversation_stats(self, conversation_id: str) -> dict[str, Any] | None:
        conv = self.get_conversation(conversation_id)
        if not conv:
            return None
        messages = self.list_messages(conv.id)
        by_role: dict[str, int] = {}
        for m in messages:
            by_role[m.role] = by_role.get(m.role, 0) + 1
        timings = [m.response_time_ms for m in messages if m.role == "ASSISTANT" and m.response_time_ms is not None]
        end = conv.closed_at or conv.last_message_at
        return {
            "message_count": len(messages),
            "user_messages": by_role.get("USER", 0),
            "assistant_messages": by_role.get("ASSISTANT", 0),
            "total_tokens": conv.total_tokens,
            "avg_response_time_ms": int(sum(timings) / len(timings)) if timings else None,
            "duration_seconds": int((end - conv.started_at).total_seconds()) if end else 0,
        }

    # -- messages ---------------------------------------------------------

    def add_message(
        self,
        conversation_id: str,
        *,
        role: str,
        content: str,
        tokens: int = 0,
        model: str | None = None,
        response_time_ms: int | None = None,
        metadata: dict | None = None,
    ) -> Message | None:
        conv = self.get_conversation(conversation_id)
        if not conv:
            return None
        now = datetime.utcnow()
        msg = Message(
            id=make_id("msg"),
            conversation_id=conv.id,
            role=role,
            content=content,
            tokens=tokens or 0,
            model=model,
            response_time_ms=response_time_ms,
            metadata_json=metadata or {},
            created_at=now,
        )
        self.db.add(msg)
        conv.message_count = (conv.message_count or 0) + 1
        conv.total_tokens = (conv.total_tokens or 0) + (tokens or 0)
        conv.last_message_at = now
        self.db.commit()
        self.db.refresh(msg)
        return msg

    def list_messages(self, conversation_id: str, limit: int | None = None) -> list[Message]:
        if not self.get_conversation(conversation_id):
            return []
        stmt = select(Message).where(Message.conversation_id == conversation_id)
        if limit:
            rows = self.db.execute(
                stmt.order_by(Message.created_at.desc(), Message.id.desc()).limit(limit)
            ).scalars().all()
            return list(reversed(rows))
        return list(self.db.execute(stmt.order_by(Message.created_at.asc(), Message.id.asc())).scalars().all())

    def count_messages_since(self, since: datetime) -> int:
        return int(
            self.db.execute(
                select(func.count(Message.id))
                .join(Conversation, Conversation.id == Message.conversation_id)
                .where(Conversation.tenant_id == self.tenant_id, Message.created_at >= since)
            ).scalar_one()
        )

    # -- users ------------------------------------------------------------

    def list_users(self) -> list[User]:
        return list(
            self.db.execute(
                select(User).where(User.tenant_id == self.tenant_id).order_by(User.created_at.asc())
            ).scalars().all()
        )

    def get_user(self, user_id: str) -> User | None:
        return self._one(User, user_id)

    def get_user_by_email(self, email: str) -> User | None:
        return self.db.execute(
            select(User).where(User.tenant_id == self.tenant_id, User.email == email.strip().lower())
        ).scalar_one_or_none()

    def create_user(self, *, email: str, password_hash: str, role: str = "USER", **fields) -> User:
        user = User(
            id=make_id("u"),
            tenant_id=self.tenant_id,
            email=email.strip().lower(),
            password_hash=password_hash,
            role=role,
            status="ACTIVE",
            preferences={},
        )
        _apply(user, fields, USER_FIELDS)
        return self._save(user)

    def update_user(self, user_id: str, **fields) -> User | None:
        user = self.get_user(user_id)
        if not user:
            return None
        _apply(user, fields, USER_FIELDS)
        return self._save(user)

    def delete_user(self, user_id: str) -> bool:
        user = self.get_user(user_id)
        if not user:
            return False
        self.db.execute(delete(RefreshToken).where(RefreshToken.user_id == user.id))
        self.db.execute(
            delete(Notification).where(Notification.tenant_id == self.tenant_id, Notification.user_id == user.id)
        )
        self.db.execute(
            delete(NotificationPreference).where(
                NotificationPreference.tenant_id == self.tenant_id, NotificationPreference.user_id == user.id
            )
        )
        self.db.delete(user)
        self.db.commit()
        return True

    def user_conversation_counts(self) -> dict[str, int]:
        rows = self.db.execute(
            select(Conversation.user_id, func.count(Conversation.id))
            .where(Conversation.tenant_id == self.tenant_id, Conversation.user_id.is_not(None))
            .group_by(Conversation.user_id)
        ).all()
        return {user_id: int(n) for user_id, n in rows}

    def count_users(self, status: str | None = None) -> int:
        if status:
            return self._count(User, User.status == status)
        return self._count(User)

    def first_admin(self) -> User | None:
        return self.db.execute(
            select(User)
            .where(User.tenant_id == self.tenant_id, User.role == "TENANT_ADMIN", User.status == "ACTIVE")
            .order_by(User.created_at.asc())
            .limit(1)
        ).scalar_one_or_none()

    # -- notifications ----------------------------------------------------

    def add_notification(self, *, user_id: str, title: str, message: str, **fields) -> Notification:
        if not self.get_user(user_id):
            raise TenantScopeError("User not found")
        n = Notification(
            id=make_id("n"),
            tenant_id=self.tenant_id,
            user_id=user_id,
            title=title,
            message=message,
            type=fields.get("type", "SYSTEM"),
            category=fields.get("category", "system"),
            priority=fields.get("priority", "MEDIUM"),
            action_url=fields.get("action_url"),
            metadata_json=fields.get("metadata") or {},
            is_read=False,
            created_at=datetime.utcnow(),
        )
        return self._save(n)

    def list_notifications(
        self,
        user_id: str,
        *,
        unread_only: bool = False,
        category: str | None = None,
        limit: int = 20,
        cursor: str | None = None,
    ) -> tuple[list[Notification], bool]:
        """Newest first; returns ``(items, has_more)``. ``cursor`` is the last id seen."""
        stmt = select(Notification).where(
            Notification.tenant_id == self.tenant_id, Notification.user_id == user_id
        )
        if unread_only:
            stmt = stmt.where(Notification.is_read.is_(False))
        if category:
            stmt = stmt.where(Notification.category == category)
        if cursor:
            anchor = self._one(Notification, cursor)
            if anchor is not None:
                stmt = stmt.where(
                    or_(
                        Notification.created_at < anchor.created_at,
                        and_(Notification.created_at == anchor.created_at, Notification.id < anchor.id),
                    )
                )
        rows = list(
            self.db.execute(
                stmt.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit + 1)
            ).scalars().all()
        )
        return rows[:limit], len(rows) > limit

    def unread_notification_count(self, user_id: str) -> int:
        return self._count(Notification, Notification.user_id == user_id, Notification.is_read.is_(False))

    def mark_notifications_read(self, user_id: str, notification_ids: Iterable[str] | None = None) -> int:
        stmt = update(Notification).where(
            Notification.tenant_id == self.tenant_id,
            Notification.user_id == user_id,
            Notification.is_read.is_(False),
        )
        if notification_ids is not None:
            stmt = stmt.where(Notification.id.in_(list(notification_ids)))
        result = self.db.execute(
            stmt.values(is_read=True, read_at=datetime.utcnow()).execution_options(synchronize_session=False)
        )
        self.db.commit()
        return int(result.rowcount or 0)

    def list_notification_preferences(self, user_id: str) -> list[NotificationPreference]:
        return list(
            self.db.execute(
                select(NotificationPreference)
                .where(
                    NotificationPreference.tenant_id == self.tenant_id,
                    NotificationPreference.user_id == user_id,
                )
                .order_by(NotificationPreference.category.asc())
            ).scalars().all()
        )

    def upsert_notification_preference(self, user_id: str, category: str, **fields) -> NotificationPreference:
        pref = self.db.execute(
            select(NotificationPreference).where(
                NotificationPreference.tenant_id == self.tenant_id,
                NotificationPreference.user_id == user_id,
                NotificationPreference.category == category,
            )
        ).scalar_one_or_none()
        if pref is None:
            pref = NotificationPreference(
                id=make_id("np"),
                tenant_id=self.tenant_id,
                user_id=user_id,
                category=category,
                in_app_enabled=True,
                email_enabled=False,
                sms_enabled=False,
                frequency="REALTIME",
            )
        _apply(pref, fields, PREFERENCE_FIELDS)
        return self._save(pref)

    # -- usage ------------------------------------------------------------

    def count_api_calls_since(self, since: datetime) -> int:
        return self._count(ApiUsageEvent, ApiUsageEvent.created_at >= since)

    def _count(self, model, *clauses) -> int:
        return int(
            self.db.execute(
                select(func.count(model.id)).where(model.tenant_id == self.tenant_id, *clauses)
            ).scalar_one()
        )


def create_tenant_db(db: Session, tenant_id: str) -> TenantDB:
    return TenantDB(db, tenant_id)
