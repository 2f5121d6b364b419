# Importing this module registers every table on Base.metadata.
from app.tenants.models import Tenant  # noqa: F401
from app.auth.models import RefreshToken, User  # noqa: F401
from app.billing.models import BillingHistory, Subscription  # noqa: F401
from app.bots.models import Bot  # noqa: F401
from app.knowledge.models import FAQ, Chunk, Document, KnowledgeBase  # noqa: F401
from app.widgets.models import Widget  # noqa: F401
from app.chat.models import Conversation, Message  # noqa: F401
from app.notifications.models import Notification, NotificationPreference  # noqa: F401
from app.system.usage_models import ApiUsageEvent  # noqa: F401
