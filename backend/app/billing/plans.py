"""Plan catalogue. A limit of -1 means unlimited."""
from dataclasses import dataclass, field

UNLIMITED = -1

PLAN_ORDER = ("FREE", "STARTER", "PROFESSIONAL", "ENTERPRISE")

LIMIT_METRICS = ("bots", "knowledge_bases", "documents", "conversations", "users", "api_calls", "storage")


@dataclass(frozen=True)
class PlanLimits:
    bots: int
    knowledge_bases: int
    documents: int
    conversations: int  # per calendar month
    users: int
    api_calls: int  # per calendar month
    storage: int  # MB

    def get(self, metric: str) -> int:
        return getattr(self, metric)

    def as_dict(self) -> dict[str, int]:
        return {m: self.get(m) for m in LIMIT_METRICS}


@dataclass(frozen=True)
class Plan:
    id: str
    name: str
    price: float
    limits: PlanLimits
    features: tuple[str, ...] = field(default_factory=tuple)

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "price": self.price,
            "currency": "USD",
            "interval": "month",
            "limits": self.limits.as_dict(),
            "features": list(self.features),
        }


PLANS: dict[str, Plan] = {
    "FREE": Plan(
        id="FREE",
        name="Free",
        price=0,
        limits=PlanLimits(1, 1, 100, 1_000, 2, 10_000, 100),
        features=("1 chatbot", "1 knowledge base", "100 documents", "1,000 conversations/month", "Basic analytics"),
    ),
    "STARTER": Plan(
        id="STARTER",
        name="Starter",
        price=29,
        limits=PlanLimits(5, 5, 1_000, 10_000, 10, 100_000, 1_000),
        features=("5 chatbots", "5 knowledge bases", "1,000 documents", "10,000 conversations/month", "Priority support"),
    ),
    "PROFESSIONAL": Plan(
        id="PROFESSIONAL",
        name="Professional",
        price=99,
        limits=PlanLimits(25, 25, 10_000, 100_000, 50, 1_000_000, 10_000),
        features=("25 chatbots", "25 knowledge bases", "10,000 documents", "Advanced analytics", "Custom branding"),
    ),
    "ENTERPRISE": Plan(
        id="ENTERPRISE",
        name="Enterprise",
        price=299,
        limits=PlanLimits(*([UNLIMITED] * 7)),
        features=("Unlimited chatbots", "Unlimited documents", "White label", "Dedicated support", "SLA"),
    ),
}

_FREE_FEATURES = ("basic_chat", "document_upload", "basic_analytics")
_STARTER_FEATURES = _FREE_FEATURES + ("priority_support",)
_PROFESSIONAL_FEATURES = _STARTER_FEATURES + ("advanced_analytics", "custom_branding")
_ENTERPRISE_FEATURES = _PROFESSIONAL_FEATURES + ("white_label", "dedicated_support")

PLAN_FEATURE_FLAGS: dict[str, frozenset[str]] = {
    "FREE": frozenset(_FREE_FEATURES),
    "STARTER": frozenset(_STARTER_FEATURES),
    "PROFESSIONAL": frozenset(_PROFESSIONAL_FEATURES),
    "ENTERPRISE": frozenset(_ENTERPRISE_FEATURES),
}


def get_plan(plan_id: str | None) -> Plan | None:
    return PLANS.get((plan_id or "").upper())


def plan_rank(plan_id: str | None) -> int:
    try:
        return PLAN_ORDER.index((plan_id or "").upper())
    except ValueError:
        return -1


def is_downgrade(current: str | None, target: str | None) -> bool:
    return plan_rank(target) < plan_rank(current)
