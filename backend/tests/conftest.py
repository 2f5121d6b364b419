import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENV"] = "dev"
os.environ["OPENAI_API_KEY"] = ""
os.environ["ROOT_DOMAIN"] = "chatbot.test"

from datetime import datetime, timedelta  # noqa: E402
from types import SimpleNamespace  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from app.auth.login_guard import login_guard  # noqa: E402
from app.auth.models import User  # noqa: E402
from app.billing.models import Subscription  # noqa: E402
from app.db.base import Base  # noqa: E402
from app.db.ids import make_id  # noqa: E402
from app.db.init_db import init_db  # noqa: E402
from app.db.tenant_db import create_tenant_db  # noqa: E402
from app.system.rate_limit import public_chat_limiter  # noqa: E402
from app.tenants.models import Tenant  # noqa: E402


@pytest.fixture()
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=eng)
    yield eng
    Base.metadata.drop_all(bind=eng)
    eng.dispose()


@pytest.fixture()
def db(engine):
    session = sessionmaker(bind=engine, autoflush=False)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def _reset_in_memory_state():
    login_guard.reset()
    public_chat_limiter.reset()
    yield
    login_guard.reset()
    public_chat_limiter.reset()


def make_tenant(db, subdomain="acme", plan="FREE", **fields) -> Tenant:
    tenant = Tenant(
        id=make_id("t"),
        name=fields.pop("name", subdomain.title()),
        subdomain=subdomain,
        plan=plan,
        status=fields.pop("status", "ACTIVE"),
        settings={},
        **fields,
    )
    db.add(tenant)
    db.commit()
    return tenant


def make_user(db, tenant, email=None, role="TENANT_ADMIN", status="ACTIVE", password_hash="x") -> User:
    user = User(
        id=make_id("u"),
        tenant_id=tenant.id,
        email=email or f"{role.lower()}-{make_id('e')}@{tenant.subdomain}.io",
        name=role.title(),
        password_hash=password_hash,
        role=role,
        status=status,
        preferences={},
    )
    db.add(user)
    db.commit()
    return user


def make_subscription(db, tenant, status="ACTIVE", plan=None, trial_ends_at=None, **fields) -> Subscription:
    sub = Subscription(
        id=make_id("sub"),
        tenant_id=tenant.id,
        plan=plan or tenant.plan,
        status=status,
        trial_ends_at=trial_ends_at,
        is_trial_expired=fields.pop("is_trial_expired", False),
        cancel_at_period_end=fields.pop("cancel_at_period_end", False),
        **fields,
    )
    db.add(sub)
    db.commit()
    return sub


def expired_trial(db, tenant, days_ago=1) -> Subscription:
    return make_subscription(
        db, tenant, status="TRIALING", trial_ends_at=datetime.utcnow() - timedelta(days=days_ago)
    )


def fake_request(host="203.0.113.7", headers=None, host_tenant=None):
    return SimpleNamespace(
        client=SimpleNamespace(host=host),
        headers=headers or {},
        state=SimpleNamespace(host_tenant=host_tenant),
    )


@pytest.fixture()
def tenant(db):
    return make_tenant(db, "acme")


@pytest.fixture()
def admin(db, tenant):
    return make_user(db, tenant, email="admin@acme.io", role="TENANT_ADMIN")


@pytest.fixture()
def tdb(db, tenant):
    return create_tenant_db(db, tenant.id)
