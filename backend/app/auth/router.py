import logging
import secrets
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.auth.deps import get_current_user
from app.auth.login_guard import lockout_key, login_guard
from app.auth.models import RefreshToken, User
from app.auth.permissions import TENANT_ADMIN, permissions_for
from app.auth.schemas import (
    FreeTrialRequest,
    LoginRequest,
    LogoutRequest,
    MeResponse,
    RefreshRequest,
    SignupRequest,
    SignupResponse,
    TokenResponse,
)
from app.auth.security import (
    JWTError,
    PasswordTooLongError,
    create_access_token,
    create_refresh_token,
    decode_token,
    hash_password,
    hash_token,
    token_claims,
    verify_password,
)
from app.billing.service import create_free_subscription, start_trial_subscription
from app.billing.trial_notifications import send_trial_start_notification
from app.db.ids import make_id
from app.db.session import get_db
from app.db.tenant_db import create_tenant_db
from app.tenants.models import Tenant
from app.tenants.service import (
    InvalidSubdomain,
    create_tenant,
    name_from_email,
    subdomain_taken,
    unique_subdomain,
    validate_subdomain,
)

logger = logging.getLogger(__name__)

router = APIRouter()
MAX_ACTIVE_REFRESH_TOKENS = 5


def _email_exists(db: Session, email: str) -> bool:
    return db.execute(select(User.id).where(User.email == email)).first() is not None


def _enforce_refresh_token_limit(db: Session, *, user_id: str, tenant_id: str) -> None:
    now = datetime.utcnow()
    active_tokens = (
        db.query(RefreshToken)
        .filter(
            RefreshToken.user_id == user_id,
            RefreshToken.tenant_id == tenant_id,
            RefreshToken.revoked_at.is_(None),
            RefreshToken.expires_at > now,
        )
        .order_by(RefreshToken.created_at.desc())
        .all()
    )
    for stale in active_tokens[MAX_ACTIVE_REFRESH_TOKENS:]:
        stale.revoked_at = now
        db.add(stale)


def _issue_tokens(db: Session, user: User) -> tuple[str, str]:
    access_token = create_access_token(token_claims(user))
    refresh_token, refresh_expires_at = create_refresh_token({"sub": user.id, "tenant_id": user.tenant_id})
    db.add(
        RefreshToken(
            id=f"rt_{secrets.token_hex(10)}",
            user_id=user.id,
            tenant_id=user.tenant_id,
            token_hash=hash_token(refresh_token),
            expires_at=refresh_expires_at,
            revoked_at=None,
            created_at=datetime.utcnow(),
        )
    )
    db.flush()
    _enforce_refresh_token_limit(db, user_id=user.id, tenant_id=user.tenant_id)
    db.commit()
    return access_token, refresh_token


def _me(user: User) -> MeResponse:
    return MeResponse(
        id=user.id,
        tenant_id=user.tenant_id,
        email=user.email,
        name=user.name,
        role=user.role,
        status=user.status,
        permissions=sorted(permissions_for(user.role)),
    )


def _hash_or_422(password: str) -> str:
    try:
        return hash_password(password)
    except PasswordTooLongError as e:
        raise HTTPException(status_code=422, detail=str(e))


def _commit_new_account(db: Session) -> None:
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail="An account with these details already exists")


@router.post("/signup", response_model=SignupResponse, status_code=201)
def signup(payload: SignupRequest, db: Session = Depends(get_db)):
    email = str(payload.email).lower()
    try:
        subdomain = validate_subdomain(payload.subdomain)
    except InvalidSubdomain as e:
        raise HTTPException(status_code=400, detail=str(e))

    if subdomain_taken(db, subdomain):
        raise HTTPException(status_code=409, detail="Tenant subdomain already exists. Please choose a different one.")
    if _email_exists(db, email):
        raise HTTPException(status_code=409, detail="User with this email already exists")

    pw_hash = _hash_or_422(payload.password)
    first_name = payload.name.strip().split()[0]
    tenant = create_tenant(db, name=f"{first_name}'s Organization", subdomain=subdomain)
    user = User(
        id=make_id("u"),
        tenant_id=tenant.id,
        email=email,
        name=payload.name.strip(),
        password_hash=pw_hash,
        role=TENANT_ADMIN,
        status="ACTIVE",
        preferences={},
    )
    db.add(user)
    db.flush()
    subscription = create_free_subscription(db, tenant.id)
    _commit_new_account(db)
    logger.info("Signup tenant=%s subdomain=%s user=%s", tenant.id, subdomain, user.id)

    access_token, refresh_token = _issue_tokens(db, user)
    return SignupResponse(
        user=_me(user),
        tenant_id=tenant.id,
        subdomain=tenant.subdomain,
        plan=tenant.plan,
        subscription_status=subscription.status,
        trial_ends_at=None,
        access_token=access_token,
        refresh_token=refresh_token,
    )


@router.post("/free-trial", response_model=SignupResponse, status_code=201)
def free_trial(payload: FreeTrialRequest, db: Session = Depends(get_db)):
    email = str(payload.email).lower()
    if _email_exists(db, email):
        raise HTTPException(
            status_code=409,
            detail="An account with this email already exists. Please sign in instead.",
        )

    pw_hash = _hash_or_422(payload.password)
    company = (payload.company or "").strip()
    name = name_from_email(email)
    subdomain = unique_subdomain(db, company or email.split("@", 1)[0])
    tenant = create_tenant(db, name=company or f"{name}'s Organization", subdomain=subdomain)
    user = User(
        id=make_id("u"),
        tenant_id=tenant.id,
        email=email,
        name=name,
        password_hash=pw_hash,
        role=TENANT_ADMIN,
        status="ACTIVE",
        preferences={},
    )
    db.add(user)
    db.flush()
    subscription = start_trial_subscription(db, tenant.id)
    _commit_new_account(db)
    logger.info("Free trial started tenant=%s subdomain=%s ends=%s", tenant.id, subdomain, subscription.trial_ends_at)

    try:
        send_trial_start_notification(create_tenant_db(db, tenant.id), user.id, subscription.trial_ends_at)
    except Exception:
        db.rollback()
        logger.exception("Trial start notification failed tenant=%s", tenant.id)

    access_token, refresh_token = _issue_tokens(db, user)
    return SignupResponse(
        user=_me(user),
        tenant_id=tenant.id,
        subdomain=tenant.subdomain,
        plan=tenant.plan,
        subscription_status=subscription.status,
        trial_ends_at=subscription.trial_ends_at,
        access_token=access_token,
        refresh_token=refresh_token,
    )


@router.post("/login", response_model=TokenResponse)
def login(payload: LoginRequest, request: Request, db: Session = Depends(get_db)):
    email = str(payload.email).lower()
    key = lockout_key(email, request.client.host if request.client else None)
    locked_until = login_guard.locked_until(key)
    if locked_until:
        raise HTTPException(
            status_code=429,
            detail=f"Too many failed attempts. Retry after {locked_until.isoformat()}",
        )

    user = db.execute(select(User).where(User.email == email)).scalar_one_or_none()
    password_ok = bool(user) and verify_password(payload.password, user.password_hash)

    if not user or not password_ok:
        new_lock = login_guard.register_failure(key)
        if new_lock:
            logger.warning("Login locked key=%s until=%s", key, new_lock.isoformat())
            raise HTTPException(
                status_code=429,
                detail=f"Too many failed attempts. Retry after {new_lock.isoformat()}",
            )
        raise HTTPException(status_code=401, detail="Invalid credentials")

    login_guard.clear(key)
    if user.status != "ACTIVE":
        raise HTTPException(status_code=403, detail="Account is not active")
    tenant = db.get(Tenant, user.tenant_id)
    if tenant is None or tenant.status == "SUSPENDED":
        raise HTTPException(status_code=403, detail="Organization is suspended")

    user.last_active_at = datetime.utcnow()
    access_token, refresh_token = _issue_tokens(db, user)
    return TokenResponse(access_token=access_token, refresh_token=refresh_token)


@router.post("/refresh", response_model=TokenResponse)
def refresh(payload: RefreshRequest, db: Session = Depends(get_db)):
    try:
        claims = decode_token(payload.refresh_token)
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid refresh token")

    if claims.get("typ") != "refresh":
        raise HTTPException(status_code=401, detail="Invalid token type")

    user_id = claims.get("sub")
    tenant_id = claims.get("tenant_id")
    if not user_id or not tenant_id:
        raise HTTPException(status_code=401, detail="Invalid refresh token payload")

    row = (
        db.query(RefreshToken)
        .filter(
            RefreshToken.token_hash == hash_token(payload.refresh_token),
            RefreshToken.user_id == user_id,
            RefreshToken.tenant_id == tenant_id,
        )
        .first()
    )
    if not row:
        raise HTTPException(status_code=401, detail="Refresh token not recognized")
    if row.revoked_at is not None:
        raise HTTPException(status_code=401, detail="Refresh token revoked")
    if row.expires_at <= datetime.utcnow():
        raise HTTPException(status_code=401, detail="Refresh token expired")

    user = db.get(User, user_id)
    if not user or user.tenant_id != tenant_id or user.status != "ACTIVE":
        raise HTTPException(status_code=401, detail="User not found")

    # rotate on every refresh
    row.revoked_at = datetime.utcnow()
    access_token, new_refresh_token = _issue_tokens(db, user)
    return TokenResponse(access_token=access_token, refresh_token=new_refresh_token)


@router.post("/logout")
def logout(payload: LogoutRequest, db: Session = Depends(get_db)):
    try:
        claims = decode_token(payload.refresh_token)
    except JWTError:
        return {"ok": True}

    row = (
        db.query(RefreshToken)
        .filter(
            RefreshToken.token_hash == hash_token(payload.refresh_token),
            RefreshToken.user_id == claims.get("sub"),
            RefreshToken.tenant_id == claims.get("tenant_id"),
        )
        .first()
    )
    if row and row.revoked_at is None:
        row.revoked_at = datetime.utcnow()
        db.commit()

    return {"ok": True}


@router.get("/me", response_model=MeResponse)
def me(current_user: User = Depends(get_current_user)):
    return _me(current_user)
