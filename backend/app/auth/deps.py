from datetime import datetime, timedelta

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from app.auth.models import User
from app.auth.security import decode_token
from app.db.session import get_db

bearer = HTTPBearer(auto_error=False)

LAST_ACTIVE_RESOLUTION = timedelta(minutes=5)


def get_current_user(
    creds: HTTPAuthorizationCredentials = Depends(bearer),
    db: Session = Depends(get_db),
) -> User:
    if not creds:
        raise HTTPException(status_code=401, detail="Missing token")

    try:
        payload = decode_token(creds.credentials)
    except Exception:
        raise HTTPException(status_code=401, detail="Invalid token")

    if payload.get("typ") != "access":
        raise HTTPException(status_code=401, detail="Invalid token type")

    user_id = payload.get("sub")
    tenant_id = payload.get("tenant_id")
    if not user_id or not tenant_id:
        raise HTTPException(status_code=401, detail="Invalid token payload")

    user = db.get(User, user_id)
    if not user or user.tenant_id != tenant_id:
        raise HTTPException(status_code=401, detail="User not found")
    if user.status != "ACTIVE":
        raise HTTPException(status_code=403, detail="Account is not active")

    now = datetime.utcnow()
    if not user.last_active_at or now - user.last_active_at > LAST_ACTIVE_RESOLUTION:
        user.last_active_at = now
        db.commit()

    return user
