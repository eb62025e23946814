from dataclasses import dataclass
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from typing import Optional
from database import get_db
from models.account import Account, UserRole
from services.realtime_store import RealtimeStore, get_store
from utils.security import decode_token

security = HTTPBearer()


@dataclass
class AuthUser:
    uid: str
    email: str
    role: str
    name: str = ""


def resolve_token(token: str, db: Session, store: RealtimeStore) -> Optional[AuthUser]:
    """Signed-in user for a bearer token, or None. The role comes from the stored profile."""
    payload = decode_token(token)
    if payload is None:
        return None

    uid = payload.get("sub")
    if uid is None or not isinstance(uid, str):
        return None

    account = db.query(Account).filter(Account.uid == uid).first()
    if account is None or not account.is_active:
        return None

    profile = store.get(f"users/{uid}") or {}
    return AuthUser(
        uid=uid,
        email=account.email,
        role=profile.get("role", UserRole.CUSTOMER.value),
        name=profile.get("name", "")
    )


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
    store: RealtimeStore = Depends(get_store)
) -> AuthUser:
    user = resolve_token(credentials.credentials, db, store)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user

async def get_current_admin(current_user: AuthUser = Depends(get_current_user)) -> AuthUser:
    if current_user.role != UserRole.ADMIN.value:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    return current_user

async def get_current_admin_or_driver(current_user: AuthUser = Depends(get_current_user)) -> AuthUser:
    if current_user.role not in [UserRole.ADMIN.value, UserRole.DRIVER.value]:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin or Driver access required"
        )
    return current_user
