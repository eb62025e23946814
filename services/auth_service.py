from sqlalchemy.orm import Session
from models.account import Account, UserRole
from services.realtime_store import RealtimeStore
from utils.security import (
    verify_password, get_password_hash, create_access_token, validate_password_strength
)
from datetime import timedelta
from config import settings
from typing import Optional, Tuple
import time
import uuid
import logging

logger = logging.getLogger(__name__)

class AuthService:
    @staticmethod
    def authenticate_account(db: Session, email: str, password: str) -> Optional[Account]:
        """Authenticate with email and password"""
        account = db.query(Account).filter(Account.email == email.lower()).first()
        if not account:
            logger.warning(f"Login attempt with unknown email: {email[:3]}****")
            return None
        if not account.is_active:
            logger.warning(f"Login attempt for disabled account: {account.uid}")
            return None
        if not verify_password(password, account.password_hash):
            logger.warning(f"Failed login attempt for account: {account.uid}")
            return None
        logger.info(f"Successful login for account: {account.uid}")
        return account

    @staticmethod
    def create_account(
        db: Session,
        store: RealtimeStore,
        email: str,
        password: str,
        name: str,
        role: UserRole,
        phone: Optional[str] = None
    ) -> Optional[Account]:
        """Create credentials plus the users/{uid} profile. None when the email is taken."""
        email = email.lower()
        if db.query(Account).filter(Account.email == email).first():
            return None

        account = Account(
            uid=uuid.uuid4().hex,
            email=email,
            password_hash=get_password_hash(password)
        )
        db.add(account)
        db.commit()
        db.refresh(account)

        now = int(time.time() * 1000)
        profile = {
            "email": email,
            "name": name,
            "role": role.value,
            "createdAt": now,
            "updatedAt": now,
        }
        if phone:
            profile["phone"] = phone
        store.set(f"users/{account.uid}", profile)

        logger.info(f"New account created: {account.uid} with role: {role.value}")
        return account

    @staticmethod
    def get_profile(store: RealtimeStore, uid: str) -> Optional[dict]:
        profile = store.get(f"users/{uid}")
        if not isinstance(profile, dict):
            return None
        return {**profile, "id": uid}

    @staticmethod
    def generate_token(account: Account, role: str) -> str:
        access_token_expires = timedelta(minutes=settings.access_token_expire_minutes)
        return create_access_token(
            data={"sub": account.uid, "email": account.email, "role": role},
            expires_delta=access_token_expires
        )

    @staticmethod
    def verify_password_strength(password: str) -> Tuple[bool, str]:
        return validate_password_strength(password)

    @staticmethod
    def ensure_admin(db: Session, store: RealtimeStore) -> Optional[Account]:
        """Seed the configured admin account on first start"""
        existing = db.query(Account).filter(Account.email == settings.admin_email.lower()).first()
        if existing:
            logger.info("Admin account already exists")
            return None
        admin = AuthService.create_account(
            db=db,
            store=store,
            email=settings.admin_email,
            password=settings.admin_password,
            name="Admin",
            role=UserRole.ADMIN
        )
        logger.info(f"Admin account created: {admin.email}")
        return admin
