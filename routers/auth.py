from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from pydantic import BaseModel, validator, Field
from typing import List, Optional
from database import get_db
from models.account import UserRole
from services.auth_service import AuthService
from services.realtime_store import RealtimeStore, get_store
from utils.auth_dependency import AuthUser, get_current_user, get_current_admin
from utils.logger import DatabaseLogger
from models.log import LogLevel, LogCategory
import re

router = APIRouter(prefix="/api/auth", tags=["Authentication"])

EMAIL_PATTERN = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')

class SignInRequest(BaseModel):
    email: str = Field(..., max_length=255)
    password: str = Field(..., min_length=1, max_length=100)

    @validator('email')
    def validate_email(cls, v):
        v = v.strip().lower()
        if not EMAIL_PATTERN.match(v):
            raise ValueError('Invalid email address')
        return v

class RegisterRequest(BaseModel):
    email: str = Field(..., max_length=255)
    password: str = Field(..., min_length=6, max_length=100, description="Password (minimum 6 characters)")
    name: str = Field(..., min_length=2, max_length=100, description="Full name (2-100 characters)")
    phone: Optional[str] = Field(None, max_length=20)

    @validator('email')
    def validate_email(cls, v):
        v = v.strip().lower()
        if not EMAIL_PATTERN.match(v):
            raise ValueError('Invalid email address')
        return v

    @validator('name')
    def validate_name(cls, v):
        v = ' '.join(v.split())
        if len(v) < 2:
            raise ValueError('Name must be at least 2 characters')
        if re.search(r'<\s*script|<\s*iframe|javascript:', v, re.IGNORECASE):
            raise ValueError('Invalid characters in name')
        return v

class CreateUserRequest(RegisterRequest):
    role: UserRole = UserRole.DRIVER

class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: dict

class UserResponse(BaseModel):
    id: str
    email: str
    name: str = ""
    role: str
    phone: Optional[str] = None
    assignedVehicleId: Optional[str] = None
    createdAt: Optional[int] = None
    updatedAt: Optional[int] = None

def _create(db: Session, store: RealtimeStore, request: RegisterRequest, role: UserRole) -> TokenResponse:
    ok, message = AuthService.verify_password_strength(request.password)
    if not ok:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=message)

    account = AuthService.create_account(
        db=db,
        store=store,
        email=request.email,
        password=request.password,
        name=request.name,
        role=role,
        phone=request.phone
    )
    if account is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email already registered")

    return TokenResponse(
        access_token=AuthService.generate_token(account, role.value),
        user=AuthService.get_profile(store, account.uid)
    )

@router.post("/signin", response_model=TokenResponse)
def sign_in(request: SignInRequest, db: Session = Depends(get_db), store: RealtimeStore = Depends(get_store)):
    account = AuthService.authenticate_account(db, request.email, request.password)
    if not account:
        DatabaseLogger.log_system(
            LogLevel.WARNING,
            LogCategory.AUTHENTICATION,
            f"Failed sign-in for {request.email[:3]}****"
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password"
        )

    profile = AuthService.get_profile(store, account.uid) or {"id": account.uid, "email": account.email}
    role = profile.get("role", UserRole.CUSTOMER.value)
    DatabaseLogger.log_user_activity(user_id=account.uid, action="signin", description="User signed in")
    return TokenResponse(access_token=AuthService.generate_token(account, role), user=profile)

@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
def register(request: RegisterRequest, db: Session = Depends(get_db), store: RealtimeStore = Depends(get_store)):
    """Open sign-up, always as a customer"""
    return _create(db, store, request, UserRole.CUSTOMER)

@router.post("/users", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
def create_user(
    request: CreateUserRequest,
    db: Session = Depends(get_db),
    store: RealtimeStore = Depends(get_store),
    current_user: AuthUser = Depends(get_current_admin)
):
    """Admin creates drivers, customers or other admins"""
    response = _create(db, store, request, request.role)
    DatabaseLogger.log_user_activity(
        user_id=current_user.uid,
        action="create_user",
        description=f"Created {request.role.value} account",
        entity_type="user",
        entity_id=response.user["id"]
    )
    return response

@router.get("/users", response_model=List[UserResponse])
def list_users(
    role: Optional[UserRole] = None,
    store: RealtimeStore = Depends(get_store),
    current_user: AuthUser = Depends(get_current_admin)
):
    users = store.get("users") or {}
    return [
        UserResponse(**{**profile, "id": uid})
        for uid, profile in users.items()
        if isinstance(profile, dict) and (role is None or profile.get("role") == role.value)
    ]

@router.get("/me", response_model=UserResponse)
def me(current_user: AuthUser = Depends(get_current_user), store: RealtimeStore = Depends(get_store)):
    profile = AuthService.get_profile(store, current_user.uid)
    if profile is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Profile not found")
    return UserResponse(**profile)
