"""
BlueCarbon Ledger - Authentication Router
Handles account registration, login and session verification.
"""
from uuid import uuid4
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, EmailStr, field_validator
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.db_models import AccountStatus, UserDB, UserRole
from ..models.registry_schemas import UserResponse
from ..auth import hash_password, verify_password, create_access_token, get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

# Roles that may self-register; admins are seeded
SELF_SERVICE_ROLES = (UserRole.FISHERMAN, UserRole.NGO, UserRole.CORPORATE)


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class RegisterRequest(BaseModel):
    email: EmailStr
    name: str
    password: str
    role: UserRole = UserRole.FISHERMAN

    @field_validator('name')
    @classmethod
    def validate_name(cls, v):
        if not v.strip():
            raise ValueError('Name is required')
        return v.strip()

    @field_validator('password')
    @classmethod
    def validate_password_strength(cls, v):
        if len(v) < 8:
            raise ValueError('Password must be at least 8 characters')
        return v

    @field_validator('role')
    @classmethod
    def validate_role(cls, v):
        if v not in SELF_SERVICE_ROLES:
            raise ValueError('Admin accounts cannot be self-registered')
        return v


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    role: str


class RegisterResponse(BaseModel):
    message: str
    user: UserResponse


# =============================================================================
# API ENDPOINTS
# =============================================================================

@router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
async def register(request: RegisterRequest, db: Session = Depends(get_db)):
    """
    Register a new account.

    Community members are active immediately. NGO and corporate accounts
    wait in PENDING_KYC until an admin activates them.
    """
    existing_email = db.query(UserDB).filter(UserDB.email == request.email).first()
    if existing_email:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email already registered"
        )

    initial_status = AccountStatus.ACTIVE if request.role == UserRole.FISHERMAN else AccountStatus.PENDING_KYC
    user = UserDB(
        id=str(uuid4()),
        email=request.email,
        name=request.name,
        password_hash=hash_password(request.password),
        role=request.role,
        status=initial_status,
    )

    db.add(user)
    db.commit()
    db.refresh(user)

    logger.info(f"User registered: {request.email} as {request.role.value} ({initial_status.value})")
    return RegisterResponse(message="Account created", user=UserResponse.from_db(user))


@router.post("/login", response_model=TokenResponse)
async def login(request: LoginRequest, db: Session = Depends(get_db)):
    """
    Authenticate and return a JWT token.
    """
    user = db.query(UserDB).filter(UserDB.email == request.email).first()

    if not user or not verify_password(request.password, user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    access_token = create_access_token(user.id, user.email, user.role.value)

    logger.info(f"User logged in: {request.email}")
    return TokenResponse(access_token=access_token, role=user.role.value)


@router.get("/me", response_model=UserResponse)
async def get_me(current_user: UserDB = Depends(get_current_user)):
    """
    Get the current authenticated account.
    """
    return UserResponse.from_db(current_user)
