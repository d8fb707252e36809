"""
BlueCarbon Ledger - Admin Router
Registry control, account standing and the registry health console.
Every mutation here is recorded on the admin action log.
"""
from typing import List, Optional
import logging

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..auth import require_admin
from ..database import get_db
from ..models.db_models import AccountStatus, UserDB, UserRole
from ..models.registry_schemas import SecurityEventResponse, UserResponse
from ..services.registry import AuditLedger, RegistryGate, TrustRiskEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class RegistryStatusResponse(BaseModel):
    paused: bool
    updated_by: Optional[str] = None
    updated_at: Optional[str] = None


class PauseRequest(BaseModel):
    paused: bool


class UserStatusRequest(BaseModel):
    status: AccountStatus
    note: Optional[str] = None


class TrustScoreRequest(BaseModel):
    trust_score: int = Field(..., ge=0, le=100)


class AdminUserItem(UserResponse):
    """User row on the admin users page."""
    submissions: int
    approved_submissions: int


class UserListResponse(BaseModel):
    users: List[AdminUserItem]
    total: int


class RiskSignalResponse(BaseModel):
    type: str
    count: int
    severity: str
    description: str


class MetricsResponse(BaseModel):
    """Registry health dashboard."""
    total_submissions: int
    submissions_by_status: dict
    confirmation_queue: int
    credits_minted: int
    total_tco2e_minted: str
    credits_sold: int
    sell_through_pct: float
    ai_agreement_rate: float
    risk_signals: List[RiskSignalResponse]
    registry_paused: bool


# =============================================================================
# REGISTRY CONTROL
# =============================================================================

@router.get("/registry", response_model=RegistryStatusResponse)
def get_registry_status(
    admin: UserDB = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return RegistryStatusResponse(**RegistryGate(db).status())


@router.post("/registry/pause", response_model=RegistryStatusResponse)
def set_registry_paused(
    request: PauseRequest,
    admin: UserDB = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """
    Pause or resume the registry. While paused, final confirmation and
    minting fail with 423; nothing is replayed on resume.
    """
    gate = RegistryGate(db)
    gate.set_paused(request.paused, admin)
    return RegistryStatusResponse(**gate.status())


# =============================================================================
# ACCOUNTS
# =============================================================================

@router.get("/users", response_model=UserListResponse)
def list_users(
    role: Optional[UserRole] = Query(None),
    admin: UserDB = Depends(require_admin),
    db: Session = Depends(get_db),
):
    engine = TrustRiskEngine(db)
    users = engine.list_users(role)
    items = []
    for user in users:
        summary = engine.user_summary(user)
        items.append(AdminUserItem(
            **UserResponse.from_db(user).model_dump(),
            submissions=summary["submissions"],
            approved_submissions=summary["approved_submissions"],
        ))
    return UserListResponse(users=items, total=len(items))


@router.put("/users/{user_id}/status", response_model=UserResponse)
def set_user_status(
    user_id: str,
    request: UserStatusRequest,
    admin: UserDB = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """
    Activate, freeze or unfreeze an account. A FROZEN account cannot submit
    evidence or buy credits from its next request on.
    """
    user = TrustRiskEngine(db).set_user_status(user_id, request.status, admin, request.note)
    return UserResponse.from_db(user)


@router.put("/users/{user_id}/trust-score", response_model=UserResponse)
def set_trust_score(
    user_id: str,
    request: TrustScoreRequest,
    admin: UserDB = Depends(require_admin),
    db: Session = Depends(get_db),
):
    user = TrustRiskEngine(db).set_trust_score(user_id, request.trust_score, admin)
    return UserResponse.from_db(user)


# =============================================================================
# CONSOLE
# =============================================================================

@router.get("/metrics", response_model=MetricsResponse)
def get_metrics(
    admin: UserDB = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """AI agreement rate, risk signals and issuance totals."""
    overview = TrustRiskEngine(db).registry_overview()
    return MetricsResponse(**overview, registry_paused=RegistryGate(db).is_paused())


@router.get("/events", response_model=List[SecurityEventResponse])
def get_security_events(
    limit: int = Query(50, ge=1, le=500),
    admin: UserDB = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Administrative actions, most recent first."""
    return [SecurityEventResponse.from_db(e) for e in AuditLedger(db).admin_events(limit)]
