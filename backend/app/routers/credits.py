"""
BlueCarbon Ledger - Credits Router
Issuance, marketplace listing, settlement and quarantine of credit records.
"""
from decimal import Decimal
from typing import List, Optional
import logging

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..auth import get_current_user, require_admin
from ..database import get_db
from ..models.db_models import CreditStatus, UserDB
from ..models.registry_schemas import CreditResponse
from ..services.registry import CreditIssuanceService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/credits", tags=["credits"])


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class MintRequest(BaseModel):
    submission_id: str
    note: Optional[str] = None


class QuarantineRequest(BaseModel):
    note: Optional[str] = None


class CreditListResponse(BaseModel):
    credits: List[CreditResponse]
    total: int
    total_amount: Decimal


class PortfolioResponse(BaseModel):
    """Credits owned by the calling buyer."""
    credits: List[CreditResponse]
    total_amount: Decimal
    total_value: Decimal


def _listing(credits) -> CreditListResponse:
    items = [CreditResponse.from_db(c) for c in credits]
    return CreditListResponse(
        credits=items,
        total=len(items),
        total_amount=sum((c.amount for c in items), Decimal("0")),
    )


# =============================================================================
# ISSUANCE
# =============================================================================

@router.post("/mint", response_model=CreditResponse, status_code=status.HTTP_201_CREATED)
def mint_credit(
    request: MintRequest,
    admin: UserDB = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """
    Confirm an NGO-approved submission and mint its credit.
    Blocked with 423 while the registry is paused.
    """
    credit = CreditIssuanceService(db).mint(request.submission_id, admin, request.note)
    return CreditResponse.from_db(credit)


# =============================================================================
# MARKETPLACE
# =============================================================================

@router.get("", response_model=CreditListResponse)
def list_credits(
    status_filter: Optional[CreditStatus] = Query(None, alias="status"),
    current_user: UserDB = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Credit listings with their market quote. Filter with ?status=AVAILABLE."""
    return _listing(CreditIssuanceService(db).list_credits(status_filter))


@router.get("/portfolio", response_model=PortfolioResponse)
def get_portfolio(
    current_user: UserDB = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    items = [CreditResponse.from_db(c) for c in CreditIssuanceService(db).portfolio(current_user.id)]
    return PortfolioResponse(
        credits=items,
        total_amount=sum((c.amount for c in items), Decimal("0")),
        total_value=sum((c.price for c in items), Decimal("0")),
    )


@router.post("/{credit_id}/purchase", response_model=CreditResponse)
def purchase_credit(
    credit_id: str,
    current_user: UserDB = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Buy an AVAILABLE credit. Exactly one of several concurrent buyers wins;
    the others get 409.
    """
    credit = CreditIssuanceService(db).purchase(credit_id, current_user.id)
    return CreditResponse.from_db(credit)


# =============================================================================
# QUARANTINE
# =============================================================================

@router.post("/{credit_id}/freeze", response_model=CreditResponse)
def freeze_credit(
    credit_id: str,
    request: Optional[QuarantineRequest] = None,
    admin: UserDB = Depends(require_admin),
    db: Session = Depends(get_db),
):
    note = request.note if request else None
    credit = CreditIssuanceService(db).freeze(credit_id, admin, note)
    return CreditResponse.from_db(credit)


@router.post("/{credit_id}/unfreeze", response_model=CreditResponse)
def unfreeze_credit(
    credit_id: str,
    request: Optional[QuarantineRequest] = None,
    admin: UserDB = Depends(require_admin),
    db: Session = Depends(get_db),
):
    note = request.note if request else None
    credit = CreditIssuanceService(db).unfreeze(credit_id, admin, note)
    return CreditResponse.from_db(credit)
