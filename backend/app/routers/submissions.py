"""
BlueCarbon Ledger - Submissions Router
Ingestion and review boundaries for field-evidence submissions.
"""
from typing import List, Optional
import logging

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..auth import get_current_user
from ..database import get_db
from ..models.db_models import SubmissionStatus, UserDB, UserRole
from ..models.registry_schemas import AuditEntryResponse, SubmissionResponse
from ..services.registry import ScoringOracle, SubmissionService, get_scoring_oracle

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/submissions", tags=["submissions"])


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class ReviewRequest(BaseModel):
    """Reviewer decision on a submission."""
    target_status: SubmissionStatus
    note: Optional[str] = None


class SubmissionListResponse(BaseModel):
    submissions: List[SubmissionResponse]
    total: int


# =============================================================================
# INGESTION
# =============================================================================

@router.post("", response_model=SubmissionResponse, status_code=status.HTTP_201_CREATED)
async def create_submission(
    ecosystem_type: str = Form(...),
    lat: float = Form(...),
    lng: float = Form(...),
    region: Optional[str] = Form(None),
    image: UploadFile = File(...),
    current_user: UserDB = Depends(get_current_user),
    db: Session = Depends(get_db),
    oracle: ScoringOracle = Depends(get_scoring_oracle),
):
    """
    Upload field evidence.

    The image is scored by the oracle before the submission is created;
    the submission starts in AI_VERIFIED or PENDING depending on confidence.
    """
    image_bytes = await image.read()
    service = SubmissionService(db)
    submission = await service.ingest(
        author_id=current_user.id,
        ecosystem_type=ecosystem_type,
        image_bytes=image_bytes,
        lat=lat,
        lng=lng,
        oracle=oracle,
        region=region,
    )
    return SubmissionResponse.from_db(submission)


# =============================================================================
# READS
# =============================================================================

@router.get("", response_model=SubmissionListResponse)
def list_submissions(
    status_filter: Optional[SubmissionStatus] = Query(None, alias="status"),
    current_user: UserDB = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    List submissions, newest first.
    Community members only see their own.
    """
    service = SubmissionService(db)
    user_id = current_user.id if current_user.role == UserRole.FISHERMAN else None
    submissions = service.list_submissions(status=status_filter, user_id=user_id)
    return SubmissionListResponse(
        submissions=[SubmissionResponse.from_db(s, include_trail=False) for s in submissions],
        total=len(submissions),
    )


@router.get("/queue/confirmation", response_model=SubmissionListResponse)
def confirmation_queue(
    current_user: UserDB = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """NGO-approved submissions awaiting final registry confirmation."""
    submissions = SubmissionService(db).confirmation_queue()
    return SubmissionListResponse(
        submissions=[SubmissionResponse.from_db(s, include_trail=False) for s in submissions],
        total=len(submissions),
    )


@router.get("/{submission_id}", response_model=SubmissionResponse)
def get_submission(
    submission_id: str,
    current_user: UserDB = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return SubmissionResponse.from_db(SubmissionService(db).get(submission_id))


@router.get("/{submission_id}/audit-trail", response_model=List[AuditEntryResponse])
def get_audit_trail(
    submission_id: str,
    current_user: UserDB = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Append-ordered audit trail of one submission."""
    entries = SubmissionService(db).audit_trail(submission_id)
    return [AuditEntryResponse.from_db(e) for e in entries]


# =============================================================================
# REVIEW
# =============================================================================

@router.post("/{submission_id}/review", response_model=SubmissionResponse)
def review_submission(
    submission_id: str,
    request: ReviewRequest,
    current_user: UserDB = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Move a submission along its lifecycle.

    A target of APPROVED is the final registry confirmation and mints the
    submission's credit in the same operation. Repeating a decision that
    already took effect succeeds without a new audit entry.
    """
    service = SubmissionService(db)
    submission = service.review(submission_id, current_user, request.target_status, request.note)
    logger.info(f"Review {submission_id} -> {request.target_status.value} by {current_user.id}")
    return SubmissionResponse.from_db(submission)
