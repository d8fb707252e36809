"""
BlueCarbon Ledger - Registry Response Models
Pydantic shapes shared by the routers. Timestamps are ISO-8601 strings and
quantities are decimals, never truncated.
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel

from .db_models import AdminActionLogDB, CreditRecordDB, SubmissionAuditLogDB, SubmissionDB, UserDB
from .. import config


def _iso(dt: Optional[datetime]) -> Optional[str]:
    """Format a stored (naive UTC) timestamp as ISO-8601."""
    if dt is None:
        return None
    return dt.isoformat() + "Z"


class AuditEntryResponse(BaseModel):
    """One entry of a submission's audit trail."""
    sequence: int
    timestamp: str
    actor: str
    actor_id: Optional[str] = None
    action: str
    note: Optional[str] = None
    from_status: Optional[str] = None
    to_status: Optional[str] = None

    @classmethod
    def from_db(cls, entry: SubmissionAuditLogDB) -> "AuditEntryResponse":
        return cls(
            sequence=entry.sequence,
            timestamp=_iso(entry.timestamp),
            actor=entry.actor,
            actor_id=entry.actor_id,
            action=entry.action,
            note=entry.note,
            from_status=entry.from_status.value if entry.from_status else None,
            to_status=entry.to_status.value if entry.to_status else None,
        )


class SubmissionResponse(BaseModel):
    """Persisted shape of a submission."""
    id: str
    user_id: str
    user_name: str
    timestamp: str
    latitude: float
    longitude: float
    region: str
    image_url: str
    image_hash: str
    ecosystem_type: str
    maps_url: Optional[str] = None
    record_hash: str

    ai_score: float
    ai_reasoning: str
    detected_features: List[str]
    environmental_context: str

    status: str
    credits_generated: Decimal
    ai_overridden: bool
    verifier_comments: Optional[str] = None
    credit_id: Optional[str] = None

    audit_trail: List[AuditEntryResponse] = []

    @classmethod
    def from_db(cls, submission: SubmissionDB, include_trail: bool = True) -> "SubmissionResponse":
        return cls(
            id=submission.id,
            user_id=submission.user_id,
            user_name=submission.user_name,
            timestamp=_iso(submission.created_at),
            latitude=submission.latitude,
            longitude=submission.longitude,
            region=submission.region,
            image_url=submission.image_url,
            image_hash=submission.image_hash,
            ecosystem_type=submission.ecosystem_type.value,
            maps_url=submission.maps_url,
            record_hash=submission.record_hash,
            ai_score=submission.ai_score,
            ai_reasoning=submission.ai_reasoning,
            detected_features=list(submission.detected_features or []),
            environmental_context=submission.environmental_context,
            status=submission.status.value,
            credits_generated=submission.credits_generated,
            ai_overridden=bool(submission.ai_overridden),
            verifier_comments=submission.verifier_comments,
            credit_id=submission.credit.id if submission.credit else None,
            audit_trail=(
                [AuditEntryResponse.from_db(e) for e in submission.audit_trail] if include_trail else []
            ),
        )


class CreditResponse(BaseModel):
    """Credit record with its market quote."""
    id: str
    submission_id: str
    amount: Decimal
    vintage: str
    status: str
    owner_id: Optional[str] = None
    purchase_date: Optional[str] = None
    price: Decimal
    created_at: Optional[str] = None

    @classmethod
    def from_db(cls, credit: CreditRecordDB) -> "CreditResponse":
        amount = Decimal(credit.amount)
        return cls(
            id=credit.id,
            submission_id=credit.submission_id,
            amount=amount,
            vintage=credit.vintage,
            status=credit.status.value,
            owner_id=credit.owner_id,
            purchase_date=_iso(credit.purchase_date),
            price=(amount * config.CREDIT_PRICE_PER_TONNE).quantize(Decimal("0.01")),
            created_at=_iso(credit.created_at),
        )


class UserResponse(BaseModel):
    """Account as seen by the user themselves and by admins."""
    id: str
    email: str
    name: str
    role: str
    status: str
    trust_score: int
    earnings: Decimal
    credits_purchased: Decimal
    created_at: Optional[str] = None

    @classmethod
    def from_db(cls, user: UserDB) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            role=user.role.value,
            status=user.status.value,
            trust_score=user.trust_score,
            earnings=Decimal(user.earnings or 0),
            credits_purchased=Decimal(user.credits_purchased or 0),
            created_at=_iso(user.created_at),
        )


class SecurityEventResponse(BaseModel):
    """Administrative action surfaced as a security event."""
    id: str
    actor_id: str
    actor_name: str
    action: str
    target: str
    note: Optional[str] = None
    metadata: Optional[dict] = None
    created_at: Optional[str] = None

    @classmethod
    def from_db(cls, event: AdminActionLogDB) -> "SecurityEventResponse":
        return cls(
            id=event.id,
            actor_id=event.actor_id,
            actor_name=event.actor_name,
            action=event.action.value,
            target=event.target,
            note=event.note,
            metadata=event.event_metadata,
            created_at=_iso(event.created_at),
        )
