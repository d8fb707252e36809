"""
BlueCarbon Ledger - SQLAlchemy ORM Models
Persistent storage for submissions, audit trail, credits and registry control
"""
from datetime import datetime, timezone
from enum import Enum
from sqlalchemy import (
    Column, String, Integer, Float, DateTime, Text, JSON, ForeignKey, Numeric,
    Boolean, CheckConstraint, UniqueConstraint, Enum as SQLEnum, event,
)
from sqlalchemy.orm import relationship, validates
from ..config import DEFAULT_TRUST_SCORE
from ..database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp (all stored timestamps are UTC)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ImmutableRecordError(Exception):
    """Raised when an append-only row is updated or deleted."""


# =============================================================================
# ENUMS
# =============================================================================

class UserRole(str, Enum):
    """Actor roles. FISHERMAN is the community member who collects field evidence."""
    FISHERMAN = "FISHERMAN"
    NGO = "NGO"
    ADMIN = "ADMIN"
    CORPORATE = "CORPORATE"


class AccountStatus(str, Enum):
    """Account standing."""
    ACTIVE = "ACTIVE"
    FROZEN = "FROZEN"
    PENDING_KYC = "PENDING_KYC"


class EcosystemType(str, Enum):
    """Restoration ecosystem a submission documents."""
    MANGROVE = "MANGROVE"
    SEAGRASS = "SEAGRASS"


class SubmissionStatus(str, Enum):
    """States in the submission lifecycle."""
    PENDING = "PENDING"
    IN_REVIEW = "IN_REVIEW"
    FIELD_CHECK = "FIELD_CHECK"
    AI_VERIFIED = "AI_VERIFIED"
    AI_FAILED = "AI_FAILED"
    NGO_APPROVED = "NGO_APPROVED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class CreditStatus(str, Enum):
    """Marketplace status of a credit record."""
    AVAILABLE = "AVAILABLE"
    SOLD = "SOLD"
    FROZEN = "FROZEN"


class AdminAction(str, Enum):
    """Administrative actions recorded on the admin action log."""
    REGISTRY_PAUSED = "REGISTRY_PAUSED"
    REGISTRY_RESUMED = "REGISTRY_RESUMED"
    ACCOUNT_STATUS_CHANGED = "ACCOUNT_STATUS_CHANGED"
    ACCOUNT_FREEZE = "ACCOUNT_FREEZE"
    ACCOUNT_UNFREEZE = "ACCOUNT_UNFREEZE"
    TRUST_SCORE_SET = "TRUST_SCORE_SET"
    CREDIT_FREEZE = "CREDIT_FREEZE"
    CREDIT_UNFREEZE = "CREDIT_UNFREEZE"


# =============================================================================
# USERS
# =============================================================================

class UserDB(Base):
    """Registry account. Role is fixed at creation."""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True)  # UUID
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    password_hash = Column(String(255), nullable=False)

    role = Column(SQLEnum(UserRole), nullable=False)
    status = Column(SQLEnum(AccountStatus), nullable=False, default=AccountStatus.ACTIVE)
    trust_score = Column(Integer, nullable=False, default=DEFAULT_TRUST_SCORE)  # 0-100

    # Aggregates
    earnings = Column(Numeric(14, 4), nullable=False, default=0)  # USD, community members
    credits_purchased = Column(Numeric(14, 4), nullable=False, default=0)  # tCO2e, buyers

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    submissions = relationship("SubmissionDB", back_populates="user")
    owned_credits = relationship("CreditRecordDB", back_populates="owner")

    @validates("role")
    def _validate_role(self, key, value):
        if self.role is not None and value != self.role:
            raise ImmutableRecordError(f"Role of user {self.id} cannot change")
        return value


# =============================================================================
# SUBMISSIONS
# =============================================================================

class SubmissionDB(Base):
    """
    One field-evidence record.

    Identity, evidence, scoring and credits_generated are fixed at ingestion.
    Review mutates status, the review annotations and the audit trail only.
    """
    __tablename__ = "submissions"

    id = Column(String(36), primary_key=True)  # UUID
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    user_name = Column(String(255), nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    # Evidence
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    region = Column(String(255), nullable=False)
    image_url = Column(String(500), nullable=False)
    image_hash = Column(String(64), nullable=False)  # SHA-256 of the uploaded image
    ecosystem_type = Column(SQLEnum(EcosystemType), nullable=False)
    maps_url = Column(String(500), nullable=True)
    record_hash = Column(String(64), nullable=False)  # SHA-256 over identity + evidence

    # Scoring (oracle output)
    ai_score = Column(Float, nullable=False, default=0.0)
    ai_reasoning = Column(Text, nullable=False, default="")
    detected_features = Column(JSON, nullable=False, default=list)
    environmental_context = Column(String(255), nullable=False, default="Coastal")

    # Lifecycle
    status = Column(SQLEnum(SubmissionStatus), nullable=False, index=True)
    credits_generated = Column(Numeric(12, 4), nullable=False)
    ai_overridden = Column(Boolean, nullable=False, default=False)
    verifier_comments = Column(Text, nullable=True)

    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    user = relationship("UserDB", back_populates="submissions")
    audit_trail = relationship(
        "SubmissionAuditLogDB",
        back_populates="submission",
        order_by="SubmissionAuditLogDB.sequence",
    )
    credit = relationship("CreditRecordDB", back_populates="submission", uselist=False)

    @validates("credits_generated", "created_at", "user_id")
    def _validate_fixed(self, key, value):
        current = getattr(self, key)
        if current is not None and value != current:
            raise ImmutableRecordError(f"{key} of submission {self.id} cannot change")
        return value


class SubmissionAuditLogDB(Base):
    """
    Append-only audit trail of a submission.
    Sequence numbers are dense and timestamps monotonic per submission.
    """
    __tablename__ = "submission_audit_log"
    __table_args__ = (
        UniqueConstraint("submission_id", "sequence", name="uq_submission_audit_sequence"),
    )

    id = Column(String(36), primary_key=True)  # UUID
    submission_id = Column(String(36), ForeignKey("submissions.id"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)

    timestamp = Column(DateTime, nullable=False)
    actor = Column(String(255), nullable=False)  # Display name of the actor
    actor_id = Column(String(36), nullable=True)
    action = Column(String(100), nullable=False)
    note = Column(Text, nullable=True)

    from_status = Column(SQLEnum(SubmissionStatus), nullable=True)
    to_status = Column(SQLEnum(SubmissionStatus), nullable=True)

    # Relationships
    submission = relationship("SubmissionDB", back_populates="audit_trail")


# =============================================================================
# CREDITS
# =============================================================================

class CreditRecordDB(Base):
    """One tradeable credit minted from exactly one approved submission."""
    __tablename__ = "credit_records"
    __table_args__ = (
        CheckConstraint(
            "(owner_id IS NULL) = (purchase_date IS NULL)",
            name="ck_credit_owner_purchase_date",
        ),
    )

    id = Column(String(36), primary_key=True)  # UUID
    submission_id = Column(String(36), ForeignKey("submissions.id"), nullable=False, unique=True)

    amount = Column(Numeric(12, 4), nullable=False)  # tCO2e
    vintage = Column(String(4), nullable=False)
    status = Column(SQLEnum(CreditStatus), nullable=False, default=CreditStatus.AVAILABLE, index=True)
    frozen_from_status = Column(String(20), nullable=True)  # Status restored on unfreeze

    owner_id = Column(String(36), ForeignKey("users.id"), nullable=True, index=True)
    purchase_date = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    submission = relationship("SubmissionDB", back_populates="credit")
    owner = relationship("UserDB", back_populates="owned_credits")


# =============================================================================
# REGISTRY CONTROL
# =============================================================================

class RegistryControlDB(Base):
    """Single-row registry-wide control state."""
    __tablename__ = "registry_control"

    id = Column(Integer, primary_key=True)  # Always 1
    paused = Column(Boolean, nullable=False, default=False)
    updated_by = Column(String(36), nullable=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class AdminActionLogDB(Base):
    """
    Immutable record of administrative actions.
    Append-only - surfaced as security events.
    """
    __tablename__ = "admin_action_log"

    id = Column(String(36), primary_key=True)  # UUID
    actor_id = Column(String(36), nullable=False, index=True)
    actor_name = Column(String(255), nullable=False)
    action = Column(SQLEnum(AdminAction), nullable=False)
    target = Column(String(64), nullable=False)  # User id, credit id or "registry"
    note = Column(Text, nullable=True)
    event_metadata = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow)


def _reject_mutation(mapper, connection, target):
    raise ImmutableRecordError(f"{type(target).__name__} rows are append-only")


for _append_only in (SubmissionAuditLogDB, AdminActionLogDB):
    event.listen(_append_only, "before_update", _reject_mutation)
    event.listen(_append_only, "before_delete", _reject_mutation)
