"""
Trust & Risk Engine

Read-only metrics recomputed from the submission corpus, plus the admin
controls over account standing and trust score.

Metrics are advisory. Nothing here blocks the submission pipeline; account
standing is enforced where it matters (ingestion, review, purchase) by
reading UserDB.status at call time.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ... import config
from ...models.db_models import (
    AccountStatus, AdminAction, CreditRecordDB, CreditStatus, SubmissionDB,
    SubmissionStatus, UserDB, UserRole,
)
from .audit_ledger import AuditLedger
from .authorization import ensure_active
from .errors import AuthorizationError, NotFoundError, ValidationError
from .locks import KeyedLocks, registry_locks, user_key
from .unit_of_work import atomic

logger = logging.getLogger(__name__)


DUPLICATE_MARKER = "duplicate"

TRUST_SCORE_MIN = 0
TRUST_SCORE_MAX = 100


@dataclass
class RiskSignal:
    """One advisory counter shown on the admin dashboard."""
    type: str
    count: int
    severity: str
    description: str

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "count": self.count,
            "severity": self.severity,
            "description": self.description,
        }


class TrustRiskEngine:
    """Derives registry health metrics and applies account-level admin actions."""

    def __init__(self, db: Session, locks: KeyedLocks = None, ledger: AuditLedger = None):
        self.db = db
        self.locks = locks or registry_locks
        self.ledger = ledger or AuditLedger(db)

    # =========================================================================
    # DERIVED METRICS
    # =========================================================================

    def ai_agreement_rate(self) -> float:
        """
        Percentage of human-resolved submissions where the oracle agreed with
        the final decision. 100.0 when nothing has been resolved yet.
        """
        resolved = (
            self.db.query(SubmissionDB.ai_score, SubmissionDB.status)
            .filter(SubmissionDB.status.in_([SubmissionStatus.APPROVED, SubmissionStatus.REJECTED]))
            .all()
        )
        if not resolved:
            return 100.0

        agreed = sum(
            1 for score, status in resolved
            if (score > config.AI_VERIFIED_THRESHOLD) == (status == SubmissionStatus.APPROVED)
        )
        return round(agreed / len(resolved) * 100, 1)

    def risk_signals(self) -> List[RiskSignal]:
        duplicates = (
            self.db.query(func.count(SubmissionDB.id))
            .filter(func.lower(SubmissionDB.ai_reasoning).contains(DUPLICATE_MARKER))
            .scalar()
        ) or 0
        low_confidence = (
            self.db.query(func.count(SubmissionDB.id))
            .filter(SubmissionDB.ai_score < config.LOW_CONFIDENCE_THRESHOLD)
            .scalar()
        ) or 0
        overridden = (
            self.db.query(func.count(SubmissionDB.id))
            .filter(SubmissionDB.ai_overridden.is_(True))
            .scalar()
        ) or 0

        return [
            RiskSignal(
                type="Duplicate GPS",
                count=duplicates,
                severity="High",
                description="Oracle reasoning flags the location or image as a duplicate",
            ),
            RiskSignal(
                type="Low Confidence",
                count=low_confidence,
                severity="Medium",
                description=f"Oracle confidence below {config.LOW_CONFIDENCE_THRESHOLD}",
            ),
            RiskSignal(
                type="Override Rate",
                count=overridden,
                severity="Low",
                description="Human reviewers overrode the oracle verdict",
            ),
        ]

    def submissions_by_status(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in SubmissionStatus}
        rows = (
            self.db.query(SubmissionDB.status, func.count(SubmissionDB.id))
            .group_by(SubmissionDB.status)
            .all()
        )
        for status, count in rows:
            counts[status.value] = count
        return counts

    def registry_overview(self) -> dict:
        """Headline numbers for the registry dashboard."""
        credits = self.db.query(CreditRecordDB.amount, CreditRecordDB.status).all()
        total_minted = sum((Decimal(amount) for amount, _ in credits), Decimal("0"))
        sold = sum(1 for _, status in credits if status == CreditStatus.SOLD)
        sell_through = round(sold / len(credits) * 100, 1) if credits else 0.0

        by_status = self.submissions_by_status()
        return {
            "total_submissions": sum(by_status.values()),
            "submissions_by_status": by_status,
            "confirmation_queue": by_status[SubmissionStatus.NGO_APPROVED.value],
            "credits_minted": len(credits),
            "total_tco2e_minted": str(total_minted),
            "credits_sold": sold,
            "sell_through_pct": sell_through,
            "ai_agreement_rate": self.ai_agreement_rate(),
            "risk_signals": [signal.to_dict() for signal in self.risk_signals()],
        }

    def user_summary(self, user: UserDB) -> dict:
        """Per-user activity used on the admin users page."""
        submitted = (
            self.db.query(func.count(SubmissionDB.id))
            .filter(SubmissionDB.user_id == user.id)
            .scalar()
        ) or 0
        approved = (
            self.db.query(func.count(SubmissionDB.id))
            .filter(SubmissionDB.user_id == user.id, SubmissionDB.status == SubmissionStatus.APPROVED)
            .scalar()
        ) or 0
        return {
            "submissions": submitted,
            "approved_submissions": approved,
            "earnings": str(user.earnings or 0),
            "credits_purchased": str(user.credits_purchased or 0),
        }

    # =========================================================================
    # ADMIN ACTIONS
    # =========================================================================

    def set_user_status(
        self,
        user_id: str,
        status: AccountStatus,
        actor: UserDB,
        note: Optional[str] = None,
    ) -> UserDB:
        """
        Change an account's standing. Takes effect for the next call that user
        makes. Setting the current status again is a no-op success.
        """
        self._require_admin(actor, "change account status")
        if user_id == actor.id:
            raise AuthorizationError("Admins cannot change their own account status")

        with self.locks.hold(user_key(user_id)), atomic(self.db, "account status change"):
            user = self._load_user(user_id)
            previous = user.status
            if previous == status:
                return user

            user.status = status
            if status == AccountStatus.FROZEN:
                action = AdminAction.ACCOUNT_FREEZE
            elif previous == AccountStatus.FROZEN:
                action = AdminAction.ACCOUNT_UNFREEZE
            else:
                action = AdminAction.ACCOUNT_STATUS_CHANGED
            self.ledger.record_admin_action(
                actor_id=actor.id,
                actor_name=actor.name,
                action=action,
                target=user.id,
                note=note,
                metadata={"from": previous.value, "to": status.value},
            )

        logger.info(f"User {user_id} status {previous.value} -> {status.value} by {actor.id}")
        return user

    def freeze_user(self, user_id: str, actor: UserDB, note: Optional[str] = None) -> UserDB:
        return self.set_user_status(user_id, AccountStatus.FROZEN, actor, note)

    def unfreeze_user(self, user_id: str, actor: UserDB, note: Optional[str] = None) -> UserDB:
        return self.set_user_status(user_id, AccountStatus.ACTIVE, actor, note)

    def set_trust_score(self, user_id: str, score: int, actor: UserDB) -> UserDB:
        self._require_admin(actor, "set trust scores")
        if not TRUST_SCORE_MIN <= score <= TRUST_SCORE_MAX:
            raise ValidationError(f"Trust score must be between {TRUST_SCORE_MIN} and {TRUST_SCORE_MAX}")

        with self.locks.hold(user_key(user_id)), atomic(self.db, "trust score change"):
            user = self._load_user(user_id)
            previous = user.trust_score
            if previous == score:
                return user

            user.trust_score = score
            self.ledger.record_admin_action(
                actor_id=actor.id,
                actor_name=actor.name,
                action=AdminAction.TRUST_SCORE_SET,
                target=user.id,
                metadata={"from": previous, "to": score},
            )

        logger.info(f"User {user_id} trust score {previous} -> {score} by {actor.id}")
        return user

    def list_users(self, role: Optional[UserRole] = None) -> List[UserDB]:
        query = self.db.query(UserDB)
        if role is not None:
            query = query.filter(UserDB.role == role)
        return query.order_by(UserDB.created_at.desc()).all()

    def _load_user(self, user_id: str) -> UserDB:
        user = self.db.get(UserDB, user_id, populate_existing=True)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        return user

    @staticmethod
    def _require_admin(actor: UserDB, action: str) -> None:
        if actor.role != UserRole.ADMIN:
            raise AuthorizationError(f"Only registry admins can {action}")
        ensure_active(actor, action)
