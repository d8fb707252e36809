"""
Credit Issuance & Settlement Service

Mints credit records from NGO-approved submissions and settles them to buyers.

AUTHORITY MODEL:
- ADMIN: final confirmation + minting (one atomic unit), freeze / unfreeze
- CORPORATE: purchase

INVARIANTS:
- Final confirmation and minting succeed or fail together.
- A submission yields at most one credit (checked here, enforced by a unique key).
- AVAILABLE -> SOLD happens once per credit; concurrent buyers get exactly
  one winner via a conditional update on status.
- owner_id and purchase_date are written together or not at all.
- FROZEN is an administrative quarantine, undone only by unfreeze, which
  restores the status the credit had before.
"""
import logging
from decimal import Decimal
from typing import List, Optional, Tuple
from uuid import uuid4

from sqlalchemy import update
from sqlalchemy.orm import Session

from ... import config
from ...models.db_models import (
    AdminAction, CreditRecordDB, CreditStatus, SubmissionDB, SubmissionStatus,
    UserDB, UserRole, utcnow,
)
from .audit_ledger import AuditLedger
from .authorization import ensure_active
from .errors import (
    AuthorizationError, InvalidTransitionError, NotFoundError, StateConflictError,
)
from .locks import KeyedLocks, credit_key, registry_locks, submission_key
from .registry_gate import RegistryGate
from .state_machine import SubmissionStateMachine
from .unit_of_work import atomic

logger = logging.getLogger(__name__)


DEFAULT_CONFIRMATION_NOTE = "Verified NGO scientific audit. Minting credits to the registry ledger."


class CreditIssuanceService:
    """Mint, settle and quarantine credit records."""

    def __init__(
        self,
        db: Session,
        locks: KeyedLocks = None,
        ledger: AuditLedger = None,
        gate: RegistryGate = None,
        state_machine: SubmissionStateMachine = None,
    ):
        self.db = db
        self.locks = locks or registry_locks
        self.ledger = ledger or AuditLedger(db)
        self.gate = gate or RegistryGate(db, locks=self.locks, ledger=self.ledger)
        self.state_machine = state_machine or SubmissionStateMachine(
            db, ledger=self.ledger, gate=self.gate, locks=self.locks
        )

    # =========================================================================
    # ISSUANCE
    # =========================================================================

    def mint(self, submission_id: str, actor: UserDB, note: Optional[str] = None) -> CreditRecordDB:
        """
        Confirm an NGO-approved submission and mint its credit.

        Raises:
            AuthorizationError: actor is not an active ADMIN
            RegistryPausedError: registry is paused
            StateConflictError: credit already minted, or submission not NGO_APPROVED
        """
        _, credit = self.confirm_and_mint(submission_id, actor, note)
        return credit

    def confirm_and_mint(
        self,
        submission_id: str,
        actor: UserDB,
        note: Optional[str] = None,
        replay_ok: bool = False,
    ) -> Tuple[SubmissionDB, Optional[CreditRecordDB]]:
        """
        NGO_APPROVED -> APPROVED plus a new AVAILABLE credit, in one unit of work.

        With replay_ok, a submission that is already APPROVED when the lock is
        acquired is returned unchanged with its existing credit, so a repeated
        confirmation succeeds without a second audit entry.
        """
        if actor.role != UserRole.ADMIN:
            raise AuthorizationError("Only registry admins can confirm submissions and mint credits")

        with self.locks.hold(submission_key(submission_id)), atomic(self.db, "credit minting"):
            submission = self.state_machine.load(submission_id)
            if replay_ok and submission.status == SubmissionStatus.APPROVED:
                self.state_machine.apply(submission, actor, SubmissionStatus.APPROVED)
                return submission, submission.credit

            self.gate.ensure_open("credit minting")

            existing = (
                self.db.query(CreditRecordDB)
                .filter(CreditRecordDB.submission_id == submission_id)
                .first()
            )
            if existing is not None:
                raise StateConflictError(
                    f"Submission {submission_id} already minted credit {existing.id}"
                )
            if submission.status != SubmissionStatus.NGO_APPROVED:
                raise InvalidTransitionError(
                    f"Submission {submission_id} is {submission.status.value}; "
                    f"only NGO_APPROVED submissions can be minted"
                )

            self.state_machine.apply(
                submission, actor, SubmissionStatus.APPROVED, note or DEFAULT_CONFIRMATION_NOTE
            )

            credit = CreditRecordDB(
                id=str(uuid4()),
                submission_id=submission.id,
                amount=submission.credits_generated,
                vintage=str(utcnow().year),
                status=CreditStatus.AVAILABLE,
            )
            self.db.add(credit)
            self.db.flush()

            self.ledger.append(
                submission,
                actor=actor.name,
                action="Credits Minted",
                actor_id=actor.id,
                note=f"{credit.amount} tCO2e minted as credit {credit.id} (vintage {credit.vintage})",
            )
            self.db.execute(
                update(UserDB)
                .where(UserDB.id == submission.user_id)
                .values(earnings=UserDB.earnings + self.quote_amount(credit.amount))
            )

        logger.info(f"Minted credit {credit.id} ({credit.amount} tCO2e) from submission {submission_id}")
        return submission, credit

    # =========================================================================
    # SETTLEMENT
    # =========================================================================

    def purchase(self, credit_id: str, buyer_id: str) -> CreditRecordDB:
        """
        Settle an AVAILABLE credit to a buyer.

        Raises:
            NotFoundError: unknown credit or buyer
            AuthorizationError: buyer is not an active CORPORATE account
            StateConflictError: credit is not AVAILABLE (sold, frozen, or lost race)
        """
        with self.locks.hold(credit_key(credit_id)), atomic(self.db, "credit purchase"):
            credit = self._load_credit(credit_id)
            buyer = self.db.get(UserDB, buyer_id, populate_existing=True)
            if buyer is None:
                raise NotFoundError(f"Buyer {buyer_id} not found")
            if buyer.role != UserRole.CORPORATE:
                raise AuthorizationError("Only corporate buyers can purchase credits")
            ensure_active(buyer, "purchase credits")

            if credit.status != CreditStatus.AVAILABLE:
                raise StateConflictError(f"Credit {credit_id} is {credit.status.value}, not AVAILABLE")

            purchased_at = utcnow()
            result = self.db.execute(
                update(CreditRecordDB)
                .where(CreditRecordDB.id == credit_id, CreditRecordDB.status == CreditStatus.AVAILABLE)
                .values(
                    status=CreditStatus.SOLD,
                    owner_id=buyer.id,
                    purchase_date=purchased_at,
                    updated_at=purchased_at,
                )
            )
            if result.rowcount != 1:
                raise StateConflictError(f"Credit {credit_id} was purchased concurrently")

            self.db.execute(
                update(UserDB)
                .where(UserDB.id == buyer.id)
                .values(credits_purchased=UserDB.credits_purchased + credit.amount)
            )

            with self.locks.hold(submission_key(credit.submission_id)):
                submission = self.state_machine.load(credit.submission_id)
                self.ledger.append(
                    submission,
                    actor=buyer.name,
                    action="Credit Purchased",
                    actor_id=buyer.id,
                    note=f"Credit {credit.id} settled to {buyer.name}",
                )

        self.db.refresh(credit)
        logger.info(f"Credit {credit_id} sold to {buyer_id}")
        return credit

    # =========================================================================
    # QUARANTINE
    # =========================================================================

    def freeze(self, credit_id: str, actor: UserDB, note: Optional[str] = None) -> CreditRecordDB:
        """Quarantine a credit. Already-frozen credits are a no-op success."""
        self._require_admin(actor, "freeze credits")

        with self.locks.hold(credit_key(credit_id)), atomic(self.db, "credit freeze"):
            credit = self._load_credit(credit_id)
            if credit.status == CreditStatus.FROZEN:
                return credit

            prior = credit.status
            self._swap_status(credit, prior, CreditStatus.FROZEN, frozen_from_status=prior.value)
            self._record_credit_action(credit, actor, AdminAction.CREDIT_FREEZE, "Credit Frozen", note)

        logger.info(f"Credit {credit_id} frozen by {actor.id} (was {prior.value})")
        return credit

    def unfreeze(self, credit_id: str, actor: UserDB, note: Optional[str] = None) -> CreditRecordDB:
        """Lift a quarantine, restoring the prior status. Non-frozen credits are a no-op success."""
        self._require_admin(actor, "unfreeze credits")

        with self.locks.hold(credit_key(credit_id)), atomic(self.db, "credit unfreeze"):
            credit = self._load_credit(credit_id)
            if credit.status != CreditStatus.FROZEN:
                return credit

            if credit.frozen_from_status:
                restored = CreditStatus(credit.frozen_from_status)
            else:
                restored = CreditStatus.SOLD if credit.owner_id else CreditStatus.AVAILABLE
            self._swap_status(credit, CreditStatus.FROZEN, restored, frozen_from_status=None)
            self._record_credit_action(credit, actor, AdminAction.CREDIT_UNFREEZE, "Credit Unfrozen", note)

        logger.info(f"Credit {credit_id} unfrozen by {actor.id} (now {restored.value})")
        return credit

    def _swap_status(
        self,
        credit: CreditRecordDB,
        expected: CreditStatus,
        new_status: CreditStatus,
        frozen_from_status: Optional[str],
    ) -> None:
        result = self.db.execute(
            update(CreditRecordDB)
            .where(CreditRecordDB.id == credit.id, CreditRecordDB.status == expected)
            .values(status=new_status, frozen_from_status=frozen_from_status, updated_at=utcnow())
        )
        if result.rowcount != 1:
            raise StateConflictError(f"Credit {credit.id} changed state concurrently; reload and retry")
        credit.status = new_status
        credit.frozen_from_status = frozen_from_status

    def _record_credit_action(
        self,
        credit: CreditRecordDB,
        actor: UserDB,
        action: AdminAction,
        label: str,
        note: Optional[str],
    ) -> None:
        self.ledger.record_admin_action(
            actor_id=actor.id,
            actor_name=actor.name,
            action=action,
            target=credit.id,
            note=note,
            metadata={"status": credit.status.value},
        )
        with self.locks.hold(submission_key(credit.submission_id)):
            submission = self.state_machine.load(credit.submission_id)
            self.ledger.append(submission, actor=actor.name, action=label, actor_id=actor.id, note=note)

    @staticmethod
    def _require_admin(actor: UserDB, action: str) -> None:
        if actor.role != UserRole.ADMIN:
            raise AuthorizationError(f"Only registry admins can {action}")
        ensure_active(actor, action)

    # =========================================================================
    # READS
    # =========================================================================

    def _load_credit(self, credit_id: str) -> CreditRecordDB:
        credit = self.db.get(CreditRecordDB, credit_id, populate_existing=True)
        if credit is None:
            raise NotFoundError(f"Credit {credit_id} not found")
        return credit

    def get_credit(self, credit_id: str) -> CreditRecordDB:
        return self._load_credit(credit_id)

    def list_credits(self, status: Optional[CreditStatus] = None) -> List[CreditRecordDB]:
        query = self.db.query(CreditRecordDB)
        if status is not None:
            query = query.filter(CreditRecordDB.status == status)
        return query.order_by(CreditRecordDB.created_at.desc()).all()

    def portfolio(self, owner_id: str) -> List[CreditRecordDB]:
        """Credits owned by a buyer, most recent purchase first."""
        return (
            self.db.query(CreditRecordDB)
            .filter(CreditRecordDB.owner_id == owner_id)
            .order_by(CreditRecordDB.purchase_date.desc())
            .all()
        )

    @staticmethod
    def quote_amount(amount: Decimal) -> Decimal:
        """Market price in USD for an amount of tCO2e."""
        return (Decimal(amount) * config.CREDIT_PRICE_PER_TONNE).quantize(Decimal("0.01"))
