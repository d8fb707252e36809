"""
Submission State Machine

Deterministic lifecycle for field-evidence submissions.
The transition graph is acyclic; APPROVED and REJECTED are terminal.
Every applied transition appends exactly one audit entry. Rejected
transitions change nothing and write nothing.
"""
import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from sqlalchemy import update
from sqlalchemy.orm import Session

from ... import config
from ...models.db_models import (
    SubmissionAuditLogDB, SubmissionDB, SubmissionStatus, UserDB, utcnow,
)
from .audit_ledger import AuditLedger
from .authorization import (
    TERMINAL_STATES, edge_rule, ensure_active, next_states, roles_entering,
)
from .errors import (
    AuthorizationError, InvalidTransitionError, NotFoundError, StateConflictError,
)
from .locks import KeyedLocks, registry_locks, submission_key
from .registry_gate import RegistryGate
from .unit_of_work import atomic

logger = logging.getLogger(__name__)


# =============================================================================
# STATE CONFIGURATION
# =============================================================================

STATE_DESCRIPTIONS = {
    SubmissionStatus.PENDING: "Awaiting human triage (oracle confidence at or below threshold)",
    SubmissionStatus.IN_REVIEW: "Under desk review",
    SubmissionStatus.FIELD_CHECK: "Awaiting on-site field check",
    SubmissionStatus.AI_VERIFIED: "Oracle confidence above threshold, awaiting NGO review",
    SubmissionStatus.AI_FAILED: "Oracle could not score the evidence",
    SubmissionStatus.NGO_APPROVED: "NGO approved, awaiting registry confirmation",
    SubmissionStatus.APPROVED: "Confirmed by the registry, credits minted",
    SubmissionStatus.REJECTED: "Rejected",
}


@dataclass
class TransitionResult:
    """Outcome of a transition request."""
    submission: SubmissionDB
    applied: bool  # False when already in the target state (idempotent no-op)
    entry: Optional[SubmissionAuditLogDB] = None


# =============================================================================
# STATE MACHINE
# =============================================================================

class SubmissionStateMachine:
    """
    Enforces submission lifecycle transitions.

    Every transition is validated against:
    1. The transition graph (fail-closed).
    2. The authorization table for the actor's role.
    3. The registry gate, when the target is APPROVED.

    Transitions on one submission are serialized by a per-submission lock and
    applied with a conditional update on the current status.
    """

    def __init__(
        self,
        db: Session,
        ledger: AuditLedger = None,
        gate: RegistryGate = None,
        locks: KeyedLocks = None,
    ):
        self.db = db
        self.locks = locks or registry_locks
        self.ledger = ledger or AuditLedger(db)
        self.gate = gate or RegistryGate(db, locks=self.locks, ledger=self.ledger)

    # -------------------------------------------------------------------------
    # Graph queries
    # -------------------------------------------------------------------------

    def can_transition(
        self,
        from_state: SubmissionStatus,
        to_state: SubmissionStatus,
    ) -> Tuple[bool, str]:
        """
        Check if a state transition exists in the graph.

        Returns (allowed, reason)
        """
        if edge_rule(from_state, to_state) is not None:
            return True, "Transition allowed"
        if from_state in TERMINAL_STATES:
            return False, f"{from_state.value} is terminal"
        return False, f"Cannot transition from {from_state.value} to {to_state.value}"

    def is_terminal_state(self, state: SubmissionStatus) -> bool:
        return state in TERMINAL_STATES

    def get_next_states(self, state: SubmissionStatus) -> List[SubmissionStatus]:
        return next_states(state)

    def describe(self, state: SubmissionStatus) -> str:
        return STATE_DESCRIPTIONS.get(state, "")

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def load(self, submission_id: str) -> SubmissionDB:
        """Fresh copy of a submission from the store."""
        submission = self.db.get(SubmissionDB, submission_id, populate_existing=True)
        if submission is None:
            raise NotFoundError(f"Submission {submission_id} not found")
        return submission

    def transition(
        self,
        submission_id: str,
        actor: UserDB,
        target: SubmissionStatus,
        note: Optional[str] = None,
    ) -> TransitionResult:
        """
        Execute a review transition under the submission lock and commit it.

        Final confirmation (-> APPROVED) mints credits in the same unit of work
        and therefore goes through CreditIssuanceService.confirm_and_mint; here
        it is accepted only as an idempotent no-op on an APPROVED submission.
        """
        with self.locks.hold(submission_key(submission_id)), atomic(self.db, "submission transition"):
            submission = self.load(submission_id)
            if target == SubmissionStatus.APPROVED and submission.status != SubmissionStatus.APPROVED:
                raise InvalidTransitionError(
                    "Final confirmation mints credits and must be requested through issuance"
                )
            result = self.apply(submission, actor, target, note)
        return result

    def apply(
        self,
        submission: SubmissionDB,
        actor: UserDB,
        target: SubmissionStatus,
        note: Optional[str] = None,
    ) -> TransitionResult:
        """
        Validate and apply one transition without committing.

        The caller holds the submission lock and owns the unit of work.
        """
        from_state = submission.status

        if from_state == target:
            # Duplicate delivery of a transition that already happened
            if actor.role not in roles_entering(target):
                raise AuthorizationError(
                    f"Role {actor.role.value} cannot move submissions to {target.value}"
                )
            logger.info(f"Submission {submission.id} already {target.value}; no-op")
            return TransitionResult(submission=submission, applied=False)

        rule = edge_rule(from_state, target)
        if rule is None:
            _, reason = self.can_transition(from_state, target)
            raise InvalidTransitionError(reason)

        if actor.role not in rule.roles:
            logger.warning(
                f"Denied {from_state.value} -> {target.value} on {submission.id} "
                f"for role {actor.role.value}"
            )
            raise AuthorizationError(
                f"Role {actor.role.value} cannot move {from_state.value} to {target.value}"
            )
        ensure_active(actor, "review submissions")

        if target == SubmissionStatus.APPROVED:
            self.gate.ensure_open("final confirmation")

        result = self.db.execute(
            update(SubmissionDB)
            .where(SubmissionDB.id == submission.id, SubmissionDB.status == from_state)
            .values(status=target, updated_at=utcnow())
        )
        if result.rowcount != 1:
            raise StateConflictError(
                f"Submission {submission.id} changed state concurrently; reload and retry"
            )
        submission.status = target

        if note:
            submission.verifier_comments = note
        if self._overrides_oracle(submission, target):
            submission.ai_overridden = True

        entry = self.ledger.append(
            submission,
            actor=actor.name,
            action=rule.action,
            actor_id=actor.id,
            note=note,
            from_status=from_state,
            to_status=target,
        )

        logger.info(f"Submission {submission.id}: {from_state.value} -> {target.value} by {actor.id}")
        return TransitionResult(submission=submission, applied=True, entry=entry)

    @staticmethod
    def _overrides_oracle(submission: SubmissionDB, target: SubmissionStatus) -> bool:
        """A human decision that contradicts the oracle's verdict."""
        ai_passed = submission.ai_score > config.AI_VERIFIED_THRESHOLD
        if target == SubmissionStatus.NGO_APPROVED:
            return not ai_passed
        if target == SubmissionStatus.REJECTED:
            return ai_passed
        return False
