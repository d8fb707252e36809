"""
Audit Ledger Service

Append-only audit trail attached to each submission, plus the registry-wide
admin action log.

Core Principles:
1. The ledger records what happened. It never decides.
2. Append-only - no updates, no deletes, no reordering (enforced on the ORM rows).
3. Per submission, sequence numbers are dense and timestamps never go backwards.
4. Callers append while holding the submission lock; there is no
   cross-submission ordering.
"""
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy import func
from sqlalchemy.orm import Session

from ...models.db_models import (
    AdminAction,
    AdminActionLogDB,
    SubmissionAuditLogDB,
    SubmissionDB,
    SubmissionStatus,
    utcnow,
)


class AuditLedger:
    """Writes and reads the submission audit trail and the admin action log."""

    def __init__(self, db: Session):
        self.db = db

    # =========================================================================
    # SUBMISSION AUDIT TRAIL
    # =========================================================================

    def append(
        self,
        submission: SubmissionDB,
        actor: str,
        action: str,
        actor_id: Optional[str] = None,
        note: Optional[str] = None,
        from_status: Optional[SubmissionStatus] = None,
        to_status: Optional[SubmissionStatus] = None,
    ) -> SubmissionAuditLogDB:
        """
        Append one entry to a submission's audit trail.

        Args:
            submission: Submission the entry belongs to
            actor: Display name of whoever acted
            action: Action label ("Submission Created", "Final Admin Confirmation", ...)
            actor_id: Acting user id, if any
            note: Optional free-text note
            from_status: Status before a transition, if the entry records one
            to_status: Status after a transition, if the entry records one

        Returns:
            The created (flushed, uncommitted) audit entry
        """
        last = self._last_entry(submission.id)
        timestamp = utcnow()
        if last is not None and last.timestamp > timestamp:
            # Clock stepped backwards; keep the per-submission order monotonic
            timestamp = last.timestamp
        sequence = (last.sequence + 1) if last is not None else 1

        entry = SubmissionAuditLogDB(
            id=str(uuid4()),
            sequence=sequence,
            timestamp=timestamp,
            actor=actor,
            actor_id=actor_id,
            action=action,
            note=note,
            from_status=from_status,
            to_status=to_status,
        )
        submission.audit_trail.append(entry)
        self.db.add(entry)
        self.db.flush()
        return entry

    def trail(self, submission_id: str) -> List[SubmissionAuditLogDB]:
        """Audit trail of a submission in append order."""
        return (
            self.db.query(SubmissionAuditLogDB)
            .filter(SubmissionAuditLogDB.submission_id == submission_id)
            .order_by(SubmissionAuditLogDB.sequence)
            .all()
        )

    def length(self, submission_id: str) -> int:
        return (
            self.db.query(func.count(SubmissionAuditLogDB.id))
            .filter(SubmissionAuditLogDB.submission_id == submission_id)
            .scalar()
            or 0
        )

    def _last_entry(self, submission_id: str) -> Optional[SubmissionAuditLogDB]:
        return (
            self.db.query(SubmissionAuditLogDB)
            .filter(SubmissionAuditLogDB.submission_id == submission_id)
            .order_by(SubmissionAuditLogDB.sequence.desc())
            .first()
        )

    # =========================================================================
    # ADMIN ACTION LOG
    # =========================================================================

    def record_admin_action(
        self,
        actor_id: str,
        actor_name: str,
        action: AdminAction,
        target: str,
        note: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AdminActionLogDB:
        """Record an administrative action (flushed, committed by the caller)."""
        event = AdminActionLogDB(
            id=str(uuid4()),
            actor_id=actor_id,
            actor_name=actor_name,
            action=action,
            target=target,
            note=note,
            event_metadata=metadata,
            created_at=utcnow(),
        )
        self.db.add(event)
        self.db.flush()
        return event

    def admin_events(self, limit: int = 50) -> List[AdminActionLogDB]:
        """Most recent administrative actions first."""
        return (
            self.db.query(AdminActionLogDB)
            .order_by(AdminActionLogDB.created_at.desc())
            .limit(limit)
            .all()
        )
