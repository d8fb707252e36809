"""
Test Suite for the Audit Ledger

Key tests:
1. Sequence numbers are dense per submission
2. Timestamps never go backwards, even if the clock does
3. Audit and admin-log rows are append-only
4. Admin action log ordering
"""
from datetime import timedelta
from unittest.mock import patch

import pytest

from app.models.db_models import (
    AdminAction, AdminActionLogDB, ImmutableRecordError, SubmissionAuditLogDB, SubmissionStatus,
    utcnow,
)
from app.services.registry.audit_ledger import AuditLedger


@pytest.fixture
def ledger(db):
    return AuditLedger(db)


class TestSubmissionTrail:
    """Per-submission audit trail."""

    def test_creation_entry_is_sequence_one(self, ledger, make_submission):
        submission = make_submission()
        trail = ledger.trail(submission.id)

        assert len(trail) == 1
        assert trail[0].sequence == 1
        assert trail[0].action == "Submission Created"
        assert trail[0].to_status == SubmissionStatus.PENDING

    def test_sequences_are_dense(self, db, ledger, make_submission):
        submission = make_submission()
        for i in range(4):
            ledger.append(submission, actor="Reviewer", action=f"Note {i}")
        db.commit()

        assert [e.sequence for e in ledger.trail(submission.id)] == [1, 2, 3, 4, 5]
        assert ledger.length(submission.id) == 5

    def test_trails_are_independent(self, db, ledger, make_submission):
        first = make_submission()
        second = make_submission()
        ledger.append(first, actor="Reviewer", action="Moved To Review")
        db.commit()

        assert ledger.length(first.id) == 2
        assert ledger.length(second.id) == 1
        assert ledger.trail(second.id)[0].sequence == 1

    def test_timestamp_monotonic_when_clock_steps_back(self, db, ledger, make_submission):
        submission = make_submission()
        first = ledger.trail(submission.id)[0]
        earlier = first.timestamp - timedelta(minutes=5)

        with patch("app.services.registry.audit_ledger.utcnow", return_value=earlier):
            entry = ledger.append(submission, actor="Reviewer", action="Moved To Review")
        db.commit()

        assert entry.timestamp == first.timestamp
        assert entry.sequence == 2


class TestAppendOnly:
    """Audit rows reject updates and deletes."""

    def test_update_rejected(self, db, ledger, make_submission):
        submission = make_submission()
        entry = ledger.trail(submission.id)[0]

        entry.note = "rewritten history"
        with pytest.raises(ImmutableRecordError):
            db.flush()
        db.rollback()

        assert ledger.trail(submission.id)[0].note is None

    def test_delete_rejected(self, db, ledger, make_submission):
        submission = make_submission()
        entry = ledger.trail(submission.id)[0]

        db.delete(entry)
        with pytest.raises(ImmutableRecordError):
            db.flush()
        db.rollback()

        assert ledger.length(submission.id) == 1

    def test_admin_events_update_rejected(self, db, ledger, admin):
        event = ledger.record_admin_action(
            actor_id=admin.id, actor_name=admin.name,
            action=AdminAction.REGISTRY_PAUSED, target="registry",
        )
        db.commit()

        event.target = "elsewhere"
        with pytest.raises(ImmutableRecordError):
            db.flush()
        db.rollback()

        assert db.query(AdminActionLogDB).one().target == "registry"


class TestAdminActionLog:
    """Registry-wide log of administrative actions."""

    def test_most_recent_first(self, db, ledger, admin):
        now = utcnow()
        with patch("app.services.registry.audit_ledger.utcnow", return_value=now - timedelta(seconds=10)):
            ledger.record_admin_action(admin.id, admin.name, AdminAction.REGISTRY_PAUSED, "registry")
        with patch("app.services.registry.audit_ledger.utcnow", return_value=now):
            ledger.record_admin_action(admin.id, admin.name, AdminAction.REGISTRY_RESUMED, "registry")
        db.commit()

        events = ledger.admin_events()
        assert [e.action for e in events] == [AdminAction.REGISTRY_RESUMED, AdminAction.REGISTRY_PAUSED]

    def test_limit(self, db, ledger, admin):
        for _ in range(5):
            ledger.record_admin_action(admin.id, admin.name, AdminAction.TRUST_SCORE_SET, admin.id)
        db.commit()

        assert len(ledger.admin_events(limit=3)) == 3

    def test_metadata_round_trips(self, db, ledger, admin):
        ledger.record_admin_action(
            admin.id, admin.name, AdminAction.ACCOUNT_FREEZE, "user-1",
            note="chargeback", metadata={"from": "ACTIVE", "to": "FROZEN"},
        )
        db.commit()

        event = db.query(AdminActionLogDB).one()
        assert event.event_metadata == {"from": "ACTIVE", "to": "FROZEN"}
        assert event.note == "chargeback"
        assert db.query(SubmissionAuditLogDB).count() == 0
