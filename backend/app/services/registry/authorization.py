"""
Transition Authorization Table

One table keyed by transition edge, consulted by the state machine.
Each edge names the roles allowed to take it and the audit action label
recorded when it is taken. An edge missing from the table does not exist.
"""
from typing import Dict, FrozenSet, NamedTuple, Tuple

from ...models.db_models import AccountStatus, SubmissionStatus, UserDB, UserRole
from .errors import AuthorizationError


S = SubmissionStatus


class EdgeRule(NamedTuple):
    roles: FrozenSet[UserRole]
    action: str


_REVIEWERS = frozenset({UserRole.NGO, UserRole.ADMIN})
_NGO = frozenset({UserRole.NGO})
_ADMIN = frozenset({UserRole.ADMIN})


TRANSITION_RULES: Dict[Tuple[SubmissionStatus, SubmissionStatus], EdgeRule] = {
    # Human triage of low-confidence submissions
    (S.PENDING, S.IN_REVIEW): EdgeRule(_REVIEWERS, "Moved To Review"),
    (S.PENDING, S.FIELD_CHECK): EdgeRule(_REVIEWERS, "Field Check Requested"),
    (S.PENDING, S.REJECTED): EdgeRule(_REVIEWERS, "Rejected At Triage"),

    # NGO scientific review
    (S.AI_VERIFIED, S.NGO_APPROVED): EdgeRule(_NGO, "NGO Approved"),
    (S.AI_VERIFIED, S.REJECTED): EdgeRule(_NGO, "NGO Rejected"),
    (S.IN_REVIEW, S.NGO_APPROVED): EdgeRule(_NGO, "NGO Approved"),
    (S.IN_REVIEW, S.REJECTED): EdgeRule(_NGO, "NGO Rejected"),
    (S.FIELD_CHECK, S.NGO_APPROVED): EdgeRule(_NGO, "NGO Approved"),
    (S.FIELD_CHECK, S.REJECTED): EdgeRule(_NGO, "NGO Rejected"),

    # Registry final confirmation; REJECTED here is the admin rollback path
    (S.NGO_APPROVED, S.APPROVED): EdgeRule(_ADMIN, "Final Admin Confirmation"),
    (S.NGO_APPROVED, S.REJECTED): EdgeRule(_ADMIN, "Admin Override Rejection"),

    # Oracle failure; resubmission creates a new submission
    (S.AI_FAILED, S.REJECTED): EdgeRule(_REVIEWERS, "Rejected After Oracle Failure"),
}

TERMINAL_STATES = frozenset({S.APPROVED, S.REJECTED})


def edge_rule(from_state: SubmissionStatus, to_state: SubmissionStatus):
    """Rule for an edge, or None if the edge does not exist."""
    return TRANSITION_RULES.get((from_state, to_state))


def is_authorized(role: UserRole, from_state: SubmissionStatus, to_state: SubmissionStatus) -> bool:
    rule = edge_rule(from_state, to_state)
    return rule is not None and role in rule.roles


def roles_entering(to_state: SubmissionStatus) -> FrozenSet[UserRole]:
    """Every role allowed to move a submission into `to_state` by some edge."""
    roles = set()
    for (_, target), rule in TRANSITION_RULES.items():
        if target == to_state:
            roles.update(rule.roles)
    return frozenset(roles)


def next_states(from_state: SubmissionStatus):
    return sorted(
        (target for (source, target) in TRANSITION_RULES if source == from_state),
        key=lambda s: s.value,
    )


def ensure_active(actor: UserDB, action: str) -> None:
    """Raise AuthorizationError unless the actor's account is ACTIVE."""
    if actor.status != AccountStatus.ACTIVE:
        raise AuthorizationError(
            f"Account {actor.id} is {actor.status.value}; cannot {action}"
        )
