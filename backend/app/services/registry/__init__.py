"""
BlueCarbon Ledger - Registry Core

Submission lifecycle, audit trail, scoring oracle adapter, registry gate,
credit issuance and settlement, trust and risk metrics.
"""
from .errors import (
    RegistryError,
    ValidationError,
    IngestionError,
    NotFoundError,
    AuthorizationError,
    StateConflictError,
    InvalidTransitionError,
    RegistryPausedError,
    UpstreamUnavailable,
)
from .locks import KeyedLocks, registry_locks
from .audit_ledger import AuditLedger
from .scoring_oracle import (
    ScoringOracle,
    GeminiScoringOracle,
    ScoringResult,
    fallback_result,
    get_scoring_oracle,
)
from .authorization import TRANSITION_RULES, TERMINAL_STATES, is_authorized
from .state_machine import SubmissionStateMachine, TransitionResult
from .registry_gate import RegistryGate
from .issuance import CreditIssuanceService
from .trust_engine import TrustRiskEngine, RiskSignal
from .submission_service import SubmissionService, initial_status

__all__ = [
    # Errors
    "RegistryError",
    "ValidationError",
    "IngestionError",
    "NotFoundError",
    "AuthorizationError",
    "StateConflictError",
    "InvalidTransitionError",
    "RegistryPausedError",
    "UpstreamUnavailable",
    # Locking
    "KeyedLocks",
    "registry_locks",
    # Ledger
    "AuditLedger",
    # Oracle
    "ScoringOracle",
    "GeminiScoringOracle",
    "ScoringResult",
    "fallback_result",
    "get_scoring_oracle",
    # Lifecycle
    "TRANSITION_RULES",
    "TERMINAL_STATES",
    "is_authorized",
    "SubmissionStateMachine",
    "TransitionResult",
    "RegistryGate",
    # Credits
    "CreditIssuanceService",
    # Metrics
    "TrustRiskEngine",
    "RiskSignal",
    # Boundaries
    "SubmissionService",
    "initial_status",
]
