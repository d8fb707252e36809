"""
Registry Error Taxonomy

Every failure in the registry core is a typed, recoverable result local to
one operation. Routers map these to HTTP responses in one place (main.py).
"""


class RegistryError(Exception):
    """Base class for registry failures."""

    code = "registry_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(RegistryError):
    """Malformed input. Rejected before any mutation."""

    code = "validation_error"


class IngestionError(ValidationError):
    """Submission evidence could not be accepted (e.g. unreadable image)."""

    code = "ingestion_error"


class NotFoundError(RegistryError):
    """Referenced submission, credit or user does not exist."""

    code = "not_found"


class AuthorizationError(RegistryError):
    """Actor role, ownership or account standing does not permit the action."""

    code = "unauthorized"


class StateConflictError(RegistryError):
    """Precondition on current state not met, including lost races."""

    code = "state_conflict"


class InvalidTransitionError(StateConflictError):
    """Requested edge is not in the submission transition graph."""

    code = "invalid_transition"


class RegistryPausedError(StateConflictError):
    """Issuance-affecting operation attempted while the registry is paused."""

    code = "registry_paused"


class UpstreamUnavailable(RegistryError):
    """
    Scoring oracle failed or timed out.

    Raised and handled inside the oracle adapter only; the submission flow
    receives the fallback scoring result instead.
    """

    code = "upstream_unavailable"
