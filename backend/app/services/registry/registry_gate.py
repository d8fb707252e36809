"""
Registry Control Gate

A single registry-wide pause flag, persisted in one row and mutable only by
ADMIN actors. While paused, final confirmation and minting fail with
RegistryPausedError; reads and earlier-stage review stay open. Resuming
replays nothing; callers retry explicitly.
"""
import logging

from sqlalchemy.orm import Session

from ...models.db_models import AdminAction, RegistryControlDB, UserDB, UserRole, utcnow
from .audit_ledger import AuditLedger
from .authorization import ensure_active
from .errors import AuthorizationError, RegistryPausedError
from .locks import KeyedLocks, REGISTRY_KEY, registry_locks
from .unit_of_work import atomic

logger = logging.getLogger(__name__)

CONTROL_ROW_ID = 1


class RegistryGate:
    """Reads and flips the registry pause flag."""

    def __init__(self, db: Session, locks: KeyedLocks = None, ledger: AuditLedger = None):
        self.db = db
        self.locks = locks or registry_locks
        self.ledger = ledger or AuditLedger(db)

    def _control(self) -> RegistryControlDB:
        control = self.db.get(RegistryControlDB, CONTROL_ROW_ID, populate_existing=True)
        if control is None:
            control = RegistryControlDB(id=CONTROL_ROW_ID, paused=False)
            self.db.add(control)
            self.db.flush()
        return control

    def is_paused(self) -> bool:
        """Current flag, read fresh from the store."""
        control = self.db.get(RegistryControlDB, CONTROL_ROW_ID, populate_existing=True)
        return bool(control and control.paused)

    def ensure_open(self, operation: str) -> None:
        """Raise RegistryPausedError if the registry is paused."""
        if self.is_paused():
            logger.warning(f"Blocked {operation}: registry is paused")
            raise RegistryPausedError(f"Registry is paused; {operation} is blocked until it resumes")

    def set_paused(self, paused: bool, actor: UserDB) -> RegistryControlDB:
        """
        Pause or resume the registry.

        ADMIN only. Setting the flag to its current value is a no-op success.
        """
        if actor.role != UserRole.ADMIN:
            raise AuthorizationError("Only registry admins can pause or resume the registry")
        ensure_active(actor, "change the registry pause state")

        with self.locks.hold(REGISTRY_KEY), atomic(self.db, "registry pause change"):
            control = self._control()
            if control.paused == paused:
                return control

            control.paused = paused
            control.updated_by = actor.id
            control.updated_at = utcnow()
            self.ledger.record_admin_action(
                actor_id=actor.id,
                actor_name=actor.name,
                action=AdminAction.REGISTRY_PAUSED if paused else AdminAction.REGISTRY_RESUMED,
                target="registry",
            )

        logger.info(f"Registry {'paused' if paused else 'resumed'} by {actor.id}")
        return control

    def status(self) -> dict:
        control = self.db.get(RegistryControlDB, CONTROL_ROW_ID, populate_existing=True)
        if control is None:
            return {"paused": False, "updated_by": None, "updated_at": None}
        return {
            "paused": bool(control.paused),
            "updated_by": control.updated_by,
            "updated_at": control.updated_at.isoformat() if control.updated_at else None,
        }
