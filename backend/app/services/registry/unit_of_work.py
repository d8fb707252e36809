"""
Unit of Work

Every mutating registry operation runs inside `atomic`: it commits on
success and rolls back everything on failure, so no operation leaves the
domain half-updated. Persistence failures surface as StateConflictError.
"""
import logging
from contextlib import contextmanager

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...models.db_models import ImmutableRecordError
from .errors import StateConflictError

logger = logging.getLogger(__name__)


@contextmanager
def atomic(db: Session, operation: str):
    """Commit the block's changes, or roll all of them back."""
    try:
        yield
        db.commit()
    except (SQLAlchemyError, ImmutableRecordError) as e:
        db.rollback()
        logger.error(f"{operation} failed and was rolled back: {e}", exc_info=True)
        raise StateConflictError(f"{operation} could not be applied; no changes were made") from e
    except Exception:
        db.rollback()
        raise
