"""Transactional store used by every state-changing operation.

A transaction body is a plain function of a fresh session. The store commits
what the body wrote, and re-runs the body from scratch when the commit loses
a race: another writer bumped a row version (``StaleDataError``) or claimed
a unique key first (a unique ``IntegrityError``). Bodies must therefore
only read through the session they are given and only write to it.

Any other integrity failure is a bad write, not a race, and surfaces as a
validation error without a retry.
"""

import logging
from typing import Callable, TypeVar

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from .config import settings
from .database import SessionLocal
from .errors import ConflictError, StoreUnavailableError, ValidationError

logger = logging.getLogger("booking_service")

T = TypeVar("T")

# SQLSTATE unique_violation
UNIQUE_VIOLATION = "23505"


def is_unique_violation(error: IntegrityError) -> bool:
    if getattr(error.orig, "pgcode", None) == UNIQUE_VIOLATION:
        return True
    message = str(error.orig).lower()
    return "unique" in message or "duplicate" in message


class Store:
    def __init__(self, session_factory=SessionLocal, max_attempts: int | None = None):
        self.session_factory = session_factory
        self.max_attempts = max_attempts or settings.TRANSACTION_MAX_ATTEMPTS

    def session(self) -> Session:
        """A plain session for read-only queries outside a transaction body."""
        return self.session_factory()

    def run_transaction(self, fn: Callable[[Session], T]) -> T:
        last_error = None
        for attempt in range(1, self.max_attempts + 1):
            db: Session = self.session_factory()
            try:
                result = fn(db)
                db.commit()
                return result
            except IntegrityError as e:
                db.rollback()
                if not is_unique_violation(e):
                    logger.error(f"Transaction violated a data constraint: {e}")
                    raise ValidationError("The change violates a data constraint") from e
                last_error = e
                logger.warning(f"Unique key race on attempt {attempt}/{self.max_attempts}: {e}")
            except StaleDataError as e:
                db.rollback()
                last_error = e
                logger.warning(f"Transaction conflict on attempt {attempt}/{self.max_attempts}: {e}")
            except OperationalError as e:
                db.rollback()
                logger.error(f"Store unavailable: {e}")
                raise StoreUnavailableError() from e
            except Exception:
                db.rollback()
                raise
            finally:
                db.close()

        raise ConflictError() from last_error


def get_store() -> Store:
    return Store()
