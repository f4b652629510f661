"""Atomic units of work.

Every state-mutating operation that touches a contended resource (promotion
quota, room occupancy, booking-room state, invoice binding) runs its body
through :func:`run_atomic`. The body does its reads, conditional updates and
inserts on the session; the runner commits once at the end, so an abandoned or
failed request never leaves a partial write behind.
"""
import logging
import time
from typing import Callable, TypeVar

from sqlalchemy import select, update
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm import Session

from stayledger.core.config import settings
from stayledger.core.errors import ConflictError, FatalError, LedgerError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# serialization_failure, deadlock_detected, lock_not_available
RETRYABLE_PGCODES = {"40001", "40P01", "55P03"}
RETRYABLE_MESSAGES = ("database is locked", "database table is locked", "lock timeout",
                      "could not serialize", "deadlock detected")


def is_retryable(exc: DBAPIError) -> bool:
    """True for lock waits, serialization failures and lost unique-key races."""
    if isinstance(exc, IntegrityError):
        return True
    if not isinstance(exc, OperationalError):
        return False
    if getattr(exc.orig, "pgcode", None) in RETRYABLE_PGCODES:
        return True
    message = str(exc.orig).lower()
    return any(m in message for m in RETRYABLE_MESSAGES)


def run_atomic(db: Session, fn: Callable[..., T], *args, retries: int | None = None, **kwargs) -> T:
    attempts = retries or settings.ATOMIC_MAX_RETRIES
    backoff = settings.ATOMIC_RETRY_BACKOFF_MS / 1000.0
    for attempt in range(1, attempts + 1):
        try:
            result = fn(db, *args, **kwargs)
            db.commit()
            return result
        except LedgerError:
            db.rollback()
            raise
        except DBAPIError as e:
            db.rollback()
            if not is_retryable(e):
                logger.exception("atomic unit %s failed", getattr(fn, "__name__", fn))
                raise FatalError("unexpected database failure", rule="atomic.internal") from e
            logger.warning("atomic unit %s conflicted (attempt %d/%d): %s",
                           getattr(fn, "__name__", fn), attempt, attempts, e.orig)
            if attempt == attempts:
                raise ConflictError(
                    f"could not complete {getattr(fn, '__name__', 'operation')} after {attempts} attempts",
                    rule="atomic.retry_exhausted",
                ) from e
            time.sleep(backoff * attempt)
        except Exception as e:
            db.rollback()
            logger.exception("atomic unit %s failed", getattr(fn, "__name__", fn))
            raise FatalError(f"unexpected failure in {getattr(fn, '__name__', 'operation')}",
                             rule="atomic.internal") from e
    raise AssertionError("unreachable")


def compare_and_set(db: Session, model, entity_id: str, column: str, expected, new_value, **extra) -> bool:
    """UPDATE model SET column=new_value WHERE id=entity_id AND column IN expected.

    Returns True when the row moved; False when another writer got there first
    (or the row was never in an expected state).
    """
    col = getattr(model, column)
    expected = expected if isinstance(expected, (list, tuple, set, frozenset)) else [expected]
    result = db.execute(
        update(model)
        .where(model.id == entity_id, col.in_(list(expected)))
        .values({column: new_value, **extra})
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def lock_row(db: Session, model, entity_id: str, **values):
    """Write-lock one row and return it freshly loaded, or None when it does not exist.

    ``SELECT ... FOR UPDATE`` alone is a no-op on SQLite, so the lock is taken
    with an UPDATE first (writing `values`, or the key onto itself), then the
    row is re-read with FOR UPDATE where the backend supports it.
    """
    values = values or {"id": model.id}
    result = db.execute(
        update(model)
        .where(model.id == entity_id)
        .values(values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        return None
    return db.execute(
        select(model)
        .where(model.id == entity_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one()
