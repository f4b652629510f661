"""Job bodies run by the Celery worker.

Each job opens its own session, does one unit of work and commits it. The
`session_factory` argument lets tests point a job at their own database.
"""
import logging
from datetime import datetime

from sqlalchemy.exc import OperationalError, ProgrammingError
from sqlalchemy.orm import Session

from stayledger.core.errors import FatalError
from stayledger.db.atomic import run_atomic
from stayledger.db.session import SessionLocal
from stayledger.db.types import utcnow
from stayledger.services import inventory_service, promotion_service, tier_service

logger = logging.getLogger(__name__)


def _missing_tables(exc: BaseException | None) -> bool:
    # PostgreSQL reports an undefined table as ProgrammingError, SQLite as OperationalError
    if isinstance(exc, ProgrammingError):
        return True
    return isinstance(exc, OperationalError) and "no such table" in str(exc.orig).lower()


def _run_job(name: str, fn, session_factory=None, **kwargs) -> dict:
    db: Session = (session_factory or SessionLocal)()
    try:
        try:
            count = run_atomic(db, fn, **kwargs)
        except FatalError as e:
            if not _missing_tables(e.__cause__):
                raise
            # schema not created yet; don't crash the worker
            return {"skipped": True, "reason": "missing_tables"}
        if count:
            logger.info("%s: %d row(s) changed", name, count)
        return {name: count}
    finally:
        db.close()


def expire_pending_bookings(now: datetime | None = None, session_factory=None) -> dict:
    return _run_job("expired", inventory_service.expire_pending_bookings, session_factory, now=now or utcnow())


def expire_customer_promotions(now: datetime | None = None, session_factory=None) -> dict:
    return _run_job("expired", promotion_service.expire_customer_promotions, session_factory,
                    now=now or utcnow())


def upgrade_customer_tiers(session_factory=None) -> dict:
    return _run_job("upgraded", tier_service.upgrade_all_customer_tiers, session_factory)
