import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from stayledger.core.config import settings
from stayledger.db.types import utcnow
from stayledger.domain.enums import FolioStatus, StayStatus, TransactionType
from stayledger.models.booking import Booking
from stayledger.models.guest_folio import GuestFolio
from stayledger.models.stay_record import StayRecord
from stayledger.models.transaction import Transaction
from stayledger.schemas.common import Page, Pagination
from stayledger.schemas.folio import FolioFilters
from stayledger.services.helpers import get_or_404, new_id, paginate

logger = logging.getLogger(__name__)


@dataclass
class FolioSummary:
    folio: GuestFolio
    totals_by_type: dict[str, int] = field(default_factory=dict)
    total_charges: int = 0
    total_payments: int = 0
    billed_amount: int = 0
    unbilled_amount: int = 0
    balance: int = 0
    transaction_count: int = 0


def open_folio(db: Session, stay_record: StayRecord, booking: Booking) -> GuestFolio:
    """Open the folio of a stay (idempotent) and attach the booking's earlier transactions to it."""
    folio = db.execute(
        select(GuestFolio).where(GuestFolio.stay_record_id == stay_record.id)
    ).scalar_one_or_none()
    if folio is None:
        folio = GuestFolio(
            id=new_id(),
            code=f"{settings.FOLIO_CODE_PREFIX}{booking.booking_code}",
            stay_record_id=stay_record.id,
            booking_id=booking.id,
            status=FolioStatus.OPEN.value,
            opened_at=utcnow(),
        )
        db.add(folio)
        db.flush()
        logger.info("folio %s opened for booking %s", folio.code, booking.booking_code)
    db.execute(
        update(Transaction)
        .where(Transaction.booking_id == booking.id, Transaction.guest_folio_id.is_(None))
        .values(guest_folio_id=folio.id)
        .execution_options(synchronize_session=False)
    )
    return folio


def folio_for_booking(db: Session, booking_id: str | None) -> GuestFolio | None:
    if not booking_id:
        return None
    return db.execute(select(GuestFolio).where(GuestFolio.booking_id == booking_id)).scalar_one_or_none()


def unbilled_transactions(db: Session, folio_id: str) -> list[Transaction]:
    get_or_404(db, GuestFolio, folio_id)
    return list(db.execute(
        select(Transaction)
        .where(Transaction.guest_folio_id == folio_id, Transaction.invoice_id.is_(None))
        .order_by(Transaction.occurred_at, Transaction.id)
    ).scalars().all())


def close_folio_if_settled(db: Session, folio: GuestFolio, now: datetime | None = None) -> bool:
    """Close the folio once its stay is closed and every transaction on it is billed."""
    stay = db.get(StayRecord, folio.stay_record_id)
    if stay is None or stay.status != StayStatus.CLOSED.value:
        return False
    db.flush()
    unbilled = db.execute(
        select(func.count(Transaction.id)).where(
            Transaction.guest_folio_id == folio.id, Transaction.invoice_id.is_(None))
    ).scalar_one()
    if unbilled:
        return False
    if folio.status != FolioStatus.CLOSED.value:
        folio.status = FolioStatus.CLOSED.value
        folio.closed_at = now or utcnow()
        logger.info("folio %s closed", folio.code)
    return True


def reopen_folio(folio: GuestFolio) -> None:
    if folio.status != FolioStatus.OPEN.value:
        folio.status = FolioStatus.OPEN.value
        folio.closed_at = None


def get_folio_summary(db: Session, folio_id: str) -> FolioSummary:
    folio = get_or_404(db, GuestFolio, folio_id)
    rows = db.execute(
        select(Transaction.type, Transaction.invoice_id.is_(None), func.sum(Transaction.amount), func.count())
        .where(Transaction.guest_folio_id == folio.id)
        .group_by(Transaction.type, Transaction.invoice_id.is_(None))
    ).all()

    summary = FolioSummary(folio=folio, totals_by_type={t.value: 0 for t in TransactionType})
    for ttype, unbilled, amount, count in rows:
        amount = int(amount or 0)
        summary.totals_by_type[ttype] = summary.totals_by_type.get(ttype, 0) + amount
        summary.transaction_count += count
        if unbilled:
            summary.unbilled_amount += amount
        else:
            summary.billed_amount += amount

    booking = db.get(Booking, folio.booking_id)
    summary.total_charges = int(booking.total_amount) if booking else 0
    summary.total_payments = sum(v for k, v in summary.totals_by_type.items()
                                 if k != TransactionType.ADJUSTMENT.value)
    summary.balance = summary.total_charges - summary.total_payments
    return summary


def list_folios(db: Session, filters: FolioFilters | None = None, pagination: Pagination | None = None) -> Page:
    filters = filters or FolioFilters()
    stmt = select(GuestFolio)
    if filters.code:
        stmt = stmt.where(GuestFolio.code.ilike(f"%{filters.code.strip()}%"))
    if filters.booking_id:
        stmt = stmt.where(GuestFolio.booking_id == filters.booking_id)
    if filters.customer_id:
        stmt = stmt.where(GuestFolio.booking_id.in_(
            select(Booking.id).where(Booking.primary_customer_id == filters.customer_id)))
    if filters.status is not None:
        stmt = stmt.where(GuestFolio.status == filters.status.value)
    if filters.start is not None:
        stmt = stmt.where(GuestFolio.opened_at >= filters.start)
    if filters.end is not None:
        stmt = stmt.where(GuestFolio.opened_at <= filters.end)
    return paginate(db, stmt, pagination, {"opened_at": GuestFolio.opened_at, "code": GuestFolio.code},
                    GuestFolio.opened_at)
