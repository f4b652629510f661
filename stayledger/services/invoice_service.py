import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from stayledger.core.config import settings
from stayledger.core.errors import AlreadyBilled, NotFoundError, StateError, ValidationError
from stayledger.db.atomic import compare_and_set, run_atomic
from stayledger.db.types import as_utc, utcnow
from stayledger.domain.enums import ActivityType
from stayledger.models.customer import Customer
from stayledger.models.guest_folio import GuestFolio
from stayledger.models.invoice import Invoice
from stayledger.models.invoice_line import InvoiceLine
from stayledger.models.transaction import Transaction
from stayledger.schemas.common import Actor, Page, Pagination
from stayledger.schemas.invoice import InvoiceCreate, InvoiceFilters
from stayledger.services import folio_service
from stayledger.services.activity_service import record_activity
from stayledger.services.helpers import get_or_404, new_id, paginate, require_employee

logger = logging.getLogger(__name__)


@dataclass
class InvoiceView:
    invoice: Invoice
    lines: list[InvoiceLine] = field(default_factory=list)
    totals_by_type: dict[str, int] = field(default_factory=dict)


def next_invoice_code(db: Session, now: datetime) -> str:
    """INV<yyyymmdd><seq4>, the sequence restarting every day."""
    prefix = f"{settings.INVOICE_CODE_PREFIX}{now.strftime('%Y%m%d')}"
    last = db.execute(
        select(func.max(Invoice.code)).where(Invoice.code.like(f"{prefix}%"))
    ).scalar_one_or_none()
    seq = int(last[len(prefix):]) + 1 if last else 1
    return f"{prefix}{seq:04d}"


def _create_invoice(db: Session, payload: InvoiceCreate, actor: Actor, now: datetime) -> Invoice:
    folio = get_or_404(db, GuestFolio, payload.guest_folio_id)
    get_or_404(db, Customer, payload.invoice_to_customer_id)
    ids = list(payload.transaction_ids or [])
    if not ids:
        raise ValidationError("an invoice needs at least one transaction", rule="invoice.transactions")
    if len(set(ids)) != len(ids):
        raise ValidationError("a transaction is listed twice", rule="invoice.transactions")

    transactions = db.execute(select(Transaction).where(Transaction.id.in_(ids))).scalars().all()
    found = {t.id: t for t in transactions}
    for tid in ids:
        if tid not in found:
            raise NotFoundError("Transaction", tid)
    for tid in ids:
        txn = found[tid]
        if txn.guest_folio_id != folio.id:
            raise ValidationError(f"transaction {tid} does not belong to folio {folio.code}", entity="Transaction",
                                  entity_id=tid, rule="invoice.folio")
        if txn.invoice_id is not None:
            raise AlreadyBilled(f"transaction {tid} is already billed", entity="Transaction", entity_id=tid,
                                rule="invoice.already_billed")

    invoice = Invoice(
        id=new_id(),
        code=next_invoice_code(db, now),
        guest_folio_id=folio.id,
        invoice_to_customer_id=payload.invoice_to_customer_id,
        tax_id=payload.tax_id or "",
        issued_by_id=actor.id,
        issued_at=now,
    )
    db.add(invoice)
    db.flush()

    # the binding is the contended step: a concurrent invoice that grabbed any of these rows wins
    bound = db.execute(
        update(Transaction)
        .where(Transaction.id.in_(ids), Transaction.guest_folio_id == folio.id, Transaction.invoice_id.is_(None))
        .values(invoice_id=invoice.id)
        .execution_options(synchronize_session=False)
    ).rowcount
    if bound != len(ids):
        raise AlreadyBilled(f"{len(ids) - bound} transaction(s) were billed concurrently", entity="Invoice",
                            entity_id=invoice.id, rule="invoice.already_billed")

    total = 0
    for tid in ids:
        txn = found[tid]
        db.refresh(txn)
        total += int(txn.amount)
        db.add(InvoiceLine(id=new_id(), invoice_id=invoice.id, transaction_id=tid,
                           transaction_type=txn.type, amount=int(txn.amount)))
    invoice.total_amount = total

    folio_service.close_folio_if_settled(db, folio, now)
    record_activity(db, ActivityType.CREATE_INVOICE, actor, f"Invoice {invoice.code} issued",
                    metadata={"transactionIds": ids, "totalAmount": total},
                    customer_id=payload.invoice_to_customer_id, booking_id=folio.booking_id,
                    invoice_id=invoice.id)
    return invoice


def create_invoice(db: Session, payload: InvoiceCreate, actor: Actor, now: datetime | None = None) -> Invoice:
    require_employee(actor)
    invoice = run_atomic(db, _create_invoice, payload, actor, as_utc(now) or utcnow())
    logger.info("invoice %s issued for folio %s total=%s", invoice.code, invoice.guest_folio_id,
                invoice.total_amount)
    return invoice


def _void_invoice(db: Session, invoice_id: str, reason: str, actor: Actor, now: datetime) -> Invoice:
    invoice = get_or_404(db, Invoice, invoice_id)
    if invoice.is_voided:
        raise StateError(f"invoice {invoice.code} is already voided", entity="Invoice", entity_id=invoice.id,
                         rule="invoice.voided")
    if not compare_and_set(db, Invoice, invoice.id, "is_voided", False, True,
                           void_reason=reason, voided_at=now, voided_by_id=actor.id):
        raise StateError(f"invoice {invoice.code} was voided concurrently", entity="Invoice",
                         entity_id=invoice.id, rule="invoice.voided")
    db.execute(
        update(Transaction)
        .where(Transaction.invoice_id == invoice.id)
        .values(invoice_id=None)
        .execution_options(synchronize_session=False)
    )
    db.refresh(invoice)
    folio = db.get(GuestFolio, invoice.guest_folio_id)
    if folio is not None:
        folio_service.reopen_folio(folio)
    record_activity(db, ActivityType.VOID_INVOICE, actor, f"Invoice {invoice.code} voided",
                    metadata={"reason": reason}, customer_id=invoice.invoice_to_customer_id,
                    booking_id=folio.booking_id if folio else None, invoice_id=invoice.id)
    return invoice


def void_invoice(db: Session, invoice_id: str, reason: str, actor: Actor, now: datetime | None = None) -> Invoice:
    """Void an invoice. Its lines stay as the audit record; its transactions become billable again."""
    require_employee(actor)
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("a void reason is required", entity="Invoice", entity_id=invoice_id,
                              rule="invoice.void_reason")
    invoice = run_atomic(db, _void_invoice, invoice_id, reason, actor, as_utc(now) or utcnow())
    logger.info("invoice %s voided: %s", invoice.code, reason)
    return invoice


def get_invoice(db: Session, invoice_id: str) -> InvoiceView:
    invoice = get_or_404(db, Invoice, invoice_id)
    lines = list(db.execute(
        select(InvoiceLine).where(InvoiceLine.invoice_id == invoice.id).order_by(InvoiceLine.id)
    ).scalars().all())
    totals: dict[str, int] = {}
    for line in lines:
        totals[line.transaction_type] = totals.get(line.transaction_type, 0) + int(line.amount)
    return InvoiceView(invoice=invoice, lines=lines, totals_by_type=totals)


def list_invoices(db: Session, filters: InvoiceFilters | None = None,
                  pagination: Pagination | None = None) -> Page:
    """Invoices matching `filters`, newest first unless a sort is given."""
    filters = filters or InvoiceFilters()
    stmt = select(Invoice)
    if filters.code:
        stmt = stmt.where(Invoice.code.ilike(f"%{filters.code.strip()}%"))
    if filters.guest_folio_id:
        stmt = stmt.where(Invoice.guest_folio_id == filters.guest_folio_id)
    if filters.invoice_to_customer_id:
        stmt = stmt.where(Invoice.invoice_to_customer_id == filters.invoice_to_customer_id)
    if filters.issued_by_id:
        stmt = stmt.where(Invoice.issued_by_id == filters.issued_by_id)
    if filters.is_voided is not None:
        stmt = stmt.where(Invoice.is_voided.is_(filters.is_voided))
    if filters.start is not None:
        stmt = stmt.where(Invoice.issued_at >= filters.start)
    if filters.end is not None:
        stmt = stmt.where(Invoice.issued_at <= filters.end)
    return paginate(db, stmt, pagination or Pagination(sort_order="desc"),
                    {"issued_at": Invoice.issued_at, "code": Invoice.code, "total_amount": Invoice.total_amount},
                    Invoice.issued_at)
