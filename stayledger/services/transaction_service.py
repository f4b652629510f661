"""Transaction ledger.

A payment request names one of four shapes:

1. ``{booking_id}``: every unpaid booking room, plus unpaid services on those rooms
2. ``{booking_id, booking_room_ids}``: the same, restricted to the listed rooms
3. ``{booking_id, service_usage_id}``: one service consumed under the booking
4. ``{service_usage_id}``: a walk-in service with no booking

Each unpaid line becomes one TransactionDetail. An optional promotion is
redeemed against the eligible lines and its discount spread over them, so the
details always add up to the transaction amount. REFUND and ADJUSTMENT carry
an explicit signed amount against exactly one line and never take a discount.
"""
import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import exists, select
from sqlalchemy.orm import Session

from stayledger.core.errors import NotFoundError, StateError, ValidationError
from stayledger.db.atomic import compare_and_set, lock_row, run_atomic
from stayledger.db.types import as_utc, utcnow
from stayledger.domain.enums import (
    SIGNED_TRANSACTION_TYPES, ActivityType, BookingRoomState, BookingStatus, PaymentMethod,
    ServiceUsageStatus, TransactionType,
)
from stayledger.models.booking import Booking
from stayledger.models.booking_room import BookingRoom
from stayledger.models.service_usage import ServiceUsage
from stayledger.models.transaction import Transaction
from stayledger.models.transaction_detail import TransactionDetail
from stayledger.schemas.common import Actor, Page, Pagination
from stayledger.schemas.transaction import TransactionCreate, TransactionFilters
from stayledger.services import balances, folio_service
from stayledger.services.activity_service import record_activity
from stayledger.services.discount_service import (
    ROOM_LINE, SERVICE_LINE, ChargeLine, apply_discount, allocate_discount, eligible_lines, request_scope,
)
from stayledger.services.helpers import employee_id_of, get_or_404, new_id, paginate, require_employee
from stayledger.services.promotion_service import get_promotion_by_code, redeem_promotion

logger = logging.getLogger(__name__)

DESCRIPTIONS = {
    TransactionType.DEPOSIT: "Deposit for booking {code}",
    TransactionType.ROOM_CHARGE: "Room charge for booking {code}",
    TransactionType.SERVICE_CHARGE: "Service charge for booking {code}",
    TransactionType.REFUND: "Refund for booking {code}",
    TransactionType.ADJUSTMENT: "Adjustment for booking {code}",
}


@dataclass
class _Target:
    """What a transaction request resolved to."""
    booking: Booking | None
    rooms: list[BookingRoom]
    usage: ServiceUsage | None
    scenario: int


def _resolve_target(db: Session, payload: TransactionCreate) -> _Target:
    has_booking = bool(payload.booking_id)
    has_rooms = payload.booking_room_ids is not None
    has_usage = bool(payload.service_usage_id)

    if has_rooms and not payload.booking_room_ids:
        raise ValidationError("booking_room_ids must not be empty", rule="transaction.scenario")
    if has_rooms and has_usage:
        raise ValidationError("pay rooms and a service usage in separate transactions", rule="transaction.scenario")
    if has_rooms and not has_booking:
        raise ValidationError("booking_room_ids require booking_id", rule="transaction.scenario")
    if not has_booking and not has_usage:
        raise ValidationError("a transaction needs a booking or a service usage", rule="transaction.scenario")

    booking = None
    if has_booking:
        booking = lock_row(db, Booking, payload.booking_id)
        if booking is None:
            raise NotFoundError("Booking", payload.booking_id)

    if has_usage:
        usage = lock_row(db, ServiceUsage, payload.service_usage_id)
        if usage is None:
            raise NotFoundError("ServiceUsage", payload.service_usage_id)
        if booking is None and usage.booking_id is not None:
            raise ValidationError(f"service usage belongs to booking {usage.booking_id}; pay it with the booking",
                                  entity="ServiceUsage", entity_id=usage.id, rule="transaction.scenario")
        if booking is not None and usage.booking_id != booking.id:
            raise ValidationError("service usage does not belong to this booking", entity="ServiceUsage",
                                  entity_id=usage.id, rule="transaction.usage_booking")
        return _Target(booking, [], usage, 3 if booking is not None else 4)

    rooms = db.execute(
        select(BookingRoom).where(BookingRoom.booking_id == booking.id)
        .order_by(BookingRoom.created_at, BookingRoom.id)
        .execution_options(populate_existing=True)
    ).scalars().all()
    if not has_rooms:
        return _Target(booking, list(rooms), None, 1)

    wanted = payload.booking_room_ids
    if len(set(wanted)) != len(wanted):
        raise ValidationError("booking_room_ids contains duplicates", rule="transaction.booking_rooms")
    by_id = {br.id: br for br in rooms}
    missing = [rid for rid in wanted if rid not in by_id]
    if missing:
        raise ValidationError(f"booking rooms {', '.join(missing)} do not belong to booking {booking.id}",
                              entity="Booking", entity_id=booking.id, rule="transaction.booking_rooms")
    return _Target(booking, [by_id[rid] for rid in wanted], None, 2)


def _room_usages(db: Session, rooms: list[BookingRoom]) -> list[ServiceUsage]:
    if not rooms:
        return []
    return list(db.execute(
        select(ServiceUsage)
        .where(
            ServiceUsage.booking_room_id.in_([br.id for br in rooms]),
            ServiceUsage.status != ServiceUsageStatus.CANCELLED.value,
        )
        .order_by(ServiceUsage.created_at, ServiceUsage.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalars().all())


def _payment_lines(db: Session, target: _Target) -> tuple[list[ChargeLine], dict]:
    """Unpaid lines for a payment, and the rows they settle keyed by (kind, id)."""
    rows: dict = {}
    lines: list[ChargeLine] = []
    if target.usage is not None:
        usage = target.usage
        if usage.status == ServiceUsageStatus.CANCELLED.value:
            raise StateError("a cancelled service usage cannot be paid", entity="ServiceUsage",
                             entity_id=usage.id, rule="transaction.usage_cancelled")
        if usage.balance > 0:
            lines.append(ChargeLine(SERVICE_LINE, usage.balance, service_usage_id=usage.id))
            rows[(SERVICE_LINE, usage.id)] = usage
        return lines, rows

    live_rooms = [br for br in target.rooms if br.state != BookingRoomState.CANCELLED.value]
    for br in live_rooms:
        if br.balance > 0:
            lines.append(ChargeLine(ROOM_LINE, int(br.balance), booking_room_id=br.id))
            rows[(ROOM_LINE, br.id)] = br
    for usage in _room_usages(db, live_rooms):
        if usage.balance > 0:
            lines.append(ChargeLine(SERVICE_LINE, usage.balance, booking_room_id=usage.booking_room_id,
                                    service_usage_id=usage.id))
            rows[(SERVICE_LINE, usage.id)] = usage
    return lines, rows


def _row_key(line: ChargeLine) -> tuple:
    return (line.kind, line.service_usage_id if line.kind == SERVICE_LINE else line.booking_room_id)


def _attach_to_folio(db: Session, txn: Transaction, booking: Booking | None) -> None:
    folio = folio_service.folio_for_booking(db, booking.id if booking else None)
    if folio is not None:
        txn.guest_folio_id = folio.id
        folio_service.reopen_folio(folio)


def _persist(db: Session, txn: Transaction, lines: list[ChargeLine]) -> None:
    db.add(txn)
    for line in lines:
        db.add(TransactionDetail(
            id=new_id(),
            transaction_id=txn.id,
            booking_room_id=line.booking_room_id if line.kind == ROOM_LINE else None,
            service_usage_id=line.service_usage_id,
            base_amount=line.base_amount,
            discount_amount=line.discount_amount,
            amount=line.amount,
        ))


def _description(ttype: TransactionType, target: _Target, given: str | None) -> str:
    if given:
        return given
    if target.booking is not None:
        return DESCRIPTIONS[ttype].format(code=target.booking.booking_code)
    return f"Service charge for usage {target.usage.id}"


def _create_payment(db: Session, ttype: TransactionType, payload: TransactionCreate, target: _Target,
                    actor: Actor, now: datetime) -> Transaction:
    if target.booking is not None and target.booking.status == BookingStatus.CANCELLED.value:
        raise StateError("payments cannot be taken on a cancelled booking", entity="Booking",
                         entity_id=target.booking.id, rule="transaction.booking_cancelled")
    if ttype == TransactionType.DEPOSIT and target.booking is None:
        raise ValidationError("a deposit needs a booking", rule="transaction.deposit_booking")

    lines, rows = _payment_lines(db, target)
    if not lines:
        raise ValidationError("nothing is due for this request", rule="transaction.nothing_due")

    if payload.amount is not None:
        # partial deposit spread over the room lines
        if ttype != TransactionType.DEPOSIT:
            raise ValidationError("an explicit amount is only accepted for DEPOSIT, REFUND and ADJUSTMENT",
                                  rule="transaction.amount")
        if payload.promotion_code:
            raise ValidationError("a partial deposit cannot take a promotion", rule="transaction.amount")
        lines = [line for line in lines if line.kind == ROOM_LINE]
        due = sum(line.base_amount for line in lines)
        if not 0 < payload.amount <= due:
            raise ValidationError(f"deposit must be between 1 and {due}", rule="transaction.amount")
        for line, share in zip(lines, allocate_discount(payload.amount, [line.base_amount for line in lines])):
            line.base_amount = share
        lines = [line for line in lines if line.base_amount > 0]

    txn_id = new_id()
    promotion_id = customer_promotion_id = None
    if payload.promotion_code:
        customer_id = payload.customer_id or (target.booking.primary_customer_id if target.booking else None) \
            or (target.usage.customer_id if target.usage else None)
        if not customer_id:
            raise ValidationError("a promotion needs a customer", rule="transaction.promotion_customer")
        promotion = get_promotion_by_code(db, payload.promotion_code)
        eligible = eligible_lines(promotion.scope, lines)
        scope = request_scope(eligible or lines)
        base = sum(line.base_amount for line in (eligible or lines))
        redemption = redeem_promotion(db, payload.promotion_code, customer_id, scope, base, now=now,
                                      actor=actor, transaction_id=txn_id)
        apply_discount(redemption.discount_amount, eligible)
        promotion_id = redemption.promotion.id
        customer_promotion_id = redemption.customer_promotion.id

    base_amount = sum(line.base_amount for line in lines)
    discount_amount = sum(line.discount_amount for line in lines)
    txn = Transaction(
        id=txn_id,
        booking_id=target.booking.id if target.booking else None,
        type=ttype.value,
        method=PaymentMethod(payload.method).value,
        base_amount=base_amount,
        discount_amount=discount_amount,
        amount=base_amount - discount_amount,
        promotion_id=promotion_id,
        customer_promotion_id=customer_promotion_id,
        transaction_ref=payload.transaction_ref or "",
        description=_description(ttype, target, payload.description),
        processed_by_id=employee_id_of(actor),
        occurred_at=now,
    )
    _attach_to_folio(db, txn, target.booking)
    _persist(db, txn, lines)

    for line in lines:
        row = rows[_row_key(line)]
        if line.kind == ROOM_LINE:
            balances.settle_room(row, line.amount, line.discount_amount)
        else:
            balances.settle_usage(row, line.amount, line.discount_amount)

    if target.booking is not None:
        booking = target.booking
        if booking.status == BookingStatus.PENDING.value:
            compare_and_set(db, Booking, booking.id, "status", BookingStatus.PENDING.value,
                            BookingStatus.CONFIRMED.value, hold_expires_at=None)
            db.refresh(booking)
        balances.recompute_booking_totals(db, booking)
    return txn


def _signed_target(target: _Target):
    if target.usage is not None:
        return SERVICE_LINE, target.usage
    if target.scenario == 2 and len(target.rooms) == 1:
        return ROOM_LINE, target.rooms[0]
    raise ValidationError("refunds and adjustments apply to exactly one booking room or service usage",
                          rule="transaction.signed_target")


def post_signed(db: Session, ttype: TransactionType, amount: int, booking: Booking | None, kind: str, row,
                actor: Actor | None, now: datetime, method=PaymentMethod.CASH, transaction_ref: str = "",
                description: str = "") -> Transaction:
    """Record a REFUND or ADJUSTMENT against one line inside the caller's unit."""
    if ttype not in SIGNED_TRANSACTION_TYPES:
        raise ValidationError(f"{ttype.value} does not take a signed amount", rule="transaction.type")
    if amount is None or int(amount) == 0:
        raise ValidationError("amount must be non-zero", rule="transaction.amount")
    amount = int(amount)
    if ttype == TransactionType.REFUND:
        if amount > 0:
            raise ValidationError("refund amounts are negative", rule="transaction.refund_sign")
        if -amount > int(row.total_paid or 0):
            raise ValidationError(f"refund exceeds the {row.total_paid} paid on this line",
                                  rule="transaction.refund_exceeds_paid")
    elif kind == SERVICE_LINE and int(row.total_price) + amount < 0:
        raise ValidationError("adjustment would make the service price negative", rule="transaction.adjustment")

    line = ChargeLine(kind, amount,
                      booking_room_id=row.id if kind == ROOM_LINE else row.booking_room_id,
                      service_usage_id=row.id if kind == SERVICE_LINE else None)
    txn = Transaction(
        id=new_id(),
        booking_id=booking.id if booking else None,
        type=ttype.value,
        method=PaymentMethod(method).value,
        base_amount=amount,
        discount_amount=0,
        amount=amount,
        transaction_ref=transaction_ref or "",
        description=description or (DESCRIPTIONS[ttype].format(code=booking.booking_code) if booking
                                     else f"{ttype.value.title()} for usage {row.id}"),
        processed_by_id=employee_id_of(actor),
        occurred_at=now,
    )
    _attach_to_folio(db, txn, booking)
    _persist(db, txn, [line])

    if ttype == TransactionType.REFUND:
        if kind == ROOM_LINE:
            balances.settle_room(row, amount)
        else:
            balances.settle_usage(row, amount)
    elif kind == ROOM_LINE:
        balances.adjust_room(row, amount)
    else:
        balances.adjust_usage(row, amount)

    if booking is not None:
        balances.recompute_booking_totals(db, booking)
    record_activity(db, ActivityType.CREATE_TRANSACTION, actor, txn.description,
                    metadata={"type": txn.type, "amount": amount},
                    booking_id=txn.booking_id, transaction_id=txn.id,
                    booking_room_id=line.booking_room_id, service_usage_id=line.service_usage_id)
    return txn


def _create_transaction(db: Session, payload: TransactionCreate, actor: Actor, now: datetime) -> Transaction:
    ttype = TransactionType(payload.type)
    target = _resolve_target(db, payload)

    if ttype in SIGNED_TRANSACTION_TYPES:
        if payload.promotion_code:
            raise ValidationError(f"{ttype.value} transactions cannot take a promotion", rule="transaction.promotion")
        kind, row = _signed_target(target)
        return post_signed(db, ttype, payload.amount, target.booking, kind, row, actor, now,
                           method=payload.method, transaction_ref=payload.transaction_ref,
                           description=payload.description)

    txn = _create_payment(db, ttype, payload, target, actor, now)
    record_activity(db, ActivityType.CREATE_TRANSACTION, actor, txn.description,
                    metadata={"type": txn.type, "scenario": target.scenario, "baseAmount": txn.base_amount,
                              "discountAmount": txn.discount_amount, "amount": txn.amount},
                    booking_id=txn.booking_id, transaction_id=txn.id, promotion_id=txn.promotion_id,
                    service_usage_id=target.usage.id if target.usage else None)
    return txn


def create_transaction(db: Session, payload: TransactionCreate, actor: Actor,
                       now: datetime | None = None) -> Transaction:
    require_employee(actor)
    txn = run_atomic(db, _create_transaction, payload, actor, as_utc(now) or utcnow())
    logger.info("transaction %s %s amount=%s booking=%s", txn.id, txn.type, txn.amount, txn.booking_id)
    return txn


def get_transaction(db: Session, transaction_id: str) -> Transaction:
    return get_or_404(db, Transaction, transaction_id)


def transaction_details(db: Session, transaction_id: str) -> list[TransactionDetail]:
    get_or_404(db, Transaction, transaction_id)
    return list(db.execute(
        select(TransactionDetail).where(TransactionDetail.transaction_id == transaction_id)
    ).scalars().all())


def list_transactions(db: Session, filters: TransactionFilters | None = None,
                      pagination: Pagination | None = None) -> Page:
    filters = filters or TransactionFilters()
    stmt = select(Transaction)
    if filters.booking_id:
        stmt = stmt.where(Transaction.booking_id == filters.booking_id)
    if filters.guest_folio_id:
        stmt = stmt.where(Transaction.guest_folio_id == filters.guest_folio_id)
    if filters.promotion_id:
        stmt = stmt.where(Transaction.promotion_id == filters.promotion_id)
    if filters.type is not None:
        stmt = stmt.where(Transaction.type == filters.type.value)
    if filters.method is not None:
        stmt = stmt.where(Transaction.method == filters.method.value)
    if filters.service_usage_id:
        stmt = stmt.where(exists().where(
            TransactionDetail.transaction_id == Transaction.id,
            TransactionDetail.service_usage_id == filters.service_usage_id,
        ))
    if filters.unbilled_only:
        stmt = stmt.where(Transaction.invoice_id.is_(None))
    if filters.start is not None:
        stmt = stmt.where(Transaction.occurred_at >= filters.start)
    if filters.end is not None:
        stmt = stmt.where(Transaction.occurred_at <= filters.end)
    return paginate(db, stmt, pagination, {"occurred_at": Transaction.occurred_at, "amount": Transaction.amount},
                    Transaction.occurred_at)
