"""Read-only projections over the ledger and the room inventory."""
from datetime import date, datetime

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stayledger.core.errors import ValidationError
from stayledger.db.types import as_utc
from stayledger.domain.enums import BookingRoomState, RoomStatus, TransactionType
from stayledger.domain.lifecycle import OCCUPYING_STATES
from stayledger.models.booking_room import BookingRoom
from stayledger.models.room import Room
from stayledger.models.transaction import Transaction


def get_revenue_report(db: Session, start: datetime, end: datetime) -> dict:
    start, end = as_utc(start), as_utc(end)
    if start is None or end is None or start > end:
        raise ValidationError("report window must have start <= end", rule="report.window")

    rows = db.execute(
        select(Transaction.type, func.coalesce(func.sum(Transaction.amount), 0), func.count(Transaction.id))
        .where(Transaction.occurred_at >= start, Transaction.occurred_at <= end)
        .group_by(Transaction.type)
    ).all()

    by_type = {t.value: 0 for t in TransactionType}
    count = 0
    for ttype, amount, n in rows:
        by_type[ttype] = int(amount or 0)
        count += int(n)
    discounts = db.execute(
        select(func.coalesce(func.sum(Transaction.discount_amount), 0))
        .where(Transaction.occurred_at >= start, Transaction.occurred_at <= end)
    ).scalar_one()

    return {
        "start": start,
        "end": end,
        "by_type": by_type,
        # adjustments change what is owed, not what was received
        "net_received": sum(v for k, v in by_type.items() if k != TransactionType.ADJUSTMENT.value),
        "total_discount": int(discounts or 0),
        "transaction_count": count,
    }


def get_occupancy_report(db: Session, on_date: date) -> dict:
    total = db.execute(select(func.count(Room.id))).scalar_one()
    maintenance = db.execute(
        select(func.count(Room.id)).where(Room.status == RoomStatus.MAINTENANCE.value)
    ).scalar_one()

    # a night is taken when the half-open stay [in, out) covers it
    covering = (BookingRoom.check_in_date <= on_date, BookingRoom.check_out_date > on_date)
    occupied = db.execute(
        select(func.count(func.distinct(BookingRoom.room_id)))
        .where(*covering, BookingRoom.state.in_([s.value for s in OCCUPYING_STATES]))
    ).scalar_one()
    reserved = db.execute(
        select(func.count(func.distinct(BookingRoom.room_id)))
        .where(*covering, BookingRoom.state == BookingRoomState.RESERVED.value)
    ).scalar_one()

    sellable = int(total) - int(maintenance)
    return {
        "date": on_date,
        "total_rooms": int(total),
        "maintenance_rooms": int(maintenance),
        "occupied_rooms": int(occupied),
        "reserved_rooms": int(reserved),
        "available_rooms": max(sellable - int(occupied) - int(reserved), 0),
        "occupancy_rate": round(int(occupied) / sellable, 4) if sellable > 0 else 0.0,
    }
