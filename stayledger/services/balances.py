"""Running balances on booking rooms, service usages and bookings.

Sign convention: a transaction amount is money received from the guest
(negative for refunds). ADJUSTMENT amounts change what is owed instead.
A booking room owes ``total_paid + balance``; a cancelled room owes nothing.
A discount settles part of a line without money changing hands.
"""
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stayledger.domain.enums import ServiceUsageStatus
from stayledger.models.booking import Booking
from stayledger.models.booking_room import BookingRoom
from stayledger.models.service_usage import ServiceUsage


def settle_room(booking_room: BookingRoom, paid: int, discount: int = 0) -> None:
    booking_room.total_paid = int(booking_room.total_paid or 0) + paid
    booking_room.balance = int(booking_room.balance or 0) - paid - discount


def adjust_room(booking_room: BookingRoom, amount: int) -> None:
    booking_room.balance = int(booking_room.balance or 0) + amount


def settle_usage(usage: ServiceUsage, paid: int, discount: int = 0) -> None:
    usage.total_paid = int(usage.total_paid or 0) + paid
    usage.discount_amount = int(usage.discount_amount or 0) + discount
    if usage.balance <= 0 and usage.status in (ServiceUsageStatus.PENDING.value,
                                               ServiceUsageStatus.TRANSFERRED.value):
        usage.status = ServiceUsageStatus.COMPLETED.value


def adjust_usage(usage: ServiceUsage, amount: int) -> None:
    usage.total_price = int(usage.total_price or 0) + amount


def recompute_booking_totals(db: Session, booking: Booking) -> Booking:
    db.flush()
    room_paid, room_owed = db.execute(
        select(
            func.coalesce(func.sum(BookingRoom.total_paid), 0),
            func.coalesce(func.sum(BookingRoom.total_paid + BookingRoom.balance), 0),
        ).where(BookingRoom.booking_id == booking.id)
    ).one()
    usage_paid = db.execute(
        select(func.coalesce(func.sum(ServiceUsage.total_paid), 0)).where(ServiceUsage.booking_id == booking.id)
    ).scalar_one()
    usage_owed = db.execute(
        select(func.coalesce(func.sum(ServiceUsage.total_price - ServiceUsage.discount_amount), 0)).where(
            ServiceUsage.booking_id == booking.id,
            ServiceUsage.status != ServiceUsageStatus.CANCELLED.value,
        )
    ).scalar_one()
    booking.total_amount = int(room_owed) + int(usage_owed)
    booking.total_paid = int(room_paid) + int(usage_paid)
    booking.balance = booking.total_amount - booking.total_paid
    return booking
