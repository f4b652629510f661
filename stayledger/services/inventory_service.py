import logging
import random
import string
from datetime import datetime, timedelta

from sqlalchemy import and_, exists, select, update
from sqlalchemy.orm import Session

from stayledger.core.config import settings
from stayledger.core.errors import NotFoundError, RoomUnavailable, StateError, ValidationError
from stayledger.db.atomic import compare_and_set, lock_row, run_atomic
from stayledger.db.types import as_utc, utcnow
from stayledger.domain.enums import ActivityType, BookingRoomState, BookingStatus, RoomStatus
from stayledger.domain.lifecycle import ACTIVE_STATES, OCCUPYING_STATES
from stayledger.models.booking import Booking
from stayledger.models.booking_room import BookingRoom
from stayledger.models.customer import Customer
from stayledger.models.room import Room
from stayledger.models.room_type import RoomType
from stayledger.schemas.booking import BookingCreate, DateRange
from stayledger.schemas.common import Actor, Page, Pagination
from stayledger.schemas.room import RoomFilters
from stayledger.services.activity_service import record_activity
from stayledger.services.balances import recompute_booking_totals
from stayledger.services.helpers import get_or_404, new_id, paginate, require_self_or_employee

logger = logging.getLogger(__name__)

ACTIVE_STATE_VALUES = [s.value for s in ACTIVE_STATES]


def overlapping_booking_rooms(room_id_col, check_in, check_out):
    """Active booking rooms on `room_id_col` whose [in, out) range intersects [check_in, check_out)."""
    return and_(
        BookingRoom.room_id == room_id_col,
        BookingRoom.state.in_(ACTIVE_STATE_VALUES),
        BookingRoom.check_in_date < check_out,
        BookingRoom.check_out_date > check_in,
    )


def search_available_rooms(db: Session, filters: RoomFilters | None = None, pagination: Pagination | None = None,
                           actor: Actor | None = None) -> Page:
    filters = filters or RoomFilters()
    status = filters.status
    if actor is None or actor.is_customer:
        status = RoomStatus.AVAILABLE.value

    stmt = select(Room).join(RoomType, RoomType.id == Room.room_type_id)
    if status:
        stmt = stmt.where(Room.status == RoomStatus(status).value)
    if filters.search:
        stmt = stmt.where(Room.room_number.contains(filters.search.strip()))
    if filters.floor is not None:
        stmt = stmt.where(Room.floor == filters.floor)
    if filters.room_type_id:
        stmt = stmt.where(Room.room_type_id == filters.room_type_id)

    if filters.min_capacity is not None and filters.max_capacity is not None \
            and filters.min_capacity > filters.max_capacity:
        raise ValidationError("min capacity exceeds max capacity", rule="room_filters.capacity")
    if filters.min_price is not None and filters.max_price is not None and filters.min_price > filters.max_price:
        raise ValidationError("min price exceeds max price", rule="room_filters.price")
    if filters.min_capacity is not None:
        stmt = stmt.where(RoomType.capacity >= filters.min_capacity)
    if filters.max_capacity is not None:
        stmt = stmt.where(RoomType.capacity <= filters.max_capacity)
    if filters.min_price is not None:
        stmt = stmt.where(RoomType.price_per_night >= filters.min_price)
    if filters.max_price is not None:
        stmt = stmt.where(RoomType.price_per_night <= filters.max_price)

    if (filters.check_in_date is None) != (filters.check_out_date is None):
        raise ValidationError("check-in and check-out dates must be given together", rule="room_filters.date_range")
    if filters.check_in_date is not None:
        if filters.check_in_date >= filters.check_out_date:
            raise ValidationError("check-out date must be after check-in date", rule="room_filters.date_range")
        stmt = stmt.where(~exists().where(
            overlapping_booking_rooms(Room.id, filters.check_in_date, filters.check_out_date)))

    return paginate(db, stmt, pagination, {"room_number": Room.room_number, "floor": Room.floor}, Room.room_number)


def reserve_room(db: Session, booking: Booking, room_id: str, date_range: DateRange,
                 actor: Actor | None = None) -> BookingRoom:
    """Reserve `room_id` for `booking` over the half-open range [check_in, check_out).

    Participates in the caller's atomic unit. The room row is write-locked
    (version bump) before the overlap check, so two concurrent reservations of
    one room serialise and the second sees the first's booking room.
    Raises RoomUnavailable; callers move on to a different room.
    """
    nights = date_range.nights
    if nights < 1:
        raise ValidationError("check-out date must be after check-in date", rule="booking.dates")

    room = lock_row(db, Room, room_id, version=Room.version + 1)
    if room is None:
        raise NotFoundError("Room", room_id)
    if room.status == RoomStatus.MAINTENANCE.value:
        raise RoomUnavailable(f"room {room.room_number} is under maintenance", entity="Room",
                              entity_id=room.id, rule="room.maintenance")
    clash = db.execute(
        select(BookingRoom.id).where(
            overlapping_booking_rooms(room.id, date_range.check_in_date, date_range.check_out_date)
        ).limit(1)
    ).scalar_one_or_none()
    if clash is not None:
        raise RoomUnavailable(f"room {room.room_number} is already booked for these dates", entity="Room",
                              entity_id=room.id, rule="room.overlap")

    room_type = get_or_404(db, RoomType, room.room_type_id)
    subtotal = int(room_type.price_per_night) * nights
    booking_room = BookingRoom(
        id=new_id(),
        booking_id=booking.id,
        room_id=room.id,
        room_type_id=room_type.id,
        check_in_date=date_range.check_in_date,
        check_out_date=date_range.check_out_date,
        price_per_night=int(room_type.price_per_night),
        subtotal_room=subtotal,
        total_paid=0,
        balance=subtotal,
        state=BookingRoomState.RESERVED.value,
    )
    db.add(booking_room)
    db.flush()
    record_activity(db, ActivityType.RESERVE_ROOM, actor, f"Room {room.room_number} reserved",
                    booking_id=booking.id, booking_room_id=booking_room.id)
    return booking_room


def make_booking_code(now: datetime) -> str:
    return settings.BOOKING_CODE_PREFIX + now.strftime("%y%m%d") + "".join(
        random.choices(string.ascii_uppercase + string.digits, k=6))


def _candidate_rooms(db: Session, room_type_id: str, date_range: DateRange) -> list[str]:
    return list(db.execute(
        select(Room.id)
        .where(
            Room.room_type_id == room_type_id,
            Room.status != RoomStatus.MAINTENANCE.value,
            ~exists().where(overlapping_booking_rooms(Room.id, date_range.check_in_date, date_range.check_out_date)),
        )
        .order_by(Room.room_number)
    ).scalars().all())


def _create_booking(db: Session, payload: BookingCreate, actor: Actor, now: datetime) -> Booking:
    get_or_404(db, Customer, payload.customer_id)
    date_range = DateRange(check_in_date=payload.check_in_date, check_out_date=payload.check_out_date)
    if date_range.nights < 1:
        raise ValidationError("check-out date must be after check-in date", rule="booking.dates")
    if payload.total_guests < 1:
        raise ValidationError("a booking needs at least one guest", rule="booking.total_guests")
    if not payload.rooms:
        raise ValidationError("a booking needs at least one room", rule="booking.rooms")

    room_types = {}
    for req in payload.rooms:
        if req.count < 1:
            raise ValidationError("room count must be at least 1", entity="RoomType",
                                  entity_id=req.room_type_id, rule="booking.room_count")
        room_types[req.room_type_id] = get_or_404(db, RoomType, req.room_type_id)
    capacity = sum(room_types[req.room_type_id].capacity * req.count for req in payload.rooms)
    if capacity < payload.total_guests:
        raise ValidationError(f"requested rooms hold {capacity} guests, {payload.total_guests} requested",
                              rule="booking.capacity")

    for _ in range(10):
        code = make_booking_code(now)
        if db.execute(select(Booking.id).where(Booking.booking_code == code)).scalar_one_or_none() is None:
            break
    else:
        raise ValidationError("could not allocate booking code", rule="booking.code")

    booking = Booking(
        id=new_id(),
        booking_code=code,
        status=BookingStatus.PENDING.value,
        primary_customer_id=payload.customer_id,
        created_by_id=actor.id if actor.is_employee else None,
        check_in_date=payload.check_in_date,
        check_out_date=payload.check_out_date,
        total_guests=payload.total_guests,
        hold_expires_at=now + timedelta(minutes=settings.BOOKING_HOLD_MINUTES),
    )
    db.add(booking)

    booking_rooms: list[BookingRoom] = []
    for req in payload.rooms:
        reserved = 0
        for room_id in _candidate_rooms(db, req.room_type_id, date_range):
            try:
                booking_rooms.append(reserve_room(db, booking, room_id, date_range, actor))
            except RoomUnavailable:
                logger.info("room %s taken while booking, trying next candidate", room_id)
                continue
            reserved += 1
            if reserved == req.count:
                break
        if reserved < req.count:
            rt = room_types[req.room_type_id]
            raise RoomUnavailable(f"not enough {rt.name} rooms: requested {req.count}, available {reserved}",
                                  entity="RoomType", entity_id=rt.id, rule="booking.availability")

    booking.total_amount = sum(br.subtotal_room for br in booking_rooms)
    booking.deposit_required = sum(br.price_per_night for br in booking_rooms)
    booking.total_paid = 0
    booking.balance = booking.total_amount
    record_activity(db, ActivityType.CREATE_BOOKING, actor, f"Booking {booking.booking_code} created",
                    metadata={"rooms": len(booking_rooms), "totalAmount": booking.total_amount},
                    customer_id=payload.customer_id, booking_id=booking.id)
    return booking


def create_booking(db: Session, payload: BookingCreate, actor: Actor, now: datetime | None = None) -> Booking:
    require_self_or_employee(actor, payload.customer_id)
    booking = run_atomic(db, _create_booking, payload, actor, as_utc(now) or utcnow())
    logger.info("booking %s created for customer %s", booking.booking_code, payload.customer_id)
    return booking


def booking_rooms_of(db: Session, booking_id: str) -> list[BookingRoom]:
    return list(db.execute(
        select(BookingRoom).where(BookingRoom.booking_id == booking_id).order_by(BookingRoom.created_at, BookingRoom.id)
    ).scalars().all())


def release_booking(db: Session, booking: Booking, reason: str, actor: Actor | None, now: datetime,
                    expected=(BookingStatus.PENDING, BookingStatus.CONFIRMED)) -> bool:
    """Move `booking` to CANCELLED and free its reserved rooms. False when its status moved on meanwhile."""
    occupied = db.execute(
        select(BookingRoom.id).where(
            BookingRoom.booking_id == booking.id,
            BookingRoom.state.in_([s.value for s in OCCUPYING_STATES]),
        ).limit(1)
    ).scalar_one_or_none()
    if occupied is not None:
        raise StateError("a booking with checked-in rooms cannot be cancelled", entity="Booking",
                         entity_id=booking.id, rule="booking.cancel_after_check_in")
    if not compare_and_set(db, Booking, booking.id, "status", [s.value for s in expected],
                           BookingStatus.CANCELLED.value, cancel_reason=reason or "", cancelled_at=now):
        return False
    # nothing is owed on a cancelled room; any amount already paid becomes a credit
    db.execute(
        update(BookingRoom)
        .where(BookingRoom.booking_id == booking.id, BookingRoom.state == BookingRoomState.RESERVED.value)
        .values(state=BookingRoomState.CANCELLED.value, balance=-BookingRoom.total_paid)
        .execution_options(synchronize_session=False)
    )
    db.refresh(booking)
    db.execute(
        select(BookingRoom).where(BookingRoom.booking_id == booking.id).execution_options(populate_existing=True)
    ).scalars().all()
    recompute_booking_totals(db, booking)
    record_activity(db, ActivityType.CANCEL_BOOKING, actor, f"Booking {booking.booking_code} cancelled",
                    metadata={"reason": reason or ""}, customer_id=booking.primary_customer_id,
                    booking_id=booking.id)
    return True


def _cancel_booking(db: Session, booking_id: str, actor: Actor, reason: str, now: datetime) -> Booking:
    booking = get_or_404(db, Booking, booking_id)
    require_self_or_employee(actor, booking.primary_customer_id)
    if not release_booking(db, booking, reason, actor, now):
        db.refresh(booking)
        raise StateError(f"booking in status {booking.status} cannot be cancelled", entity="Booking",
                         entity_id=booking.id, rule="booking.cancel")
    return booking


def cancel_booking(db: Session, booking_id: str, actor: Actor, reason: str = "",
                   now: datetime | None = None) -> Booking:
    booking = run_atomic(db, _cancel_booking, booking_id, actor, reason, as_utc(now) or utcnow())
    logger.info("booking %s cancelled", booking_id)
    return booking


def expire_pending_bookings(db: Session, now: datetime | None = None) -> int:
    """Cancel PENDING bookings whose hold ran out. The caller commits."""
    now = as_utc(now) or utcnow()
    expired = db.execute(
        select(Booking).where(
            Booking.status == BookingStatus.PENDING.value,
            Booking.hold_expires_at.is_not(None),
            Booking.hold_expires_at < now,
        )
    ).scalars().all()
    count = 0
    for booking in expired:
        if release_booking(db, booking, "hold expired", None, now, expected=(BookingStatus.PENDING,)):
            count += 1
    return count
