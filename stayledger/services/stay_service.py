import logging
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stayledger.core.errors import ConflictError, NotFoundError, RoomUnavailable, StateError, ValidationError
from stayledger.db.atomic import compare_and_set, lock_row, run_atomic
from stayledger.db.types import as_utc, utcnow
from stayledger.domain import lifecycle
from stayledger.domain.enums import (
    ActivityType, BookingRoomState, BookingStatus, RoomStatus, StayStatus, TransactionType,
)
from stayledger.models.booking import Booking
from stayledger.models.booking_guest import BookingGuest
from stayledger.models.booking_room import BookingRoom
from stayledger.models.customer import Customer
from stayledger.models.inspection import Inspection
from stayledger.models.room import Room
from stayledger.models.room_type import RoomType
from stayledger.models.stay_detail import StayDetail
from stayledger.models.stay_record import StayRecord
from stayledger.schemas.common import Actor
from stayledger.schemas.stay import CheckInGuest, InspectionCreate
from stayledger.services import folio_service
from stayledger.services.activity_service import record_activity
from stayledger.services.discount_service import ROOM_LINE
from stayledger.services.helpers import STAFF_ROLES, get_or_404, new_id, require_employee
from stayledger.services.transaction_service import post_signed

logger = logging.getLogger(__name__)

S = BookingRoomState


def _move(db: Session, booking_room: BookingRoom, target: BookingRoomState, **extra) -> BookingRoom:
    """Compare-and-set the booking room into `target` from any state allowed to reach it."""
    lifecycle.assert_transition(booking_room.state, target, booking_room.id)
    sources = [s.value for s in lifecycle.sources_for(target)]
    if not compare_and_set(db, BookingRoom, booking_room.id, "state", sources, target.value, **extra):
        db.refresh(booking_room)
        raise StateError(f"booking room moved to {booking_room.state} concurrently", entity="BookingRoom",
                         entity_id=booking_room.id, rule=f"lifecycle.{target.value.lower()}")
    db.refresh(booking_room)
    return booking_room


def _live_states(db: Session, booking_id: str) -> set[str]:
    db.flush()
    return set(db.execute(
        select(BookingRoom.state).where(
            BookingRoom.booking_id == booking_id, BookingRoom.state != S.CANCELLED.value)
    ).scalars().all())


def _check_in(db: Session, booking_room_id: str, guests: list[CheckInGuest], actor: Actor,
              now: datetime) -> BookingRoom:
    booking_room = get_or_404(db, BookingRoom, booking_room_id)
    booking = get_or_404(db, Booking, booking_room.booking_id)
    if booking.status in (BookingStatus.CANCELLED.value, BookingStatus.CHECKED_OUT.value):
        raise StateError(f"booking {booking.booking_code} is {booking.status}", entity="Booking",
                         entity_id=booking.id, rule="check_in.booking_status")
    lifecycle.assert_transition(booking_room.state, S.CHECKED_IN, booking_room.id)

    if not guests:
        raise ValidationError("check-in needs at least one guest", entity="BookingRoom",
                              entity_id=booking_room.id, rule="check_in.guests")
    if sum(1 for g in guests if g.is_primary) != 1:
        raise ValidationError("exactly one guest must be primary", entity="BookingRoom",
                              entity_id=booking_room.id, rule="check_in.primary_guest")
    customer_ids = [g.customer_id for g in guests]
    if len(set(customer_ids)) != len(customer_ids):
        raise ValidationError("a guest is listed twice", entity="BookingRoom",
                              entity_id=booking_room.id, rule="check_in.guests")
    for customer_id in customer_ids:
        get_or_404(db, Customer, customer_id)
    room_type = get_or_404(db, RoomType, booking_room.room_type_id)
    if len(guests) > room_type.capacity:
        raise ValidationError(f"room holds {room_type.capacity} guests, {len(guests)} given", entity="BookingRoom",
                              entity_id=booking_room.id, rule="check_in.capacity")

    room = lock_row(db, Room, booking_room.room_id, version=Room.version + 1)
    if room is None:
        raise NotFoundError("Room", booking_room.room_id)
    if room.status == RoomStatus.MAINTENANCE.value:
        raise StateError(f"room {room.room_number} is under maintenance", entity="Room",
                         entity_id=room.id, rule="check_in.room_maintenance")
    if room.status == RoomStatus.OCCUPIED.value:
        raise RoomUnavailable(f"room {room.room_number} is still occupied", entity="Room",
                              entity_id=room.id, rule="check_in.room_occupied")

    _move(db, booking_room, S.CHECKED_IN, actual_check_in=now)
    for g in guests:
        db.add(BookingGuest(id=new_id(), booking_room_id=booking_room.id, customer_id=g.customer_id,
                            is_primary=g.is_primary))

    stay = db.execute(select(StayRecord).where(StayRecord.booking_id == booking.id)).scalar_one_or_none()
    if stay is None:
        stay = StayRecord(id=new_id(), booking_id=booking.id, status=StayStatus.OPEN.value, opened_at=now)
        db.add(stay)
        db.flush()
    elif stay.status != StayStatus.OPEN.value:
        stay.status = StayStatus.OPEN.value
        stay.closed_at = None
    db.add(StayDetail(id=new_id(), stay_record_id=stay.id, booking_room_id=booking_room.id, room_id=room.id,
                      actual_check_in=now))
    folio_service.open_folio(db, stay, booking)

    room.status = RoomStatus.OCCUPIED.value
    booking.hold_expires_at = None
    if _live_states(db, booking.id) <= {s.value for s in lifecycle.OCCUPYING_STATES}:
        booking.status = BookingStatus.CHECKED_IN.value

    record_activity(db, ActivityType.CHECK_IN, actor, f"Checked in to room {room.room_number}",
                    metadata={"guests": customer_ids}, customer_id=booking.primary_customer_id,
                    booking_id=booking.id, booking_room_id=booking_room.id)
    return booking_room


def check_in(db: Session, booking_room_id: str, guests: list[CheckInGuest], actor: Actor,
             now: datetime | None = None) -> BookingRoom:
    require_employee(actor)
    booking_room = run_atomic(db, _check_in, booking_room_id, guests, actor, as_utc(now) or utcnow())
    logger.info("booking room %s checked in", booking_room_id)
    return booking_room


def start_stay(db: Session, booking_room: BookingRoom, actor: Actor | None = None) -> BookingRoom:
    """CHECKED_IN -> IN_STAY inside the caller's unit; a no-op when already IN_STAY."""
    if booking_room.state == S.IN_STAY.value:
        return booking_room
    _move(db, booking_room, S.IN_STAY)
    record_activity(db, ActivityType.START_STAY, actor, "Stay started",
                    booking_id=booking_room.booking_id, booking_room_id=booking_room.id)
    return booking_room


def _mark_in_stay(db: Session, booking_room_id: str, actor: Actor | None) -> BookingRoom:
    return start_stay(db, get_or_404(db, BookingRoom, booking_room_id), actor)


def mark_in_stay(db: Session, booking_room_id: str, actor: Actor | None = None) -> BookingRoom:
    return run_atomic(db, _mark_in_stay, booking_room_id, actor)


def _load_distinct(db: Session, booking_room_ids: list[str]) -> list[BookingRoom]:
    if not booking_room_ids:
        raise ValidationError("no booking rooms given", rule="booking_rooms.required")
    if len(set(booking_room_ids)) != len(booking_room_ids):
        raise ValidationError("booking room listed twice", rule="booking_rooms.duplicate")
    return [get_or_404(db, BookingRoom, rid) for rid in booking_room_ids]


def _request_checkout(db: Session, booking_room_ids: list[str], actor: Actor) -> list[BookingRoom]:
    booking_rooms = _load_distinct(db, booking_room_ids)
    for br in booking_rooms:
        _move(db, br, S.INSPECTION_PENDING)
        record_activity(db, ActivityType.REQUEST_CHECKOUT, actor, "Checkout requested",
                        booking_id=br.booking_id, booking_room_id=br.id)
    return booking_rooms


def request_checkout(db: Session, booking_room_ids: list[str], actor: Actor) -> list[BookingRoom]:
    require_employee(actor)
    booking_rooms = run_atomic(db, _request_checkout, list(booking_room_ids), actor)
    logger.info("checkout requested for %d booking room(s)", len(booking_rooms))
    return booking_rooms


def inspection_for(db: Session, booking_room_id: str) -> Inspection | None:
    return db.execute(
        select(Inspection).where(Inspection.booking_room_id == booking_room_id)
    ).scalar_one_or_none()


def _validate_inspection(payload: InspectionCreate) -> None:
    for flag, amount, name in (
        (payload.has_damages, payload.damage_amount, "damage"),
        (payload.has_missing_items, payload.missing_amount, "missing"),
        (payload.has_violations, payload.penalty_amount, "penalty"),
    ):
        if amount < 0:
            raise ValidationError(f"{name} amount must not be negative", rule=f"inspection.{name}_amount")
        if amount and not flag:
            raise ValidationError(f"{name} amount given without the matching flag", rule=f"inspection.{name}_amount")


def _record_inspection(db: Session, booking_room_id: str, payload: InspectionCreate, actor: Actor,
                       now: datetime) -> Inspection:
    booking_room = get_or_404(db, BookingRoom, booking_room_id)
    if inspection_for(db, booking_room.id) is not None:
        raise StateError("booking room already inspected", entity="BookingRoom", entity_id=booking_room.id,
                         rule="inspection.exists")
    _validate_inspection(payload)
    _move(db, booking_room, S.INSPECTED)

    flagged = payload.has_damages or payload.has_missing_items or payload.has_violations
    inspection = Inspection(
        id=new_id(),
        booking_room_id=booking_room.id,
        inspected_by_id=actor.id,
        has_damages=payload.has_damages,
        damage_notes=payload.damage_notes or "",
        damage_amount=payload.damage_amount,
        has_missing_items=payload.has_missing_items,
        missing_items=payload.missing_items or "",
        missing_amount=payload.missing_amount,
        has_violations=payload.has_violations,
        violation_notes=payload.violation_notes or "",
        penalty_amount=payload.penalty_amount,
        total_penalty=payload.damage_amount + payload.missing_amount + payload.penalty_amount,
        is_approved=not flagged,
        approved_by_id=actor.id if not flagged else None,
        approved_at=now if not flagged else None,
        notes=payload.notes or "",
        created_at=now,
    )
    db.add(inspection)

    if inspection.total_penalty > 0:
        booking = get_or_404(db, Booking, booking_room.booking_id)
        post_signed(db, TransactionType.ADJUSTMENT, inspection.total_penalty, booking, ROOM_LINE, booking_room,
                    actor, now, description=f"Inspection penalty for booking {booking.booking_code}")

    record_activity(db, ActivityType.RECORD_INSPECTION, actor,
                    "Inspection recorded" + (" with issues" if flagged else ""),
                    metadata={"totalPenalty": inspection.total_penalty, "approved": inspection.is_approved},
                    booking_id=booking_room.booking_id, booking_room_id=booking_room.id)
    return inspection


def record_inspection(db: Session, booking_room_id: str, payload: InspectionCreate, actor: Actor,
                      now: datetime | None = None) -> Inspection:
    require_employee(actor)
    inspection = run_atomic(db, _record_inspection, booking_room_id, payload, actor, as_utc(now) or utcnow())
    logger.info("inspection recorded for booking room %s (approved=%s)", booking_room_id, inspection.is_approved)
    return inspection


def _approve_inspection(db: Session, booking_room_id: str, actor: Actor, notes: str, now: datetime) -> Inspection:
    inspection = inspection_for(db, booking_room_id)
    if inspection is None:
        raise NotFoundError("Inspection", booking_room_id, message="booking room has no inspection")
    if inspection.is_approved:
        return inspection
    if not compare_and_set(db, Inspection, inspection.id, "is_approved", False, True,
                           approved_by_id=actor.id, approved_at=now,
                           notes="\n".join(n for n in (inspection.notes, notes) if n)):
        raise ConflictError("inspection approved concurrently", entity="Inspection", entity_id=inspection.id,
                            rule="inspection.approve")
    db.refresh(inspection)
    record_activity(db, ActivityType.APPROVE_INSPECTION, actor, "Inspection approved",
                    metadata={"notes": notes or ""}, booking_room_id=booking_room_id)
    return inspection


def approve_inspection(db: Session, booking_room_id: str, actor: Actor, notes: str = "",
                       now: datetime | None = None) -> Inspection:
    require_employee(actor, roles=STAFF_ROLES)
    inspection = run_atomic(db, _approve_inspection, booking_room_id, actor, notes, as_utc(now) or utcnow())
    logger.info("inspection for booking room %s approved by %s", booking_room_id, actor.id)
    return inspection


def can_checkout(inspection: Inspection | None) -> bool:
    return inspection is not None and bool(inspection.is_approved)


def _release_room(db: Session, room_id: str) -> None:
    db.flush()
    still_there = db.execute(
        select(func.count(BookingRoom.id)).where(
            BookingRoom.room_id == room_id,
            BookingRoom.state.in_([s.value for s in lifecycle.OCCUPYING_STATES]),
        )
    ).scalar_one()
    if still_there:
        return
    room = lock_row(db, Room, room_id, version=Room.version + 1)
    if room is not None and room.status == RoomStatus.OCCUPIED.value:
        room.status = RoomStatus.AVAILABLE.value


def _close_booking_if_done(db: Session, booking_id: str, now: datetime) -> None:
    if _live_states(db, booking_id) != {S.CHECKED_OUT.value}:
        return
    booking = get_or_404(db, Booking, booking_id)
    booking.status = BookingStatus.CHECKED_OUT.value
    stay = db.execute(select(StayRecord).where(StayRecord.booking_id == booking_id)).scalar_one_or_none()
    if stay is not None and stay.status != StayStatus.CLOSED.value:
        stay.status = StayStatus.CLOSED.value
        stay.closed_at = now
        folio = folio_service.folio_for_booking(db, booking_id)
        if folio is not None:
            folio_service.close_folio_if_settled(db, folio, now)


def _check_out(db: Session, booking_room_ids: list[str], actor: Actor, now: datetime) -> list[BookingRoom]:
    booking_rooms = _load_distinct(db, booking_room_ids)
    for br in booking_rooms:
        if br.state != S.INSPECTED.value:
            raise StateError(f"booking room is {br.state}; checkout needs an approved inspection",
                             entity="BookingRoom", entity_id=br.id, rule="checkout.inspection")
        if not can_checkout(inspection_for(db, br.id)):
            raise StateError("inspection is not approved", entity="BookingRoom", entity_id=br.id,
                             rule="checkout.inspection_approved")
        _move(db, br, S.CHECKED_OUT, actual_check_out=now)
        detail = db.execute(select(StayDetail).where(StayDetail.booking_room_id == br.id)).scalar_one_or_none()
        if detail is not None:
            detail.actual_check_out = now
        record_activity(db, ActivityType.CHECK_OUT, actor, "Checked out",
                        booking_id=br.booking_id, booking_room_id=br.id)

    for room_id in {br.room_id for br in booking_rooms}:
        _release_room(db, room_id)
    for booking_id in {br.booking_id for br in booking_rooms}:
        _close_booking_if_done(db, booking_id, now)
    return booking_rooms


def check_out(db: Session, booking_room_ids: list[str], actor: Actor,
              now: datetime | None = None) -> list[BookingRoom]:
    """Check rooms out. Every room must be INSPECTED with an approved inspection or nothing is applied."""
    require_employee(actor)
    booking_rooms = run_atomic(db, _check_out, list(booking_room_ids), actor, as_utc(now) or utcnow())
    logger.info("checked out %d booking room(s)", len(booking_rooms))
    return booking_rooms
