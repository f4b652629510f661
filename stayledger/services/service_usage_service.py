import logging

from sqlalchemy.orm import Session

from stayledger.core.errors import NotFoundError, StateError, ValidationError
from stayledger.db.atomic import compare_and_set, run_atomic
from stayledger.domain.enums import ActivityType, BookingRoomState, BookingStatus, ServiceUsageStatus
from stayledger.models.booking import Booking
from stayledger.models.booking_room import BookingRoom
from stayledger.models.customer import Customer
from stayledger.models.hotel_service import HotelService
from stayledger.models.service_usage import ServiceUsage
from stayledger.schemas.common import Actor
from stayledger.schemas.service_usage import ServiceUsageCreate
from stayledger.services.activity_service import record_activity
from stayledger.services.balances import recompute_booking_totals
from stayledger.services.helpers import get_or_404, new_id, require_employee
from stayledger.services.stay_service import start_stay

logger = logging.getLogger(__name__)

U = ServiceUsageStatus

STATUS_TRANSITIONS = {
    U.PENDING.value: {U.TRANSFERRED.value, U.CANCELLED.value},
    U.TRANSFERRED.value: {U.COMPLETED.value, U.CANCELLED.value},
    U.COMPLETED.value: set(),
    U.CANCELLED.value: set(),
}

# a service can be charged to a room only while the guest is in it
CHARGEABLE_ROOM_STATES = {BookingRoomState.CHECKED_IN.value, BookingRoomState.IN_STAY.value}


def _create_service_usage(db: Session, payload: ServiceUsageCreate, actor: Actor) -> ServiceUsage:
    service = get_or_404(db, HotelService, payload.service_id)
    if not service.is_active:
        raise ValidationError(f"service {service.name} is not offered", entity="HotelService",
                              entity_id=service.id, rule="service.inactive")
    if payload.quantity <= 0:
        raise ValidationError("quantity must be positive", rule="service_usage.quantity")

    booking_id = payload.booking_id
    booking_room = None
    if payload.booking_room_id:
        booking_room = get_or_404(db, BookingRoom, payload.booking_room_id)
        if booking_id and booking_room.booking_id != booking_id:
            raise ValidationError("booking room does not belong to this booking", entity="BookingRoom",
                                  entity_id=booking_room.id, rule="service_usage.booking_room")
        if booking_room.state not in CHARGEABLE_ROOM_STATES:
            raise StateError(f"cannot charge a service to a room in state {booking_room.state}",
                             entity="BookingRoom", entity_id=booking_room.id, rule="service_usage.room_state")
        booking_id = booking_room.booking_id

    booking = None
    if booking_id:
        booking = get_or_404(db, Booking, booking_id)
        if booking.status in (BookingStatus.CANCELLED.value, BookingStatus.CHECKED_OUT.value):
            raise StateError(f"booking {booking.booking_code} is {booking.status}", entity="Booking",
                             entity_id=booking.id, rule="service_usage.booking_status")

    customer_id = payload.customer_id or (booking.primary_customer_id if booking else None)
    if customer_id and db.get(Customer, customer_id) is None:
        raise NotFoundError("Customer", customer_id)

    usage = ServiceUsage(
        id=new_id(),
        service_id=service.id,
        booking_id=booking_id,
        booking_room_id=booking_room.id if booking_room else None,
        customer_id=customer_id,
        employee_id=actor.id,
        quantity=payload.quantity,
        unit_price=int(service.price),
        total_price=int(service.price) * payload.quantity,
        discount_amount=0,
        total_paid=0,
        status=U.PENDING.value,
    )
    db.add(usage)
    if booking_room is not None:
        start_stay(db, booking_room, actor)
    if booking is not None:
        recompute_booking_totals(db, booking)
    record_activity(db, ActivityType.CREATE_SERVICE_USAGE, actor,
                    f"{service.name} x{payload.quantity}",
                    metadata={"totalPrice": usage.total_price},
                    customer_id=customer_id, booking_id=booking_id,
                    booking_room_id=usage.booking_room_id, service_usage_id=usage.id)
    return usage


def create_service_usage(db: Session, payload: ServiceUsageCreate, actor: Actor) -> ServiceUsage:
    require_employee(actor)
    usage = run_atomic(db, _create_service_usage, payload, actor)
    logger.info("service usage %s recorded (total=%s)", usage.id, usage.total_price)
    return usage


def _update_status(db: Session, usage_id: str, status: ServiceUsageStatus, actor: Actor) -> ServiceUsage:
    usage = get_or_404(db, ServiceUsage, usage_id)
    target = ServiceUsageStatus(status).value
    if target not in STATUS_TRANSITIONS[usage.status]:
        raise StateError(f"service usage cannot move from {usage.status} to {target}", entity="ServiceUsage",
                         entity_id=usage.id, rule=f"service_usage.{target.lower()}")
    if target == U.COMPLETED.value and usage.balance > 0:
        raise StateError(f"service usage still owes {usage.balance}", entity="ServiceUsage",
                         entity_id=usage.id, rule="service_usage.unpaid")
    if target == U.CANCELLED.value and usage.total_paid:
        raise StateError("refund the payments before cancelling", entity="ServiceUsage",
                         entity_id=usage.id, rule="service_usage.paid")

    previous = usage.status
    if not compare_and_set(db, ServiceUsage, usage.id, "status", previous, target):
        raise StateError("service usage changed concurrently", entity="ServiceUsage", entity_id=usage.id,
                         rule=f"service_usage.{target.lower()}")
    db.refresh(usage)
    if usage.booking_id:
        recompute_booking_totals(db, get_or_404(db, Booking, usage.booking_id))
    record_activity(db, ActivityType.UPDATE_SERVICE_USAGE, actor, f"Service usage {previous} -> {target}",
                    metadata={"previousStatus": previous, "newStatus": target},
                    booking_id=usage.booking_id, service_usage_id=usage.id)
    return usage


def update_service_usage_status(db: Session, usage_id: str, status: ServiceUsageStatus,
                                actor: Actor) -> ServiceUsage:
    require_employee(actor)
    usage = run_atomic(db, _update_status, usage_id, status, actor)
    logger.info("service usage %s is now %s", usage_id, usage.status)
    return usage
