"""Booking-room stay lifecycle.

RESERVED -> CHECKED_IN -> IN_STAY -> INSPECTION_PENDING -> INSPECTED -> CHECKED_OUT

CHECKED_IN -> INSPECTION_PENDING is allowed as well: a guest may ask to leave
before any service usage moved the room into IN_STAY. RESERVED -> CANCELLED is
the only way out before check-in.
"""
from stayledger.core.errors import StateError
from stayledger.domain.enums import BookingRoomState as S

TRANSITIONS: dict[S, frozenset[S]] = {
    S.RESERVED: frozenset({S.CHECKED_IN, S.CANCELLED}),
    S.CHECKED_IN: frozenset({S.IN_STAY, S.INSPECTION_PENDING}),
    S.IN_STAY: frozenset({S.INSPECTION_PENDING}),
    S.INSPECTION_PENDING: frozenset({S.INSPECTED}),
    S.INSPECTED: frozenset({S.CHECKED_OUT}),
    S.CHECKED_OUT: frozenset(),
    S.CANCELLED: frozenset(),
}

# States in which a booking room holds its room for its date range
ACTIVE_STATES = frozenset({S.RESERVED, S.CHECKED_IN, S.IN_STAY, S.INSPECTION_PENDING, S.INSPECTED})

# States in which the guest is physically in the room
OCCUPYING_STATES = frozenset({S.CHECKED_IN, S.IN_STAY, S.INSPECTION_PENDING, S.INSPECTED})

TERMINAL_STATES = frozenset({S.CHECKED_OUT, S.CANCELLED})


def sources_for(target: S) -> frozenset[S]:
    return frozenset(src for src, targets in TRANSITIONS.items() if target in targets)


def can_transition(current: S, target: S) -> bool:
    return target in TRANSITIONS.get(S(current), frozenset())


def assert_transition(current: S, target: S, booking_room_id: str | None = None) -> None:
    if not can_transition(current, target):
        raise StateError(
            f"booking room cannot move from {S(current).value} to {S(target).value}",
            entity="BookingRoom", entity_id=booking_room_id, rule=f"lifecycle.{S(target).value.lower()}",
        )
