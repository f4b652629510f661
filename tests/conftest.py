"""
Pytest configuration and shared fixtures.

Unit tests run against an in-memory SQLite database; concurrency tests build
their own file-backed database (see `file_engine`) so each thread can hold
its own connection.
"""
import itertools
from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import stayledger.models  # noqa: F401  registers every table on Base.metadata
from stayledger.db.session import Base, make_engine
from stayledger.models import Customer, Employee, HotelService, Promotion, Room, RoomType
from stayledger.schemas.booking import BookingCreate, RoomRequest
from stayledger.schemas.common import Actor
from stayledger.schemas.stay import CheckInGuest, InspectionCreate
from stayledger.services import inventory_service, stay_service


@pytest.fixture(scope="function")
def db_engine():
    """In-memory database engine."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(db_engine):
    """Database session."""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def file_engine(tmp_path):
    """File-backed database for tests that need one connection per thread."""
    engine = make_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


class Factory:
    """Builds committed rows for tests; every helper returns the ORM object."""

    NOW = datetime(2026, 10, 20, 9, 0, tzinfo=timezone.utc)
    CHECK_IN = date(2026, 11, 1)
    CHECK_OUT = date(2026, 11, 3)  # two nights

    def __init__(self, db):
        self.db = db
        self._seq = itertools.count(1)

    def _save(self, obj):
        self.db.add(obj)
        self.db.commit()
        self.db.refresh(obj)
        return obj

    def employee(self, role="RECEPTIONIST", name="Front Desk"):
        n = next(self._seq)
        return self._save(Employee(id=f"emp-{n}", name=f"{name} {n}", role=role, is_active=True))

    def staff(self, role="RECEPTIONIST") -> Actor:
        return Actor.employee(self.employee(role=role).id, role=role)

    def customer(self, name="Tran Thi B", points=0):
        n = next(self._seq)
        return self._save(Customer(id=f"cus-{n}", full_name=f"{name} {n}", phone=f"0900{n:06d}",
                                   loyalty_points=points))

    def room_type(self, name=None, price=500_000, capacity=2):
        n = next(self._seq)
        return self._save(RoomType(id=f"rt-{n}", name=name or f"Deluxe {n}", capacity=capacity, total_bed=1,
                                   price_per_night=price))

    def room(self, room_type, number=None, floor=1, status="AVAILABLE"):
        n = next(self._seq)
        return self._save(Room(id=f"room-{n}", room_number=number or f"{floor}{n:02d}", floor=floor,
                               status=status, room_type_id=room_type.id, version=0))

    def service(self, name=None, price=50_000, is_active=True):
        n = next(self._seq)
        return self._save(HotelService(id=f"svc-{n}", name=name or f"Laundry {n}", price=price, unit="item",
                                       is_active=is_active))

    def promotion(self, code, type="PERCENTAGE", value=10, scope="ALL", max_discount=None, min_amount=0,
                  total_qty=None, per_customer_limit=None, start=None, end=None, disabled_at=None):
        n = next(self._seq)
        return self._save(Promotion(
            id=f"promo-{n}", code=code, type=type, scope=scope, value=value, max_discount=max_discount,
            min_booking_amount=min_amount,
            start_date=start or self.NOW - timedelta(days=30),
            end_date=end or self.NOW + timedelta(days=30),
            total_qty=total_qty, remaining_qty=total_qty, per_customer_limit=per_customer_limit,
            redeemed_count=0, disabled_at=disabled_at,
        ))

    def booking(self, customer, rooms, actor=None, guests=1, check_in=None, check_out=None):
        """`rooms` is a list of (room_type, count) pairs."""
        payload = BookingCreate(
            rooms=[RoomRequest(room_type_id=rt.id, count=count) for rt, count in rooms],
            check_in_date=check_in or self.CHECK_IN,
            check_out_date=check_out or self.CHECK_OUT,
            total_guests=guests,
            customer_id=customer.id,
        )
        return inventory_service.create_booking(self.db, payload, actor or self.staff(), now=self.NOW)

    def booking_rooms(self, booking):
        return inventory_service.booking_rooms_of(self.db, booking.id)

    def checked_in(self, customer, actor, room_type=None):
        """One-room booking checked in by `customer`; returns (booking, booking_room)."""
        room_type = room_type or self.room_type()
        self.room(room_type)
        booking = self.booking(customer, [(room_type, 1)], actor=actor)
        br = self.booking_rooms(booking)[0]
        stay_service.check_in(self.db, br.id, [CheckInGuest(customer_id=customer.id, is_primary=True)], actor,
                              now=self.NOW)
        return booking, br

    def inspected(self, customer, actor, inspection=None, room_type=None):
        """Checked-in booking taken through checkout request and inspection."""
        booking, br = self.checked_in(customer, actor, room_type)
        stay_service.request_checkout(self.db, [br.id], actor)
        stay_service.record_inspection(self.db, br.id, inspection or InspectionCreate(), actor, now=self.NOW)
        return booking, br


@pytest.fixture
def factory(db_session):
    return Factory(db_session)


@pytest.fixture
def file_sessions(file_engine):
    """Session factory over the file-backed database."""
    return sessionmaker(autocommit=False, autoflush=False, bind=file_engine)


@pytest.fixture
def file_factory(file_sessions):
    session = file_sessions()
    yield Factory(session)
    session.close()


@pytest.fixture
def staff(factory):
    """Receptionist actor backed by an employee row."""
    return factory.staff()


@pytest.fixture
def manager(factory):
    return factory.staff(role="MANAGER")
