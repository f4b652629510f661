from datetime import date, datetime

from sqlalchemy import String, Integer, Date, Index
from sqlalchemy.orm import Mapped, mapped_column

from stayledger.db.session import Base
from stayledger.db.types import UTCDateTime, utcnow


class BookingRoom(Base):
    __tablename__ = "booking_rooms"
    __table_args__ = (
        Index("ix_booking_rooms_room_dates", "room_id", "check_in_date", "check_out_date"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    booking_id: Mapped[str] = mapped_column(String(36), index=True)
    room_id: Mapped[str] = mapped_column(String(36), index=True)
    room_type_id: Mapped[str] = mapped_column(String(36))

    check_in_date: Mapped[date] = mapped_column(Date)
    check_out_date: Mapped[date] = mapped_column(Date)

    price_per_night: Mapped[int] = mapped_column(Integer, default=0)
    subtotal_room: Mapped[int] = mapped_column(Integer, default=0)
    total_paid: Mapped[int] = mapped_column(Integer, default=0)
    balance: Mapped[int] = mapped_column(Integer, default=0)

    # RESERVED|CHECKED_IN|IN_STAY|INSPECTION_PENDING|INSPECTED|CHECKED_OUT|CANCELLED
    state: Mapped[str] = mapped_column(String(20), default="RESERVED", index=True)
    actual_check_in: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    actual_check_out: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
