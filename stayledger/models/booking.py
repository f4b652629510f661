from datetime import date, datetime

from sqlalchemy import String, Integer, Date
from sqlalchemy.orm import Mapped, mapped_column

from stayledger.db.session import Base
from stayledger.db.types import UTCDateTime, utcnow


class Booking(Base):
    __tablename__ = "bookings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    booking_code: Mapped[str] = mapped_column(String(24), unique=True, index=True)
    status: Mapped[str] = mapped_column(String(20), default="PENDING", index=True)  # PENDING|CONFIRMED|CHECKED_IN|CHECKED_OUT|CANCELLED
    primary_customer_id: Mapped[str] = mapped_column(String(36), index=True)
    created_by_id: Mapped[str | None] = mapped_column(String(36), nullable=True)

    check_in_date: Mapped[date] = mapped_column(Date)
    check_out_date: Mapped[date] = mapped_column(Date)
    total_guests: Mapped[int] = mapped_column(Integer, default=1)

    total_amount: Mapped[int] = mapped_column(Integer, default=0)
    deposit_required: Mapped[int] = mapped_column(Integer, default=0)
    total_paid: Mapped[int] = mapped_column(Integer, default=0)
    balance: Mapped[int] = mapped_column(Integer, default=0)

    hold_expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    cancel_reason: Mapped[str] = mapped_column(String(500), default="")
    cancelled_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
