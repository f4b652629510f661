from sqlalchemy import String, Boolean, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from stayledger.db.session import Base


class BookingGuest(Base):
    __tablename__ = "booking_guests"
    __table_args__ = (
        UniqueConstraint("booking_room_id", "customer_id", name="uq_booking_guest_room_customer"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    booking_room_id: Mapped[str] = mapped_column(String(36), index=True)
    customer_id: Mapped[str] = mapped_column(String(36), index=True)
    is_primary: Mapped[bool] = mapped_column(Boolean(), default=False)
