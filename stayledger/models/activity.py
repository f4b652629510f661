from datetime import datetime

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from stayledger.db.session import Base
from stayledger.db.types import UTCDateTime, utcnow


class Activity(Base):
    __tablename__ = "activities"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    type: Mapped[str] = mapped_column(String(40), index=True)  # e.g. CREATE_TRANSACTION
    description: Mapped[str] = mapped_column(String(500), default="")

    employee_id: Mapped[str | None] = mapped_column(String(36), index=True, nullable=True)
    customer_id: Mapped[str | None] = mapped_column(String(36), index=True, nullable=True)
    booking_id: Mapped[str | None] = mapped_column(String(36), index=True, nullable=True)
    booking_room_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    service_usage_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    transaction_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    invoice_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    promotion_id: Mapped[str | None] = mapped_column(String(36), nullable=True)

    metadata_json: Mapped[str] = mapped_column(Text, default="{}")
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, index=True)
