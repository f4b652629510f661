from datetime import datetime

from sqlalchemy import String, Integer, Boolean, Text
from sqlalchemy.orm import Mapped, mapped_column

from stayledger.db.session import Base
from stayledger.db.types import UTCDateTime, utcnow


class Inspection(Base):
    __tablename__ = "inspections"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    booking_room_id: Mapped[str] = mapped_column(String(36), unique=True, index=True)
    inspected_by_id: Mapped[str] = mapped_column(String(36))

    has_damages: Mapped[bool] = mapped_column(Boolean(), default=False)
    damage_notes: Mapped[str] = mapped_column(Text, default="")
    damage_amount: Mapped[int] = mapped_column(Integer, default=0)

    has_missing_items: Mapped[bool] = mapped_column(Boolean(), default=False)
    missing_items: Mapped[str] = mapped_column(Text, default="")
    missing_amount: Mapped[int] = mapped_column(Integer, default=0)

    has_violations: Mapped[bool] = mapped_column(Boolean(), default=False)
    violation_notes: Mapped[str] = mapped_column(Text, default="")
    penalty_amount: Mapped[int] = mapped_column(Integer, default=0)

    total_penalty: Mapped[int] = mapped_column(Integer, default=0)
    is_approved: Mapped[bool] = mapped_column(Boolean(), default=False)
    approved_by_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    notes: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
