from datetime import datetime

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from stayledger.db.session import Base
from stayledger.db.types import UTCDateTime


class StayDetail(Base):
    __tablename__ = "stay_details"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    stay_record_id: Mapped[str] = mapped_column(String(36), index=True)
    booking_room_id: Mapped[str] = mapped_column(String(36), unique=True, index=True)
    room_id: Mapped[str] = mapped_column(String(36), index=True)
    actual_check_in: Mapped[datetime] = mapped_column(UTCDateTime)
    actual_check_out: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
