from sqlalchemy import String, Integer
from sqlalchemy.orm import Mapped, mapped_column

from stayledger.db.session import Base


class Room(Base):
    __tablename__ = "rooms"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    room_number: Mapped[str] = mapped_column(String(20), unique=True, index=True)
    floor: Mapped[int] = mapped_column(Integer, default=1)
    status: Mapped[str] = mapped_column(String(20), default="AVAILABLE", index=True)  # AVAILABLE|OCCUPIED|MAINTENANCE
    room_type_id: Mapped[str] = mapped_column(String(36), index=True)
    # bumped by every reservation so concurrent reservers serialise on the row
    version: Mapped[int] = mapped_column(Integer, default=0)
