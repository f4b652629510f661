from sqlalchemy import String, Integer
from sqlalchemy.orm import Mapped, mapped_column

from stayledger.db.session import Base


class RoomType(Base):
    __tablename__ = "room_types"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(80), unique=True)
    capacity: Mapped[int] = mapped_column(Integer, default=1)
    total_bed: Mapped[int] = mapped_column(Integer, default=1)
    price_per_night: Mapped[int] = mapped_column(Integer, default=0)
