from sqlalchemy import String, Integer, Boolean
from sqlalchemy.orm import Mapped, mapped_column

from stayledger.db.session import Base


class HotelService(Base):
    __tablename__ = "hotel_services"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(120), unique=True)
    price: Mapped[int] = mapped_column(Integer, default=0)
    unit: Mapped[str] = mapped_column(String(30), default="item")
    is_active: Mapped[bool] = mapped_column(Boolean(), default=True)
