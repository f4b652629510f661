from sqlalchemy import String, Integer
from sqlalchemy.orm import Mapped, mapped_column

from stayledger.db.session import Base


class CustomerTier(Base):
    __tablename__ = "customer_tiers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    code: Mapped[str] = mapped_column(String(30), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(80))
    points_required: Mapped[int] = mapped_column(Integer, default=0)
    # percentages in [0, 100]
    room_discount_factor: Mapped[int] = mapped_column(Integer, default=0)
    service_discount_factor: Mapped[int] = mapped_column(Integer, default=0)
