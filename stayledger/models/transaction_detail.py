from sqlalchemy import String, Integer
from sqlalchemy.orm import Mapped, mapped_column

from stayledger.db.session import Base


class TransactionDetail(Base):
    __tablename__ = "transaction_details"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    transaction_id: Mapped[str] = mapped_column(String(36), index=True)
    booking_room_id: Mapped[str | None] = mapped_column(String(36), index=True, nullable=True)
    service_usage_id: Mapped[str | None] = mapped_column(String(36), index=True, nullable=True)
    base_amount: Mapped[int] = mapped_column(Integer, default=0)
    discount_amount: Mapped[int] = mapped_column(Integer, default=0)
    amount: Mapped[int] = mapped_column(Integer, default=0)
