from datetime import datetime

from sqlalchemy import String, Integer
from sqlalchemy.orm import Mapped, mapped_column

from stayledger.db.session import Base
from stayledger.db.types import UTCDateTime, utcnow


class Transaction(Base):
    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    booking_id: Mapped[str | None] = mapped_column(String(36), index=True, nullable=True)
    guest_folio_id: Mapped[str | None] = mapped_column(String(36), index=True, nullable=True)
    invoice_id: Mapped[str | None] = mapped_column(String(36), index=True, nullable=True)

    type: Mapped[str] = mapped_column(String(20), index=True)  # DEPOSIT|ROOM_CHARGE|SERVICE_CHARGE|REFUND|ADJUSTMENT
    method: Mapped[str] = mapped_column(String(20), default="CASH")  # CASH|CARD|BANK_TRANSFER|E_WALLET

    base_amount: Mapped[int] = mapped_column(Integer, default=0)
    discount_amount: Mapped[int] = mapped_column(Integer, default=0)
    amount: Mapped[int] = mapped_column(Integer, default=0)

    promotion_id: Mapped[str | None] = mapped_column(String(36), index=True, nullable=True)
    customer_promotion_id: Mapped[str | None] = mapped_column(String(36), nullable=True)

    transaction_ref: Mapped[str] = mapped_column(String(120), default="")
    description: Mapped[str] = mapped_column(String(500), default="")
    processed_by_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, index=True)
