from datetime import datetime

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from stayledger.db.session import Base
from stayledger.db.types import UTCDateTime, utcnow


class CustomerPromotion(Base):
    __tablename__ = "customer_promotions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    customer_id: Mapped[str] = mapped_column(String(36), index=True)
    promotion_id: Mapped[str] = mapped_column(String(36), index=True)
    status: Mapped[str] = mapped_column(String(12), default="AVAILABLE", index=True)  # AVAILABLE|USED|EXPIRED
    claimed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, default=utcnow, nullable=True)
    used_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    transaction_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
