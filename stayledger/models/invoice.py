from datetime import datetime

from sqlalchemy import String, Integer, Boolean
from sqlalchemy.orm import Mapped, mapped_column

from stayledger.db.session import Base
from stayledger.db.types import UTCDateTime, utcnow


class Invoice(Base):
    __tablename__ = "invoices"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    code: Mapped[str] = mapped_column(String(24), unique=True, index=True)  # INV<yyyymmdd><seq4>
    guest_folio_id: Mapped[str] = mapped_column(String(36), index=True)
    invoice_to_customer_id: Mapped[str] = mapped_column(String(36), index=True)
    tax_id: Mapped[str] = mapped_column(String(40), default="")
    total_amount: Mapped[int] = mapped_column(Integer, default=0)
    issued_by_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    issued_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)

    is_voided: Mapped[bool] = mapped_column(Boolean(), default=False)
    void_reason: Mapped[str] = mapped_column(String(500), default="")
    voided_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    voided_by_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
