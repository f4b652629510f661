from sqlalchemy import String, Integer
from sqlalchemy.orm import Mapped, mapped_column

from stayledger.db.session import Base


class InvoiceLine(Base):
    """Snapshot of a transaction at billing time; survives a void."""
    __tablename__ = "invoice_lines"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    invoice_id: Mapped[str] = mapped_column(String(36), index=True)
    transaction_id: Mapped[str] = mapped_column(String(36), index=True)
    transaction_type: Mapped[str] = mapped_column(String(20), default="")
    amount: Mapped[int] = mapped_column(Integer, default=0)
