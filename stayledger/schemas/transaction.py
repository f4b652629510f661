from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel

from stayledger.domain.enums import PaymentMethod, TransactionType


class TransactionCreate(BaseModel):
    type: TransactionType
    method: PaymentMethod = PaymentMethod.CASH
    booking_id: Optional[str] = None
    booking_room_ids: Optional[List[str]] = None
    service_usage_id: Optional[str] = None
    promotion_code: Optional[str] = None
    customer_id: Optional[str] = None    # promotion beneficiary; defaults to the booking's primary customer
    amount: Optional[int] = None         # signed for REFUND / ADJUSTMENT; a partial DEPOSIT otherwise
    transaction_ref: Optional[str] = ""
    description: Optional[str] = ""


class TransactionFilters(BaseModel):
    booking_id: Optional[str] = None
    guest_folio_id: Optional[str] = None
    service_usage_id: Optional[str] = None
    type: Optional[TransactionType] = None
    method: Optional[PaymentMethod] = None
    promotion_id: Optional[str] = None
    unbilled_only: bool = False
    start: Optional[datetime] = None
    end: Optional[datetime] = None
