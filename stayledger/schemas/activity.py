from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from stayledger.domain.enums import ActivityType


class ActivityFilters(BaseModel):
    type: Optional[ActivityType] = None
    employee_id: Optional[str] = None
    customer_id: Optional[str] = None
    booking_id: Optional[str] = None
    transaction_id: Optional[str] = None
    invoice_id: Optional[str] = None
    promotion_id: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
