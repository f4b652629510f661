from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from stayledger.domain.enums import FolioStatus


class FolioFilters(BaseModel):
    code: Optional[str] = None          # case-insensitive substring
    booking_id: Optional[str] = None
    customer_id: Optional[str] = None   # the booking's primary customer
    status: Optional[FolioStatus] = None
    start: Optional[datetime] = None    # on opened_at
    end: Optional[datetime] = None
