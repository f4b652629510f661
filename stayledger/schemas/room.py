from datetime import date
from typing import Optional

from pydantic import BaseModel


class RoomFilters(BaseModel):
    search: Optional[str] = None         # room number substring
    status: Optional[str] = "AVAILABLE"  # None lists every status (staff only)
    floor: Optional[int] = None
    room_type_id: Optional[str] = None
    min_capacity: Optional[int] = None
    max_capacity: Optional[int] = None
    min_price: Optional[int] = None
    max_price: Optional[int] = None
    check_in_date: Optional[date] = None
    check_out_date: Optional[date] = None
