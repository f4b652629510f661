from datetime import date
from typing import List, Optional

from pydantic import BaseModel


class RoomRequest(BaseModel):
    room_type_id: str
    count: int = 1


class BookingCreate(BaseModel):
    rooms: List[RoomRequest]
    check_in_date: date
    check_out_date: date
    total_guests: int = 1
    customer_id: str


class DateRange(BaseModel):
    check_in_date: date
    check_out_date: date

    @property
    def nights(self) -> int:
        return (self.check_out_date - self.check_in_date).days


class BookingCancel(BaseModel):
    reason: Optional[str] = ""
