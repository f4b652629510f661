from typing import Optional

from pydantic import BaseModel


class ServiceUsageCreate(BaseModel):
    service_id: str
    quantity: int = 1
    booking_id: Optional[str] = None
    booking_room_id: Optional[str] = None
    customer_id: Optional[str] = None
