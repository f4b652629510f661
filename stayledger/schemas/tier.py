from pydantic import BaseModel


class CustomerTierCreate(BaseModel):
    code: str
    name: str
    points_required: int = 0
    room_discount_factor: int = 0
    service_discount_factor: int = 0
