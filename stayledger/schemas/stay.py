from typing import Optional

from pydantic import BaseModel


class CheckInGuest(BaseModel):
    customer_id: str
    is_primary: bool = False


class InspectionCreate(BaseModel):
    has_damages: bool = False
    damage_notes: Optional[str] = ""
    damage_amount: int = 0
    has_missing_items: bool = False
    missing_items: Optional[str] = ""
    missing_amount: int = 0
    has_violations: bool = False
    violation_notes: Optional[str] = ""
    penalty_amount: int = 0
    notes: Optional[str] = ""
