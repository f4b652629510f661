from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from pydantic import BaseModel

from stayledger.domain.enums import PromotionScope, PromotionType

if TYPE_CHECKING:
    from stayledger.models.customer_promotion import CustomerPromotion
    from stayledger.models.promotion import Promotion


class PromotionCreate(BaseModel):
    code: str
    description: Optional[str] = ""
    type: PromotionType
    scope: PromotionScope = PromotionScope.ALL
    value: int
    max_discount: Optional[int] = None
    min_booking_amount: int = 0
    start_date: datetime
    end_date: datetime
    total_qty: Optional[int] = None
    per_customer_limit: Optional[int] = None


class PromotionUpdate(BaseModel):
    # every field optional; only those explicitly set are applied
    code: Optional[str] = None
    description: Optional[str] = None
    type: Optional[PromotionType] = None
    scope: Optional[PromotionScope] = None
    value: Optional[int] = None
    max_discount: Optional[int] = None
    min_booking_amount: Optional[int] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    total_qty: Optional[int] = None
    per_customer_limit: Optional[int] = None


@dataclass
class RedemptionResult:
    promotion: "Promotion"
    customer_promotion: "CustomerPromotion"
    discount_amount: int
