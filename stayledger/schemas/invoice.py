from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel


class InvoiceCreate(BaseModel):
    guest_folio_id: str
    invoice_to_customer_id: str
    tax_id: Optional[str] = ""
    transaction_ids: List[str]


class InvoiceFilters(BaseModel):
    code: Optional[str] = None          # case-insensitive substring
    guest_folio_id: Optional[str] = None
    invoice_to_customer_id: Optional[str] = None
    issued_by_id: Optional[str] = None
    is_voided: Optional[bool] = None
    start: Optional[datetime] = None    # on issued_at
    end: Optional[datetime] = None
