from dataclasses import dataclass, field
from typing import Generic, Literal, Optional, TypeVar

from pydantic import BaseModel, Field, field_validator

from stayledger.core.config import settings

T = TypeVar("T")


class Actor(BaseModel):
    """Who is performing an operation: a staff member or a customer acting for themselves."""
    kind: Literal["employee", "customer"]
    id: str
    role: Optional[str] = None  # employee role; None for customers

    @property
    def is_employee(self) -> bool:
        return self.kind == "employee"

    @property
    def is_customer(self) -> bool:
        return self.kind == "customer"

    @classmethod
    def employee(cls, employee_id: str, role: str = "RECEPTIONIST") -> "Actor":
        return cls(kind="employee", id=employee_id, role=role)

    @classmethod
    def customer(cls, customer_id: str) -> "Actor":
        return cls(kind="customer", id=customer_id)


class Pagination(BaseModel):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default_factory=lambda: settings.DEFAULT_PAGE_SIZE, ge=1)
    sort_by: Optional[str] = None
    sort_order: Literal["asc", "desc"] = "asc"

    @field_validator("limit", mode="after")
    @classmethod
    def cap_limit(cls, v: int) -> int:
        if v > settings.MAX_PAGE_SIZE:
            raise ValueError(f"limit must be <= {settings.MAX_PAGE_SIZE}")
        return v

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


@dataclass
class Page(Generic[T]):
    items: list[T] = field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 10

    @property
    def total_pages(self) -> int:
        if self.limit <= 0:
            return 0
        return (self.total + self.limit - 1) // self.limit
