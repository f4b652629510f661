import uuid
from typing import Iterable, Type, TypeVar

from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

from stayledger.core.errors import AuthorizationError, NotFoundError, ValidationError
from stayledger.schemas.common import Actor, Page, Pagination

T = TypeVar("T")

STAFF_ROLES = {"ADMIN", "MANAGER", "RECEPTIONIST"}


def new_id() -> str:
    return str(uuid.uuid4())


def get_or_404(db: Session, model: Type[T], entity_id: str | None, entity: str | None = None) -> T:
    obj = db.get(model, entity_id) if entity_id else None
    if obj is None:
        raise NotFoundError(entity or model.__name__, entity_id)
    return obj


def require_employee(actor: Actor | None, roles: Iterable[str] | None = None) -> Actor:
    if actor is None or not actor.is_employee:
        raise AuthorizationError("operation requires an employee", rule="actor.employee")
    if roles is not None and actor.role not in set(roles):
        raise AuthorizationError(f"role {actor.role} may not perform this operation", rule="actor.role")
    return actor


def require_self_or_employee(actor: Actor | None, customer_id: str) -> Actor:
    if actor is None:
        raise AuthorizationError("operation requires an actor", rule="actor.required")
    if actor.is_customer and actor.id != customer_id:
        raise AuthorizationError("customers may only act for themselves", entity="Customer",
                                 entity_id=customer_id, rule="actor.ownership")
    return actor


def employee_id_of(actor: Actor | None) -> str | None:
    return actor.id if actor is not None and actor.is_employee else None


def paginate(db: Session, stmt: Select, pagination: Pagination | None, sort_columns: dict, default_sort) -> Page:
    """Apply sort/offset/limit to `stmt` and count the unpaged total."""
    pagination = pagination or Pagination()
    if pagination.sort_by is None:
        order_col = default_sort
    elif pagination.sort_by in sort_columns:
        order_col = sort_columns[pagination.sort_by]
    else:
        raise ValidationError(f"cannot sort by {pagination.sort_by}", rule="pagination.sort_by")
    order = order_col.desc() if pagination.sort_order == "desc" else order_col.asc()

    total = db.execute(select(func.count()).select_from(stmt.order_by(None).subquery())).scalar_one()
    items = db.execute(stmt.order_by(order).offset(pagination.offset).limit(pagination.limit)).scalars().all()
    return Page(items=list(items), total=int(total), page=pagination.page, limit=pagination.limit)
