import json
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from stayledger.core.errors import ValidationError
from stayledger.domain.enums import ActivityType
from stayledger.models.activity import Activity
from stayledger.schemas.activity import ActivityFilters
from stayledger.schemas.common import Actor, Page, Pagination
from stayledger.services.helpers import new_id, paginate

logger = logging.getLogger(__name__)

SUBJECT_FIELDS = ("customer_id", "booking_id", "booking_room_id", "service_usage_id",
                  "transaction_id", "invoice_id", "promotion_id")


def record_activity(db: Session, type: ActivityType, actor: Actor | None, description: str | None = None,
                    metadata: dict | None = None, **subject_ids) -> Activity:
    """Append one activity row in the caller's unit of work. Activities are never updated or deleted."""
    unknown = set(subject_ids) - set(SUBJECT_FIELDS)
    if unknown:
        raise ValidationError(f"unknown activity subject(s): {', '.join(sorted(unknown))}", rule="activity.subject")

    fields = {k: subject_ids.get(k) for k in SUBJECT_FIELDS}
    employee_id = None
    if actor is not None:
        if actor.is_employee:
            employee_id = actor.id
        elif fields["customer_id"] is None:
            fields["customer_id"] = actor.id

    activity = Activity(
        id=new_id(),
        type=ActivityType(type).value,
        description=description or "",
        employee_id=employee_id,
        metadata_json=json.dumps(metadata or {}, ensure_ascii=False, default=str),
        **fields,
    )
    db.add(activity)
    return activity


def list_activities(db: Session, filters: ActivityFilters | None = None, pagination: Pagination | None = None) -> Page:
    filters = filters or ActivityFilters()
    stmt = select(Activity)
    if filters.type is not None:
        stmt = stmt.where(Activity.type == filters.type.value)
    for name in ("employee_id", "customer_id", "booking_id", "transaction_id", "invoice_id", "promotion_id"):
        value = getattr(filters, name)
        if value:
            stmt = stmt.where(getattr(Activity, name) == value)
    if filters.start is not None:
        stmt = stmt.where(Activity.created_at >= filters.start)
    if filters.end is not None:
        stmt = stmt.where(Activity.created_at <= filters.end)
    return paginate(db, stmt, pagination, {"created_at": Activity.created_at, "type": Activity.type},
                    Activity.created_at)
