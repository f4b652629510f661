import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from stayledger.core.errors import ConflictError, ValidationError
from stayledger.db.atomic import run_atomic
from stayledger.domain.enums import ActivityType
from stayledger.models.customer import Customer
from stayledger.models.customer_tier import CustomerTier
from stayledger.schemas.common import Actor
from stayledger.schemas.tier import CustomerTierCreate
from stayledger.services.activity_service import record_activity
from stayledger.services.helpers import get_or_404, new_id, require_employee

logger = logging.getLogger(__name__)


def _create_tier(db: Session, payload: CustomerTierCreate) -> CustomerTier:
    code = payload.code.strip().upper()
    if not code:
        raise ValidationError("tier code is required", rule="tier.code")
    for name in ("room_discount_factor", "service_discount_factor"):
        value = getattr(payload, name)
        if not 0 <= value <= 100:
            raise ValidationError(f"{name} must be between 0 and 100", rule=f"tier.{name}")
    if payload.points_required < 0:
        raise ValidationError("points_required must be >= 0", rule="tier.points_required")
    if db.execute(select(CustomerTier.id).where(CustomerTier.code == code)).first() is not None:
        raise ConflictError(f"tier {code} already exists", entity="CustomerTier", rule="tier.code_unique")

    tier = CustomerTier(
        id=new_id(),
        code=code,
        name=payload.name,
        points_required=payload.points_required,
        room_discount_factor=payload.room_discount_factor,
        service_discount_factor=payload.service_discount_factor,
    )
    db.add(tier)
    return tier


def create_customer_tier(db: Session, payload: CustomerTierCreate, actor: Actor) -> CustomerTier:
    require_employee(actor, roles={"ADMIN", "MANAGER"})
    tier = run_atomic(db, _create_tier, payload)
    logger.info("customer tier %s created (points_required=%s)", tier.code, tier.points_required)
    return tier


def tier_for_points(db: Session, points: int) -> CustomerTier | None:
    """Highest tier whose points_required the given balance meets."""
    return db.execute(
        select(CustomerTier)
        .where(CustomerTier.points_required <= points)
        .order_by(CustomerTier.points_required.desc(), CustomerTier.code)
        .limit(1)
    ).scalar_one_or_none()


def _apply_tier(db: Session, customer: Customer) -> bool:
    tier = tier_for_points(db, customer.loyalty_points or 0)
    if tier is None or tier.id == customer.tier_id:
        return False
    previous = customer.tier_id
    customer.tier_id = tier.id
    record_activity(db, ActivityType.UPGRADE_TIER, None, f"Customer moved to tier {tier.code}",
                    metadata={"previousTierId": previous, "tierId": tier.id,
                              "loyaltyPoints": customer.loyalty_points},
                    customer_id=customer.id)
    return True


def upgrade_customer_tier(db: Session, customer_id: str) -> Customer:
    def _run(db: Session) -> tuple[Customer, bool]:
        customer = get_or_404(db, Customer, customer_id)
        return customer, _apply_tier(db, customer)

    customer, changed = run_atomic(db, _run)
    if changed:
        logger.info("customer %s moved to tier %s", customer.id, customer.tier_id)
    return customer


def upgrade_all_customer_tiers(db: Session) -> int:
    """Re-tier every customer; returns how many changed. The caller commits."""
    changed = 0
    for customer in db.execute(select(Customer).order_by(Customer.id)).scalars():
        if _apply_tier(db, customer):
            changed += 1
    return changed
