import logging
from datetime import datetime

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session

from stayledger.core.errors import ConflictError, NotFoundError, QuotaExhausted, ValidationError
from stayledger.db.atomic import compare_and_set, lock_row, run_atomic
from stayledger.db.types import as_utc, utcnow
from stayledger.domain.enums import ActivityType, CustomerPromotionStatus, PromotionScope, PromotionType
from stayledger.models.customer import Customer
from stayledger.models.customer_promotion import CustomerPromotion
from stayledger.models.promotion import Promotion
from stayledger.schemas.common import Actor, Page, Pagination
from stayledger.schemas.promotion import PromotionCreate, PromotionUpdate, RedemptionResult
from stayledger.services.activity_service import record_activity
from stayledger.services.discount_service import compute_discount
from stayledger.services.helpers import get_or_404, new_id, paginate, require_employee, require_self_or_employee

logger = logging.getLogger(__name__)

# claims and redemptions both consume a customer's allowance
COUNTED_STATUSES = (CustomerPromotionStatus.AVAILABLE.value, CustomerPromotionStatus.USED.value)


def get_promotion_by_code(db: Session, code: str) -> Promotion:
    promotion = db.execute(select(Promotion).where(Promotion.code == (code or "").strip())).scalar_one_or_none()
    if promotion is None:
        raise NotFoundError("Promotion", code, message=f"promotion {code!r} not found")
    return promotion


def _check_usable(promotion: Promotion, now: datetime) -> None:
    if promotion.disabled_at is not None:
        raise ValidationError(f"promotion {promotion.code} is disabled", entity="Promotion",
                              entity_id=promotion.id, rule="promotion.disabled")
    if not (as_utc(promotion.start_date) <= now <= as_utc(promotion.end_date)):
        raise ValidationError(f"promotion {promotion.code} is not valid at this time", entity="Promotion",
                              entity_id=promotion.id, rule="promotion.window")


def _customer_usage_count(db: Session, promotion_id: str, customer_id: str) -> int:
    return db.execute(
        select(func.count(CustomerPromotion.id)).where(
            CustomerPromotion.promotion_id == promotion_id,
            CustomerPromotion.customer_id == customer_id,
            CustomerPromotion.status.in_(COUNTED_STATUSES),
        )
    ).scalar_one()


def _check_customer_limit(db: Session, promotion: Promotion, customer_id: str) -> None:
    if promotion.per_customer_limit is None:
        return
    if _customer_usage_count(db, promotion.id, customer_id) >= promotion.per_customer_limit:
        raise ConflictError(
            f"customer already used promotion {promotion.code} {promotion.per_customer_limit} time(s)",
            entity="Promotion", entity_id=promotion.id, rule="promotion.per_customer_limit",
        )


def _consume_quota(db: Session, promotion: Promotion, customer_id: str) -> None:
    """Take one unit of quota with a single conditional UPDATE.

    The UPDATE runs even for unlimited promotions (NULL - 1 stays NULL) so the
    row is write-locked and the per-customer re-check below is linearised.
    """
    if promotion.remaining_qty is not None and promotion.remaining_qty <= 0:
        raise QuotaExhausted(f"promotion {promotion.code} is no longer available", entity="Promotion",
                             entity_id=promotion.id, rule="promotion.quota")
    result = db.execute(
        update(Promotion)
        .where(
            Promotion.id == promotion.id,
            Promotion.disabled_at.is_(None),
            or_(Promotion.remaining_qty.is_(None), Promotion.remaining_qty > 0),
        )
        .values(remaining_qty=Promotion.remaining_qty - 1, redeemed_count=Promotion.redeemed_count + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise QuotaExhausted(f"promotion {promotion.code} is no longer available", entity="Promotion",
                             entity_id=promotion.id, rule="promotion.quota")
    db.refresh(promotion)
    _check_customer_limit(db, promotion, customer_id)


def _available_claim(db: Session, promotion_id: str, customer_id: str) -> CustomerPromotion | None:
    return db.execute(
        select(CustomerPromotion)
        .where(
            CustomerPromotion.promotion_id == promotion_id,
            CustomerPromotion.customer_id == customer_id,
            CustomerPromotion.status == CustomerPromotionStatus.AVAILABLE.value,
        )
        .order_by(CustomerPromotion.claimed_at)
        .limit(1)
    ).scalar_one_or_none()


def redeem_promotion(db: Session, code: str, customer_id: str, scope: PromotionScope, base_amount: int,
                     now: datetime | None = None, actor: Actor | None = None,
                     transaction_id: str | None = None) -> RedemptionResult:
    """Validate and consume one use of promotion `code` for `customer_id`.

    Runs inside the caller's atomic unit; nothing is committed here. Checks run
    in a fixed order and the first failure is raised: existence, disabled,
    validity window, scope, minimum amount, per-customer limit, quota.
    A customer holding an unused claim for the promotion redeems that claim
    instead of taking fresh quota.
    """
    now = as_utc(now) or utcnow()
    promotion = get_promotion_by_code(db, code)
    _check_usable(promotion, now)

    requested = PromotionScope(scope)
    if promotion.scope != PromotionScope.ALL.value and promotion.scope != requested.value:
        raise ValidationError(f"promotion {promotion.code} applies to {promotion.scope} charges only",
                              entity="Promotion", entity_id=promotion.id, rule="promotion.scope")
    if int(base_amount) < int(promotion.min_booking_amount or 0):
        raise ValidationError(f"amount {base_amount} is below the promotion minimum {promotion.min_booking_amount}",
                              entity="Promotion", entity_id=promotion.id, rule="promotion.min_amount")

    claim = _available_claim(db, promotion.id, customer_id)
    if claim is not None:
        if not compare_and_set(db, CustomerPromotion, claim.id, "status", CustomerPromotionStatus.AVAILABLE.value,
                               CustomerPromotionStatus.USED.value, used_at=now, transaction_id=transaction_id):
            raise ConflictError("promotion claim was used concurrently", entity="CustomerPromotion",
                                entity_id=claim.id, rule="promotion.claim_used")
        db.refresh(claim)
    else:
        _check_customer_limit(db, promotion, customer_id)
        _consume_quota(db, promotion, customer_id)
        claim = CustomerPromotion(
            id=new_id(),
            customer_id=customer_id,
            promotion_id=promotion.id,
            status=CustomerPromotionStatus.USED.value,
            claimed_at=now,
            used_at=now,
            transaction_id=transaction_id,
        )
        db.add(claim)

    discount = compute_discount(promotion, base_amount)
    record_activity(db, ActivityType.REDEEM_PROMOTION, actor,
                    f"Promotion {promotion.code} redeemed for {discount}",
                    metadata={"customerPromotionId": claim.id, "baseAmount": int(base_amount), "discount": discount},
                    customer_id=customer_id, promotion_id=promotion.id, transaction_id=transaction_id)
    return RedemptionResult(promotion=promotion, customer_promotion=claim, discount_amount=discount)


def _claim_promotion(db: Session, code: str, customer_id: str, actor: Actor, now: datetime) -> CustomerPromotion:
    get_or_404(db, Customer, customer_id)
    promotion = get_promotion_by_code(db, code)
    _check_usable(promotion, now)
    _check_customer_limit(db, promotion, customer_id)
    _consume_quota(db, promotion, customer_id)
    claim = CustomerPromotion(
        id=new_id(),
        customer_id=customer_id,
        promotion_id=promotion.id,
        status=CustomerPromotionStatus.AVAILABLE.value,
        claimed_at=now,
    )
    db.add(claim)
    record_activity(db, ActivityType.CLAIM_PROMOTION, actor, f"Customer claimed promotion {promotion.code}",
                    metadata={"customerPromotionId": claim.id},
                    customer_id=customer_id, promotion_id=promotion.id)
    return claim


def claim_promotion(db: Session, code: str, customer_id: str, actor: Actor,
                    now: datetime | None = None) -> CustomerPromotion:
    require_self_or_employee(actor, customer_id)
    claim = run_atomic(db, _claim_promotion, code, customer_id, actor, as_utc(now) or utcnow())
    logger.info("customer %s claimed promotion %s", customer_id, code)
    return claim


def _validate_terms(values: dict) -> None:
    if not (values.get("code") or "").strip():
        raise ValidationError("promotion code is required", rule="promotion.code")
    if as_utc(values["start_date"]) >= as_utc(values["end_date"]):
        raise ValidationError("start date must be before end date", rule="promotion.dates")
    value = values.get("value")
    if value is None or value <= 0:
        raise ValidationError("promotion value must be positive", rule="promotion.value")
    if PromotionType(values["type"]) == PromotionType.PERCENTAGE and value > 100:
        raise ValidationError("percentage promotions take a value in (0, 100]", rule="promotion.value")
    if values.get("max_discount") is not None and values["max_discount"] < 0:
        raise ValidationError("max discount must not be negative", rule="promotion.max_discount")
    if (values.get("min_booking_amount") or 0) < 0:
        raise ValidationError("minimum amount must not be negative", rule="promotion.min_amount")
    if values.get("total_qty") is not None and values["total_qty"] < 0:
        raise ValidationError("total quantity must not be negative", rule="promotion.total_qty")
    if values.get("per_customer_limit") is not None and values["per_customer_limit"] < 1:
        raise ValidationError("per-customer limit must be at least 1", rule="promotion.per_customer_limit")


def _ensure_code_free(db: Session, code: str, promotion_id: str | None = None) -> None:
    existing = db.execute(select(Promotion.id).where(Promotion.code == code)).scalar_one_or_none()
    if existing is not None and existing != promotion_id:
        raise ConflictError(f"promotion code {code!r} already exists", entity="Promotion",
                            entity_id=existing, rule="promotion.code_unique")


def _create_promotion(db: Session, payload: PromotionCreate, actor: Actor) -> Promotion:
    values = payload.model_dump()
    values["code"] = (values.get("code") or "").strip()
    _validate_terms(values)
    _ensure_code_free(db, values["code"])
    promotion = Promotion(
        id=new_id(),
        code=values["code"],
        description=values.get("description") or "",
        type=PromotionType(values["type"]).value,
        scope=PromotionScope(values["scope"]).value,
        value=values["value"],
        max_discount=values.get("max_discount"),
        min_booking_amount=values.get("min_booking_amount") or 0,
        start_date=values["start_date"],
        end_date=values["end_date"],
        total_qty=values.get("total_qty"),
        remaining_qty=values.get("total_qty"),
        per_customer_limit=values.get("per_customer_limit"),
        redeemed_count=0,
        created_by_id=actor.id,
    )
    db.add(promotion)
    record_activity(db, ActivityType.CREATE_PROMOTION, actor, f"Promotion created: {promotion.code}",
                    metadata={"type": promotion.type, "scope": promotion.scope, "value": promotion.value},
                    promotion_id=promotion.id)
    return promotion


def create_promotion(db: Session, payload: PromotionCreate, actor: Actor) -> Promotion:
    require_employee(actor)
    promotion = run_atomic(db, _create_promotion, payload, actor)
    logger.info("promotion %s created by %s", promotion.code, actor.id)
    return promotion


# nullable columns (max_discount, total_qty, per_customer_limit) may be cleared; these may not
REQUIRED_ON_UPDATE = ("code", "type", "scope", "value", "start_date", "end_date", "min_booking_amount")


def _update_promotion(db: Session, promotion_id: str, payload: PromotionUpdate, actor: Actor) -> Promotion:
    promotion = lock_row(db, Promotion, promotion_id)
    if promotion is None:
        raise NotFoundError("Promotion", promotion_id)
    changes = payload.model_dump(exclude_unset=True)
    for field in REQUIRED_ON_UPDATE:
        if field in changes and changes[field] is None:
            raise ValidationError(f"{field} cannot be cleared", entity="Promotion", entity_id=promotion.id,
                                  rule=f"promotion.{field}")
    if "code" in changes:
        changes["code"] = changes["code"].strip()

    merged = {col: getattr(promotion, col) for col in (
        "code", "type", "value", "max_discount", "min_booking_amount", "start_date", "end_date",
        "total_qty", "per_customer_limit")}
    merged.update({k: v for k, v in changes.items() if k in merged})
    _validate_terms(merged)
    if merged["code"] != promotion.code:
        _ensure_code_free(db, merged["code"], promotion.id)

    if "total_qty" in changes:
        new_total = changes["total_qty"]
        if new_total is None:
            remaining = None
        elif promotion.total_qty is None:
            remaining = max(0, new_total - int(promotion.redeemed_count or 0))
        else:
            remaining = max(0, int(promotion.remaining_qty or 0) + (new_total - promotion.total_qty))
        if remaining is not None and remaining > new_total:
            remaining = new_total
        promotion.total_qty = new_total
        promotion.remaining_qty = remaining

    for field in ("code", "description", "type", "scope", "value", "max_discount", "min_booking_amount",
                  "start_date", "end_date", "per_customer_limit"):
        if field in changes:
            value = changes[field]
            if field in ("type", "scope") and value is not None:
                value = value.value
            if field == "description":
                value = value or ""
            if field == "min_booking_amount":
                value = value or 0
            setattr(promotion, field, value)

    record_activity(db, ActivityType.UPDATE_PROMOTION, actor, f"Promotion updated: {promotion.code}",
                    metadata={"changes": changes}, promotion_id=promotion.id)
    return promotion


def update_promotion(db: Session, promotion_id: str, payload: PromotionUpdate, actor: Actor) -> Promotion:
    require_employee(actor)
    promotion = run_atomic(db, _update_promotion, promotion_id, payload, actor)
    logger.info("promotion %s updated by %s", promotion_id, actor.id)
    return promotion


def _disable_promotion(db: Session, promotion_id: str, actor: Actor, now: datetime) -> Promotion:
    promotion = get_or_404(db, Promotion, promotion_id)
    result = db.execute(
        update(Promotion)
        .where(Promotion.id == promotion_id, Promotion.disabled_at.is_(None))
        .values(disabled_at=now)
        .execution_options(synchronize_session=False)
    )
    db.refresh(promotion)
    if result.rowcount == 1:
        record_activity(db, ActivityType.DISABLE_PROMOTION, actor, f"Promotion disabled: {promotion.code}",
                        promotion_id=promotion.id)
    return promotion


def disable_promotion(db: Session, promotion_id: str, actor: Actor, now: datetime | None = None) -> Promotion:
    """Soft-disable a promotion. Disabling twice keeps the first timestamp."""
    require_employee(actor)
    promotion = run_atomic(db, _disable_promotion, promotion_id, actor, as_utc(now) or utcnow())
    logger.info("promotion %s disabled by %s", promotion_id, actor.id)
    return promotion


def list_active_promotions(db: Session, now: datetime | None = None, pagination: Pagination | None = None) -> Page:
    now = as_utc(now) or utcnow()
    stmt = select(Promotion).where(
        Promotion.disabled_at.is_(None),
        Promotion.start_date <= now,
        Promotion.end_date >= now,
        or_(Promotion.remaining_qty.is_(None), Promotion.remaining_qty > 0),
    )
    return paginate(db, stmt, pagination,
                    {"code": Promotion.code, "end_date": Promotion.end_date, "start_date": Promotion.start_date},
                    Promotion.end_date)


def list_customer_promotions(db: Session, customer_id: str, status: CustomerPromotionStatus | None = None,
                             pagination: Pagination | None = None) -> Page:
    stmt = select(CustomerPromotion).where(CustomerPromotion.customer_id == customer_id)
    if status is not None:
        stmt = stmt.where(CustomerPromotion.status == CustomerPromotionStatus(status).value)
    return paginate(db, stmt, pagination, {"claimed_at": CustomerPromotion.claimed_at}, CustomerPromotion.claimed_at)


def expire_customer_promotions(db: Session, now: datetime | None = None) -> int:
    """Mark unused claims of ended or disabled promotions EXPIRED. The caller commits."""
    now = as_utc(now) or utcnow()
    ended = select(Promotion.id).where(or_(Promotion.end_date < now, Promotion.disabled_at.is_not(None)))
    result = db.execute(
        update(CustomerPromotion)
        .where(
            CustomerPromotion.status == CustomerPromotionStatus.AVAILABLE.value,
            CustomerPromotion.promotion_id.in_(ended),
        )
        .values(status=CustomerPromotionStatus.EXPIRED.value)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount:
        logger.info("expired %d unused customer promotion(s)", result.rowcount)
    return result.rowcount
