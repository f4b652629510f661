"""
Tests for stayledger/services/promotion_service.py
Covers: redeem_promotion (validation order, quota, per-customer limit, claims),
        claim_promotion, create/update/disable_promotion, expire_customer_promotions
"""
from datetime import datetime, timedelta, timezone

import pytest

from stayledger.core.errors import (
    AuthorizationError, ConflictError, NotFoundError, QuotaExhausted, ValidationError,
)
from stayledger.domain.enums import CustomerPromotionStatus, PromotionScope, PromotionType
from stayledger.models import Activity, CustomerPromotion
from stayledger.schemas.common import Actor
from stayledger.schemas.promotion import PromotionCreate, PromotionUpdate
from stayledger.services import promotion_service


def _redeem(db, factory, code, customer, scope=PromotionScope.ALL, base=2_000_000, now=None):
    result = promotion_service.redeem_promotion(db, code, customer.id, scope, base, now=now or factory.NOW)
    db.commit()
    return result


class TestRedeemPromotion:

    def test_welcome2024(self, db_session, factory):
        """10% capped at 500,000 on a 2,000,000 base gives 200,000."""
        factory.promotion("WELCOME2024", value=10, max_discount=500_000, min_amount=1_000_000)
        customer = factory.customer()
        result = _redeem(db_session, factory, "WELCOME2024", customer)
        assert result.discount_amount == 200_000
        assert result.customer_promotion.status == CustomerPromotionStatus.USED.value
        assert result.promotion.redeemed_count == 1

    def test_room50k_capped_at_base(self, db_session, factory):
        factory.promotion("ROOM50K", type="FIXED_AMOUNT", value=50_000, scope="ROOM")
        result = _redeem(db_session, factory, "ROOM50K", factory.customer(), scope=PromotionScope.ROOM, base=30_000)
        assert result.discount_amount == 30_000

    def test_unknown_code(self, db_session, factory):
        with pytest.raises(NotFoundError):
            _redeem(db_session, factory, "NOPE", factory.customer())

    def test_disabled(self, db_session, factory):
        factory.promotion("OFF", disabled_at=factory.NOW - timedelta(days=1))
        with pytest.raises(ValidationError) as exc:
            _redeem(db_session, factory, "OFF", factory.customer())
        assert exc.value.rule == "promotion.disabled"

    def test_outside_window(self, db_session, factory):
        factory.promotion("LATER", start=factory.NOW + timedelta(days=1), end=factory.NOW + timedelta(days=5))
        with pytest.raises(ValidationError) as exc:
            _redeem(db_session, factory, "LATER", factory.customer())
        assert exc.value.rule == "promotion.window"

    def test_scope_mismatch(self, db_session, factory):
        factory.promotion("SPA", scope="SERVICE")
        with pytest.raises(ValidationError) as exc:
            _redeem(db_session, factory, "SPA", factory.customer(), scope=PromotionScope.ROOM)
        assert exc.value.rule == "promotion.scope"

    def test_all_scope_matches_any_request(self, db_session, factory):
        factory.promotion("ANY", value=5)
        result = _redeem(db_session, factory, "ANY", factory.customer(), scope=PromotionScope.SERVICE, base=1_000)
        assert result.discount_amount == 50

    def test_below_minimum(self, db_session, factory):
        factory.promotion("BIG", min_amount=1_000_000)
        with pytest.raises(ValidationError) as exc:
            _redeem(db_session, factory, "BIG", factory.customer(), base=999_999)
        assert exc.value.rule == "promotion.min_amount"

    def test_window_checked_before_scope(self, db_session, factory):
        factory.promotion("OLD", scope="SERVICE", start=factory.NOW - timedelta(days=10),
                          end=factory.NOW - timedelta(days=1))
        with pytest.raises(ValidationError) as exc:
            _redeem(db_session, factory, "OLD", factory.customer(), scope=PromotionScope.ROOM)
        assert exc.value.rule == "promotion.window"

    def test_quota_decrements_and_exhausts(self, db_session, factory):
        promo = factory.promotion("TWO", total_qty=2)
        for _ in range(2):
            _redeem(db_session, factory, "TWO", factory.customer())
        db_session.refresh(promo)
        assert promo.remaining_qty == 0
        assert promo.redeemed_count == 2
        with pytest.raises(QuotaExhausted):
            _redeem(db_session, factory, "TWO", factory.customer())
        db_session.rollback()
        db_session.refresh(promo)
        assert promo.remaining_qty == 0

    def test_unlimited_quota_stays_null(self, db_session, factory):
        promo = factory.promotion("FREE")
        _redeem(db_session, factory, "FREE", factory.customer())
        db_session.refresh(promo)
        assert promo.remaining_qty is None
        assert promo.redeemed_count == 1

    def test_per_customer_limit(self, db_session, factory):
        factory.promotion("ONCE", per_customer_limit=1, total_qty=10)
        customer = factory.customer()
        _redeem(db_session, factory, "ONCE", customer)
        with pytest.raises(ConflictError) as exc:
            _redeem(db_session, factory, "ONCE", customer)
        assert exc.value.rule == "promotion.per_customer_limit"
        db_session.rollback()
        # another customer is unaffected
        _redeem(db_session, factory, "ONCE", factory.customer())

    def test_redeem_consumes_existing_claim(self, db_session, factory, staff):
        promo = factory.promotion("CLAIMED", total_qty=5, per_customer_limit=1)
        customer = factory.customer()
        claim = promotion_service.claim_promotion(db_session, "CLAIMED", customer.id, staff, now=factory.NOW)
        db_session.refresh(promo)
        assert promo.remaining_qty == 4

        result = _redeem(db_session, factory, "CLAIMED", customer)
        assert result.customer_promotion.id == claim.id
        assert result.customer_promotion.status == CustomerPromotionStatus.USED.value
        db_session.refresh(promo)
        assert promo.remaining_qty == 4  # quota was taken at claim time

    def test_redeem_records_activity(self, db_session, factory):
        promo = factory.promotion("LOGGED")
        customer = factory.customer()
        _redeem(db_session, factory, "LOGGED", customer)
        activity = db_session.query(Activity).filter_by(type="REDEEM_PROMOTION").one()
        assert activity.promotion_id == promo.id
        assert activity.customer_id == customer.id


class TestClaimPromotion:

    def test_claim_creates_available(self, db_session, factory):
        promo = factory.promotion("CLAIM", total_qty=1)
        customer = factory.customer()
        claim = promotion_service.claim_promotion(db_session, "CLAIM", customer.id, Actor.customer(customer.id),
                                                  now=factory.NOW)
        assert claim.status == CustomerPromotionStatus.AVAILABLE.value
        db_session.refresh(promo)
        assert promo.remaining_qty == 0

    def test_claim_quota_exhausted(self, db_session, factory):
        factory.promotion("LAST", total_qty=1)
        first, second = factory.customer(), factory.customer()
        promotion_service.claim_promotion(db_session, "LAST", first.id, Actor.customer(first.id), now=factory.NOW)
        with pytest.raises(QuotaExhausted):
            promotion_service.claim_promotion(db_session, "LAST", second.id, Actor.customer(second.id),
                                              now=factory.NOW)
        assert db_session.query(CustomerPromotion).count() == 1

    def test_customer_cannot_claim_for_someone_else(self, db_session, factory):
        factory.promotion("MINE")
        me, other = factory.customer(), factory.customer()
        with pytest.raises(AuthorizationError):
            promotion_service.claim_promotion(db_session, "MINE", other.id, Actor.customer(me.id), now=factory.NOW)

    def test_claim_counts_against_limit(self, db_session, factory, staff):
        factory.promotion("ONE", per_customer_limit=1)
        customer = factory.customer()
        promotion_service.claim_promotion(db_session, "ONE", customer.id, staff, now=factory.NOW)
        with pytest.raises(ConflictError):
            promotion_service.claim_promotion(db_session, "ONE", customer.id, staff, now=factory.NOW)


def _create_payload(**overrides):
    values = dict(
        code="SUMMER",
        type=PromotionType.PERCENTAGE,
        scope=PromotionScope.ALL,
        value=20,
        start_date=datetime(2026, 6, 1, tzinfo=timezone.utc),
        end_date=datetime(2026, 12, 31, tzinfo=timezone.utc),
        total_qty=100,
    )
    values.update(overrides)
    return PromotionCreate(**values)


class TestManagePromotions:

    def test_create(self, db_session, staff):
        promo = promotion_service.create_promotion(db_session, _create_payload(), staff)
        assert promo.remaining_qty == 100
        assert promo.redeemed_count == 0
        assert promo.created_by_id == staff.id

    def test_create_requires_employee(self, db_session, factory):
        customer = factory.customer()
        with pytest.raises(AuthorizationError):
            promotion_service.create_promotion(db_session, _create_payload(), Actor.customer(customer.id))

    def test_duplicate_code(self, db_session, staff):
        promotion_service.create_promotion(db_session, _create_payload(), staff)
        with pytest.raises(ConflictError) as exc:
            promotion_service.create_promotion(db_session, _create_payload(), staff)
        assert exc.value.rule == "promotion.code_unique"

    @pytest.mark.parametrize("overrides,rule", [
        ({"value": 0}, "promotion.value"),
        ({"value": 101}, "promotion.value"),
        ({"start_date": datetime(2027, 1, 1, tzinfo=timezone.utc)}, "promotion.dates"),
        ({"total_qty": -1}, "promotion.total_qty"),
        ({"per_customer_limit": 0}, "promotion.per_customer_limit"),
    ])
    def test_create_validation(self, db_session, staff, overrides, rule):
        with pytest.raises(ValidationError) as exc:
            promotion_service.create_promotion(db_session, _create_payload(**overrides), staff)
        assert exc.value.rule == rule

    def test_fixed_amount_above_100_allowed(self, db_session, staff):
        promo = promotion_service.create_promotion(
            db_session, _create_payload(type=PromotionType.FIXED_AMOUNT, value=50_000), staff)
        assert promo.value == 50_000

    def test_update_total_qty_shifts_remaining(self, db_session, factory, staff):
        promo = factory.promotion("GROW", total_qty=10)
        _redeem(db_session, factory, "GROW", factory.customer())
        updated = promotion_service.update_promotion(db_session, promo.id, PromotionUpdate(total_qty=15), staff)
        assert updated.total_qty == 15
        assert updated.remaining_qty == 14

    def test_update_total_qty_never_below_zero(self, db_session, factory, staff):
        promo = factory.promotion("SHRINK", total_qty=3)
        for _ in range(2):
            _redeem(db_session, factory, "SHRINK", factory.customer())
        updated = promotion_service.update_promotion(db_session, promo.id, PromotionUpdate(total_qty=1), staff)
        assert updated.remaining_qty == 0

    def test_update_unlimited_to_bounded(self, db_session, factory, staff):
        promo = factory.promotion("BOUND")
        for _ in range(3):
            _redeem(db_session, factory, "BOUND", factory.customer())
        updated = promotion_service.update_promotion(db_session, promo.id, PromotionUpdate(total_qty=5), staff)
        assert updated.remaining_qty == 2

    def test_update_leaves_unset_fields(self, db_session, factory, staff):
        promo = factory.promotion("KEEP", value=10, total_qty=4)
        updated = promotion_service.update_promotion(db_session, promo.id, PromotionUpdate(description="x"), staff)
        assert updated.value == 10
        assert updated.remaining_qty == 4
        assert updated.description == "x"

    def test_update_rejects_bad_dates(self, db_session, factory, staff):
        promo = factory.promotion("DATES")
        with pytest.raises(ValidationError):
            promotion_service.update_promotion(
                db_session, promo.id, PromotionUpdate(end_date=factory.NOW - timedelta(days=60)), staff)

    @pytest.mark.parametrize("field", [
        "code", "type", "scope", "value", "start_date", "end_date", "min_booking_amount",
    ])
    def test_update_cannot_clear_required_fields(self, db_session, factory, staff, field):
        promo = factory.promotion("FIRM", value=10)
        with pytest.raises(ValidationError) as exc:
            promotion_service.update_promotion(db_session, promo.id, PromotionUpdate(**{field: None}), staff)
        assert exc.value.rule == f"promotion.{field}"
        db_session.refresh(promo)
        assert promo.code == "FIRM"
        assert promo.value == 10
        assert promo.start_date is not None

    def test_update_can_clear_total_qty(self, db_session, factory, staff):
        promo = factory.promotion("OPEN", total_qty=5)
        updated = promotion_service.update_promotion(db_session, promo.id, PromotionUpdate(total_qty=None), staff)
        assert updated.total_qty is None
        assert updated.remaining_qty is None

    def test_update_unknown(self, db_session, staff):
        with pytest.raises(NotFoundError):
            promotion_service.update_promotion(db_session, "missing", PromotionUpdate(value=5), staff)

    def test_disable_is_idempotent(self, db_session, factory, staff):
        promo = factory.promotion("STOP")
        first = promotion_service.disable_promotion(db_session, promo.id, staff, now=factory.NOW)
        stamp = first.disabled_at
        second = promotion_service.disable_promotion(db_session, promo.id, staff, now=factory.NOW + timedelta(hours=1))
        assert second.disabled_at == stamp
        assert db_session.query(Activity).filter_by(type="DISABLE_PROMOTION").count() == 1
        with pytest.raises(ValidationError):
            _redeem(db_session, factory, "STOP", factory.customer())


class TestQueries:

    def test_list_active_promotions(self, db_session, factory):
        factory.promotion("LIVE")
        factory.promotion("GONE", total_qty=0)
        factory.promotion("OFF", disabled_at=factory.NOW)
        page = promotion_service.list_active_promotions(db_session, now=factory.NOW)
        assert [p.code for p in page.items] == ["LIVE"]

    def test_expire_customer_promotions(self, db_session, factory, staff):
        promo = factory.promotion("SHORT", end=factory.NOW + timedelta(days=1))
        customer = factory.customer()
        promotion_service.claim_promotion(db_session, "SHORT", customer.id, staff, now=factory.NOW)

        assert promotion_service.expire_customer_promotions(db_session, factory.NOW) == 0
        assert promotion_service.expire_customer_promotions(db_session, factory.NOW + timedelta(days=2)) == 1
        db_session.commit()
        page = promotion_service.list_customer_promotions(db_session, customer.id,
                                                          status=CustomerPromotionStatus.EXPIRED)
        assert page.total == 1
        assert page.items[0].promotion_id == promo.id
