"""
Tests for stayledger/services/transaction_service.py
Covers: the four payment scenarios, promotions and discount allocation, partial deposits,
        REFUND / ADJUSTMENT, booking confirmation, folio attachment, list_transactions
"""
import pytest

from stayledger.core.errors import (
    AuthorizationError, NotFoundError, QuotaExhausted, StateError, ValidationError,
)
from stayledger.domain.enums import BookingStatus, ServiceUsageStatus, TransactionType
from stayledger.models import Activity, BookingRoom, CustomerPromotion, GuestFolio, Transaction
from stayledger.schemas.common import Actor
from stayledger.schemas.service_usage import ServiceUsageCreate
from stayledger.schemas.stay import CheckInGuest
from stayledger.schemas.transaction import TransactionCreate, TransactionFilters
from stayledger.services import inventory_service, service_usage_service, stay_service, transaction_service


def _pay(db, factory, actor, **fields):
    fields.setdefault("type", TransactionType.ROOM_CHARGE)
    return transaction_service.create_transaction(db, TransactionCreate(**fields), actor, now=factory.NOW)


def _details_sum(db, txn):
    return sum(d.amount for d in transaction_service.transaction_details(db, txn.id))


@pytest.fixture
def one_room_booking(factory, staff):
    def build(price=1_000_000, rooms=1):
        rt = factory.room_type(price=price)
        for _ in range(rooms):
            factory.room(rt)
        customer = factory.customer()
        return factory.booking(customer, [(rt, rooms)], actor=staff)
    return build


class TestPromotionScenarios:

    def test_welcome2024_on_booking(self, db_session, factory, staff, one_room_booking):
        factory.promotion("WELCOME2024", value=10, max_discount=500_000, min_amount=1_000_000)
        booking = one_room_booking(price=1_000_000)  # two nights

        txn = _pay(db_session, factory, staff, booking_id=booking.id, promotion_code="WELCOME2024")

        assert txn.base_amount == 2_000_000
        assert txn.discount_amount == 200_000
        assert txn.amount == 1_800_000
        assert _details_sum(db_session, txn) == txn.amount
        assert txn.promotion_id is not None
        cp = db_session.get(CustomerPromotion, txn.customer_promotion_id)
        assert cp.transaction_id == txn.id

        db_session.refresh(booking)
        assert booking.status == BookingStatus.CONFIRMED.value
        assert booking.hold_expires_at is None
        assert booking.total_paid == 1_800_000
        assert booking.balance == 0

    def test_room50k_never_exceeds_base(self, db_session, factory, staff, one_room_booking):
        factory.promotion("ROOM50K", type="FIXED_AMOUNT", value=50_000, scope="ROOM")
        booking = one_room_booking(price=15_000)

        txn = _pay(db_session, factory, staff, booking_id=booking.id, promotion_code="ROOM50K")

        assert txn.base_amount == 30_000
        assert txn.discount_amount == 30_000
        assert txn.amount == 0
        br = factory.booking_rooms(booking)[0]
        assert br.balance == 0

    def test_discount_spread_across_rooms(self, db_session, factory, staff, one_room_booking):
        factory.promotion("THIRD", type="FIXED_AMOUNT", value=100_000)
        booking = one_room_booking(price=150_000, rooms=3)

        txn = _pay(db_session, factory, staff, booking_id=booking.id, promotion_code="THIRD")

        details = transaction_service.transaction_details(db_session, txn.id)
        assert sorted(d.discount_amount for d in details) == [33_333, 33_333, 33_334]
        assert sum(d.amount for d in details) == txn.amount == 900_000 - 100_000

    def test_failed_redemption_persists_nothing(self, db_session, factory, staff, one_room_booking):
        factory.promotion("GONE", total_qty=0)
        booking = one_room_booking()
        with pytest.raises(QuotaExhausted):
            _pay(db_session, factory, staff, booking_id=booking.id, promotion_code="GONE")
        assert db_session.query(Transaction).count() == 0
        db_session.refresh(booking)
        assert booking.total_paid == 0
        assert booking.status == BookingStatus.PENDING.value

    def test_room_scope_on_mixed_lines(self, db_session, factory, staff):
        """Scenario 1 after check-in also collects service usages; a ROOM promotion only touches rooms."""
        factory.promotion("ROOMONLY", value=50, scope="ROOM")
        customer = factory.customer()
        booking, br = factory.checked_in(customer, staff, factory.room_type(price=100_000))
        service = factory.service(price=40_000)
        usage = service_usage_service.create_service_usage(
            db_session, ServiceUsageCreate(service_id=service.id, quantity=2, booking_room_id=br.id), staff)

        txn = _pay(db_session, factory, staff, booking_id=booking.id, promotion_code="ROOMONLY")

        assert txn.base_amount == 200_000 + 80_000
        assert txn.discount_amount == 100_000
        by_line = {(d.booking_room_id, d.service_usage_id): d for d in
                   transaction_service.transaction_details(db_session, txn.id)}
        assert by_line[(br.id, None)].discount_amount == 100_000
        assert by_line[(None, usage.id)].discount_amount == 0
        db_session.refresh(usage)
        assert usage.status == ServiceUsageStatus.COMPLETED.value
        assert usage.total_paid == 80_000

    def test_below_minimum_uses_eligible_base(self, db_session, factory, staff, one_room_booking):
        factory.promotion("MIN", min_amount=5_000_000)
        booking = one_room_booking(price=1_000_000)
        with pytest.raises(ValidationError) as exc:
            _pay(db_session, factory, staff, booking_id=booking.id, promotion_code="MIN")
        assert exc.value.rule == "promotion.min_amount"


class TestScenarios:

    def test_split_payment_on_two_of_three_rooms(self, db_session, factory, staff, one_room_booking):
        booking = one_room_booking(price=300_000, rooms=3)
        first, second, third = factory.booking_rooms(booking)

        txn = _pay(db_session, factory, staff, booking_id=booking.id, booking_room_ids=[first.id, second.id])

        assert txn.base_amount == first.subtotal_room + second.subtotal_room
        assert {d.booking_room_id for d in transaction_service.transaction_details(db_session, txn.id)} == \
            {first.id, second.id}
        db_session.refresh(third)
        assert third.total_paid == 0
        assert third.balance == third.subtotal_room
        db_session.refresh(booking)
        assert booking.balance == third.subtotal_room

    def test_rooms_from_another_booking(self, db_session, factory, staff, one_room_booking):
        booking = one_room_booking()
        other = one_room_booking()
        foreign = factory.booking_rooms(other)[0]
        with pytest.raises(ValidationError) as exc:
            _pay(db_session, factory, staff, booking_id=booking.id, booking_room_ids=[foreign.id])
        assert exc.value.rule == "transaction.booking_rooms"

    def test_booking_room_ids_need_booking(self, db_session, factory, staff, one_room_booking):
        booking = one_room_booking()
        with pytest.raises(ValidationError):
            _pay(db_session, factory, staff, booking_room_ids=[factory.booking_rooms(booking)[0].id])

    def test_empty_request(self, db_session, factory, staff):
        with pytest.raises(ValidationError):
            _pay(db_session, factory, staff)

    def test_unknown_booking(self, db_session, factory, staff):
        with pytest.raises(NotFoundError):
            _pay(db_session, factory, staff, booking_id="missing")

    def test_nothing_due(self, db_session, factory, staff, one_room_booking):
        booking = one_room_booking()
        _pay(db_session, factory, staff, booking_id=booking.id)
        with pytest.raises(ValidationError) as exc:
            _pay(db_session, factory, staff, booking_id=booking.id)
        assert exc.value.rule == "transaction.nothing_due"

    def test_service_usage_under_booking(self, db_session, factory, staff):
        booking, br = factory.checked_in(factory.customer(), staff)
        service = factory.service(price=25_000)
        usage = service_usage_service.create_service_usage(
            db_session, ServiceUsageCreate(service_id=service.id, quantity=3, booking_room_id=br.id), staff)

        txn = _pay(db_session, factory, staff, type=TransactionType.SERVICE_CHARGE, booking_id=booking.id,
                   service_usage_id=usage.id)

        assert txn.amount == 75_000
        db_session.refresh(usage)
        assert usage.status == ServiceUsageStatus.COMPLETED.value
        db_session.refresh(br)
        assert br.total_paid == 0  # the room itself is untouched

    def test_usage_from_another_booking(self, db_session, factory, staff, one_room_booking):
        booking = one_room_booking()
        _, br = factory.checked_in(factory.customer(), staff)
        service = factory.service()
        usage = service_usage_service.create_service_usage(
            db_session, ServiceUsageCreate(service_id=service.id, booking_room_id=br.id), staff)
        with pytest.raises(ValidationError) as exc:
            _pay(db_session, factory, staff, type=TransactionType.SERVICE_CHARGE, booking_id=booking.id,
                 service_usage_id=usage.id)
        assert exc.value.rule == "transaction.usage_booking"

    def test_standalone_service_usage(self, db_session, factory, staff):
        service = factory.service(price=120_000)
        customer = factory.customer()
        usage = service_usage_service.create_service_usage(
            db_session, ServiceUsageCreate(service_id=service.id, customer_id=customer.id), staff)

        txn = _pay(db_session, factory, staff, type=TransactionType.SERVICE_CHARGE, service_usage_id=usage.id)

        assert txn.booking_id is None
        assert txn.amount == 120_000
        assert txn.guest_folio_id is None
        db_session.refresh(usage)
        assert usage.balance == 0

    def test_standalone_usage_with_service_promotion(self, db_session, factory, staff):
        factory.promotion("SPA20", value=20, scope="SERVICE")
        service = factory.service(price=100_000)
        customer = factory.customer()
        usage = service_usage_service.create_service_usage(
            db_session, ServiceUsageCreate(service_id=service.id, customer_id=customer.id), staff)

        txn = _pay(db_session, factory, staff, type=TransactionType.SERVICE_CHARGE, service_usage_id=usage.id,
                   promotion_code="SPA20")

        assert txn.discount_amount == 20_000
        assert txn.amount == 80_000
        db_session.refresh(usage)
        assert usage.discount_amount == 20_000
        assert usage.status == ServiceUsageStatus.COMPLETED.value

    def test_usage_of_a_booking_cannot_be_paid_standalone(self, db_session, factory, staff):
        _, br = factory.checked_in(factory.customer(), staff)
        service = factory.service()
        usage = service_usage_service.create_service_usage(
            db_session, ServiceUsageCreate(service_id=service.id, booking_room_id=br.id), staff)
        with pytest.raises(ValidationError):
            _pay(db_session, factory, staff, type=TransactionType.SERVICE_CHARGE, service_usage_id=usage.id)

    def test_cancelled_booking(self, db_session, factory, staff, one_room_booking):
        booking = one_room_booking()
        inventory_service.cancel_booking(db_session, booking.id, staff)
        with pytest.raises(StateError):
            _pay(db_session, factory, staff, booking_id=booking.id)

    def test_requires_employee(self, db_session, factory, one_room_booking):
        booking = one_room_booking()
        with pytest.raises(AuthorizationError):
            _pay(db_session, factory, Actor.customer(booking.primary_customer_id), booking_id=booking.id)


class TestDeposits:

    def test_partial_deposit_confirms_booking(self, db_session, factory, staff, one_room_booking):
        booking = one_room_booking(price=200_000, rooms=2)

        txn = _pay(db_session, factory, staff, type=TransactionType.DEPOSIT, booking_id=booking.id,
                   amount=booking.deposit_required)

        assert txn.amount == 400_000
        assert _details_sum(db_session, txn) == 400_000
        db_session.refresh(booking)
        assert booking.status == BookingStatus.CONFIRMED.value
        assert booking.total_paid == 400_000
        assert booking.balance == 400_000
        assert [br.balance for br in factory.booking_rooms(booking)] == [200_000, 200_000]

    def test_deposit_above_due(self, db_session, factory, staff, one_room_booking):
        booking = one_room_booking(price=200_000)
        with pytest.raises(ValidationError):
            _pay(db_session, factory, staff, type=TransactionType.DEPOSIT, booking_id=booking.id, amount=400_001)

    def test_amount_only_for_deposit(self, db_session, factory, staff, one_room_booking):
        booking = one_room_booking()
        with pytest.raises(ValidationError) as exc:
            _pay(db_session, factory, staff, booking_id=booking.id, amount=10)
        assert exc.value.rule == "transaction.amount"

    def test_deposit_then_rest(self, db_session, factory, staff, one_room_booking):
        booking = one_room_booking(price=500_000)
        _pay(db_session, factory, staff, type=TransactionType.DEPOSIT, booking_id=booking.id, amount=300_000)
        rest = _pay(db_session, factory, staff, booking_id=booking.id)
        assert rest.base_amount == 700_000
        db_session.refresh(booking)
        assert booking.total_paid == 1_000_000
        assert booking.balance == 0


class TestSignedTransactions:

    def test_refund_reduces_paid(self, db_session, factory, staff, one_room_booking):
        booking = one_room_booking(price=500_000)
        br = factory.booking_rooms(booking)[0]
        _pay(db_session, factory, staff, booking_id=booking.id)

        refund = _pay(db_session, factory, staff, type=TransactionType.REFUND, booking_id=booking.id,
                      booking_room_ids=[br.id], amount=-100_000)

        assert refund.amount == -100_000
        assert refund.discount_amount == 0
        assert _details_sum(db_session, refund) == -100_000
        db_session.refresh(br)
        assert br.total_paid == 900_000
        assert br.balance == 100_000
        db_session.refresh(booking)
        assert booking.total_amount == 1_000_000
        assert booking.balance == 100_000

    def test_refund_sign_and_limit(self, db_session, factory, staff, one_room_booking):
        booking = one_room_booking(price=500_000)
        br = factory.booking_rooms(booking)[0]
        with pytest.raises(ValidationError) as exc:
            _pay(db_session, factory, staff, type=TransactionType.REFUND, booking_id=booking.id,
                 booking_room_ids=[br.id], amount=100)
        assert exc.value.rule == "transaction.refund_sign"
        with pytest.raises(ValidationError) as exc:
            _pay(db_session, factory, staff, type=TransactionType.REFUND, booking_id=booking.id,
                 booking_room_ids=[br.id], amount=-1)
        assert exc.value.rule == "transaction.refund_exceeds_paid"

    def test_adjustment_changes_what_is_owed(self, db_session, factory, staff, one_room_booking):
        booking = one_room_booking(price=500_000)
        br = factory.booking_rooms(booking)[0]
        adj = _pay(db_session, factory, staff, type=TransactionType.ADJUSTMENT, booking_id=booking.id,
                   booking_room_ids=[br.id], amount=-50_000, description="late check-in goodwill")
        assert adj.description == "late check-in goodwill"
        db_session.refresh(booking)
        assert booking.total_amount == 950_000
        assert booking.total_paid == 0

    def test_signed_needs_single_target(self, db_session, factory, staff, one_room_booking):
        booking = one_room_booking(rooms=2)
        with pytest.raises(ValidationError) as exc:
            _pay(db_session, factory, staff, type=TransactionType.ADJUSTMENT, booking_id=booking.id, amount=10)
        assert exc.value.rule == "transaction.signed_target"

    def test_signed_rejects_promotion_and_zero(self, db_session, factory, staff, one_room_booking):
        factory.promotion("ANY")
        booking = one_room_booking()
        br = factory.booking_rooms(booking)[0]
        with pytest.raises(ValidationError):
            _pay(db_session, factory, staff, type=TransactionType.ADJUSTMENT, booking_id=booking.id,
                 booking_room_ids=[br.id], amount=10, promotion_code="ANY")
        with pytest.raises(ValidationError):
            _pay(db_session, factory, staff, type=TransactionType.ADJUSTMENT, booking_id=booking.id,
                 booking_room_ids=[br.id], amount=0)


class TestFolioAttachment:

    def test_payment_before_check_in_joins_folio_later(self, db_session, factory, staff, one_room_booking):
        booking = one_room_booking()
        txn = _pay(db_session, factory, staff, type=TransactionType.DEPOSIT, booking_id=booking.id,
                   amount=100_000)
        assert txn.guest_folio_id is None

        br = factory.booking_rooms(booking)[0]
        stay_service.check_in(db_session, br.id, [CheckInGuest(customer_id=booking.primary_customer_id,
                                                               is_primary=True)], staff)
        db_session.refresh(txn)
        folio = db_session.query(GuestFolio).filter_by(booking_id=booking.id).one()
        assert txn.guest_folio_id == folio.id

    def test_payment_after_check_in_is_on_folio(self, db_session, factory, staff):
        booking, _ = factory.checked_in(factory.customer(), staff)
        txn = _pay(db_session, factory, staff, booking_id=booking.id)
        folio = db_session.query(GuestFolio).filter_by(booking_id=booking.id).one()
        assert txn.guest_folio_id == folio.id
        assert txn.processed_by_id == staff.id


class TestQueries:

    def test_list_and_filter(self, db_session, factory, staff, one_room_booking):
        booking = one_room_booking(price=100_000, rooms=2)
        first, second = factory.booking_rooms(booking)
        deposit = _pay(db_session, factory, staff, type=TransactionType.DEPOSIT, booking_id=booking.id,
                       booking_room_ids=[first.id])
        charge = _pay(db_session, factory, staff, booking_id=booking.id, booking_room_ids=[second.id])

        page = transaction_service.list_transactions(db_session, TransactionFilters(booking_id=booking.id))
        assert page.total == 2
        page = transaction_service.list_transactions(db_session, TransactionFilters(type=TransactionType.DEPOSIT))
        assert [t.id for t in page.items] == [deposit.id]
        assert transaction_service.get_transaction(db_session, charge.id).amount == 200_000

    def test_activity_recorded(self, db_session, factory, staff, one_room_booking):
        booking = one_room_booking()
        txn = _pay(db_session, factory, staff, booking_id=booking.id)
        activity = db_session.query(Activity).filter_by(type="CREATE_TRANSACTION", transaction_id=txn.id).one()
        assert activity.employee_id == staff.id
        assert activity.booking_id == booking.id

    def test_unknown_transaction(self, db_session):
        with pytest.raises(NotFoundError):
            transaction_service.get_transaction(db_session, "missing")

    def test_amount_identity_holds(self, db_session, factory, staff, one_room_booking):
        factory.promotion("PCT7", value=7)
        booking = one_room_booking(price=333_333, rooms=3)
        txn = _pay(db_session, factory, staff, booking_id=booking.id, promotion_code="PCT7")
        assert txn.amount == txn.base_amount - txn.discount_amount
        assert _details_sum(db_session, txn) == txn.amount
        for br in db_session.query(BookingRoom).filter_by(booking_id=booking.id):
            assert br.balance == 0
