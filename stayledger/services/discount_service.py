"""Discount arithmetic.

All amounts are integer minor units. A transaction takes at most one promotion;
its discount is computed on the eligible base and then spread across the
eligible lines so the per-line figures add up exactly to the transaction total.
"""
from dataclasses import dataclass

from stayledger.core.errors import ValidationError
from stayledger.domain.enums import PromotionScope, PromotionType

ROOM_LINE = "ROOM"
SERVICE_LINE = "SERVICE"


@dataclass
class ChargeLine:
    kind: str  # ROOM | SERVICE
    base_amount: int
    booking_room_id: str | None = None
    service_usage_id: str | None = None
    discount_amount: int = 0

    @property
    def amount(self) -> int:
        return self.base_amount - self.discount_amount


def compute_discount(promotion, base_amount: int) -> int:
    """Discount for `base_amount` under `promotion`; never negative and never above the base."""
    base = int(base_amount)
    if base <= 0:
        return 0
    ptype = PromotionType(promotion.type)
    value = int(promotion.value)
    if ptype == PromotionType.PERCENTAGE:
        discount = base * value // 100
        if promotion.max_discount is not None:
            discount = min(discount, int(promotion.max_discount))
    else:
        discount = value
    return max(0, min(discount, base))


def request_scope(lines: list[ChargeLine]) -> PromotionScope:
    kinds = {line.kind for line in lines}
    if kinds == {ROOM_LINE}:
        return PromotionScope.ROOM
    if kinds == {SERVICE_LINE}:
        return PromotionScope.SERVICE
    return PromotionScope.ALL


def eligible_lines(promotion_scope, lines: list[ChargeLine]) -> list[ChargeLine]:
    scope = PromotionScope(promotion_scope)
    if scope == PromotionScope.ROOM:
        return [line for line in lines if line.kind == ROOM_LINE]
    if scope == PromotionScope.SERVICE:
        return [line for line in lines if line.kind == SERVICE_LINE]
    return list(lines)


def allocate_discount(total_discount: int, bases: list[int]) -> list[int]:
    """Split `total_discount` across `bases` proportionally (largest remainder).

    The shares sum exactly to `total_discount` and no share exceeds its base.
    """
    total_discount = int(total_discount)
    bases = [int(b) for b in bases]
    if total_discount < 0 or any(b < 0 for b in bases):
        raise ValidationError("discount and bases must be non-negative", rule="discount.allocation")
    base_total = sum(bases)
    if total_discount > base_total:
        raise ValidationError("discount exceeds the eligible base", rule="discount.allocation")
    if total_discount == 0 or base_total == 0:
        return [0] * len(bases)

    shares = [total_discount * b // base_total for b in bases]
    remainders = [total_discount * b % base_total for b in bases]
    leftover = total_discount - sum(shares)
    # ties go to the earlier line
    order = sorted(range(len(bases)), key=lambda i: (-remainders[i], i))
    for i in order:
        if leftover == 0:
            break
        if shares[i] < bases[i]:
            shares[i] += 1
            leftover -= 1
    return shares


def apply_discount(total_discount: int, lines: list[ChargeLine]) -> None:
    """Write each line's share of `total_discount` onto `lines` in place."""
    for line, share in zip(lines, allocate_discount(total_discount, [line.base_amount for line in lines])):
        line.discount_amount = share
