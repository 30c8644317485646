from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date
from typing import Callable

from shoppos.domain.errors import VoucherRejectedError
from shoppos.domain.models import Cart, Voucher
from shoppos.services.discounts import DiscountBreakdown, calculate
from shoppos.services.eligibility import (
    NOT_FOUND,
    REASON_MESSAGES,
    CartSnapshot,
    Eligibility,
    RedemptionIndex,
    check_voucher,
    evaluate,
)


@dataclass(frozen=True)
class PricingResult:
    eligibility: Eligibility
    breakdown: DiscountBreakdown


class PricingService:
    def __init__(self, catalog, redemptions: RedemptionIndex, today: Callable[[], date] = date.today):
        self.catalog = catalog
        self.redemptions = redemptions
        self.today = today

    def price(self, cart: Cart) -> PricingResult:
        snapshot = CartSnapshot.of(cart)
        vouchers = self.catalog.list_vouchers() if snapshot.voucher_code else []
        eligibility = evaluate(
            snapshot,
            self.catalog.list_promotions(),
            vouchers,
            self.redemptions,
            self.today(),
        )
        breakdown = calculate(snapshot.subtotal, eligibility.promotions, eligibility.voucher)
        return PricingResult(eligibility=eligibility, breakdown=breakdown)

    def apply(self, cart: Cart) -> PricingResult:
        result = self.price(cart)
        cart.promotion_discount = result.breakdown.promotion_discount
        cart.voucher_discount = result.breakdown.voucher_discount
        cart.discount = result.breakdown.discount
        cart.applied_promotion_ids = result.eligibility.promotion_ids
        return result

    def validate_voucher(self, cart: Cart, code: str) -> Voucher:
        code = (code or "").strip()
        voucher = self.catalog.find_voucher(code)
        snapshot = replace(CartSnapshot.of(cart), voucher_code=code)
        reason = check_voucher(voucher, snapshot, self.redemptions, self.today())
        if reason is not None:
            raise VoucherRejectedError(reason, REASON_MESSAGES.get(reason, REASON_MESSAGES[NOT_FOUND]))
        return voucher
