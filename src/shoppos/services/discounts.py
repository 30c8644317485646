from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from shoppos.domain.models import Promotion, PromotionSnapshot, Voucher, VoucherSnapshot, money


def promotion_raw_discount(promotion: Promotion, subtotal: float) -> float:
    if promotion.type == "percent":
        return float(subtotal) * float(promotion.value) / 100
    if promotion.type == "fixed":
        return float(promotion.value)
    # buy_get has no amount rule yet; it still counts as applied
    return 0.0


def voucher_discount(voucher: Optional[Voucher], subtotal: float) -> float:
    if voucher is None:
        return 0.0
    if voucher.type == "percent":
        amount = float(subtotal) * float(voucher.value) / 100
        if voucher.max_discount:
            amount = min(amount, float(voucher.max_discount))
        return money(amount)
    return money(min(float(voucher.value), float(subtotal)))


@dataclass(frozen=True)
class DiscountBreakdown:
    subtotal: float
    promotion_discount: float = 0.0
    voucher_discount: float = 0.0
    discount: float = 0.0

    @property
    def total(self) -> float:
        return money(self.subtotal - self.discount)

    @property
    def voucher_share(self) -> float:
        """Part of the capped total discount attributed to the voucher."""
        return money(max(0.0, self.discount - self.promotion_discount))


def calculate(subtotal: float, promotions: Iterable[Promotion], voucher: Optional[Voucher]) -> DiscountBreakdown:
    subtotal = max(0.0, float(subtotal))
    raw = sum(promotion_raw_discount(p, subtotal) for p in promotions)
    promotion_discount = money(min(raw, subtotal))
    v_discount = voucher_discount(voucher, subtotal)
    discount = money(min(promotion_discount + v_discount, subtotal))
    return DiscountBreakdown(
        subtotal=money(subtotal),
        promotion_discount=promotion_discount,
        voucher_discount=v_discount,
        discount=discount,
    )


def attribute_promotions(promotions: Iterable[Promotion], subtotal: float, promotion_discount: float) -> list[PromotionSnapshot]:
    """Split the capped promotion discount across promotions, proportionally to their raw amounts."""
    promotions = list(promotions)
    raws = [promotion_raw_discount(p, subtotal) for p in promotions]
    raw_total = sum(raws)
    factor = min(1.0, float(promotion_discount) / raw_total) if raw_total > 0 else 1.0
    return [
        PromotionSnapshot(
            id=p.id,
            name=p.name,
            type=p.type,
            value=float(p.value),
            discount_amount=money(raw * factor),
        )
        for p, raw in zip(promotions, raws)
    ]


def voucher_snapshot(voucher: Voucher, breakdown: DiscountBreakdown) -> VoucherSnapshot:
    return VoucherSnapshot(
        id=voucher.id,
        code=voucher.code,
        type=voucher.type,
        value=float(voucher.value),
        discount_amount=breakdown.voucher_share,
    )
