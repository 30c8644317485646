"""Which promotions and which voucher apply to a cart.

Everything here is pure: callers pass the cart snapshot, the catalog, the
redemption history and the calendar day, and get the same answer back every
time. The cart manager re-runs it after each mutation.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Iterable, Optional, Union

from shoppos.domain.models import Cart, Invoice, Promotion, Voucher, parse_day
from shoppos.repositories.contracts import INVOICES, EntityStore, Unsubscribe

NOT_FOUND = "not_found"
EXHAUSTED = "exhausted"
OUTSIDE_WINDOW = "outside_validity_window"
INACTIVE = "inactive"
BELOW_MIN_PURCHASE = "below_min_purchase"
PRODUCT_NOT_ELIGIBLE = "product_not_eligible"
CUSTOMER_NOT_ELIGIBLE = "customer_not_eligible"
ALREADY_REDEEMED = "already_redeemed"

REASON_MESSAGES = {
    NOT_FOUND: "Voucher code does not exist.",
    EXHAUSTED: "Voucher has no uses left.",
    OUTSIDE_WINDOW: "Voucher is not valid yet or has expired.",
    INACTIVE: "Voucher is no longer active.",
    BELOW_MIN_PURCHASE: "Order total is below the voucher's minimum purchase.",
    PRODUCT_NOT_ELIGIBLE: "Voucher does not apply to the products in this cart.",
    CUSTOMER_NOT_ELIGIBLE: "Voucher does not apply to this customer.",
    ALREADY_REDEEMED: "This customer has already used this voucher.",
}

Rule = Union[Promotion, Voucher]


@dataclass(frozen=True)
class CartSnapshot:
    subtotal: float
    product_ids: frozenset[str]
    customer_id: Optional[str] = None
    voucher_code: str = ""

    @classmethod
    def of(cls, cart: Cart) -> "CartSnapshot":
        return cls(
            subtotal=float(cart.subtotal),
            product_ids=frozenset(cart.product_ids),
            customer_id=cart.customer_id or None,
            voucher_code=(cart.voucher_code or "").strip(),
        )


class RedemptionIndex:
    """(customer, promotion) and (customer, voucher code) pairs already redeemed.

    Built from invoice history and kept current through the store's
    invoice subscription, so the one-redemption-per-customer rule is a set
    lookup instead of a scan over every invoice.
    """

    def __init__(self) -> None:
        self._promotions: set[tuple[str, str]] = set()
        self._vouchers: set[tuple[str, str]] = set()

    @classmethod
    def from_invoices(cls, invoices: Iterable[Invoice]) -> "RedemptionIndex":
        index = cls()
        for invoice in invoices:
            index.record(invoice)
        return index

    def record(self, invoice: Invoice) -> None:
        if not invoice.customer_id:
            return
        customer = str(invoice.customer_id)
        promotion_ids = set(invoice.promotion_ids) | {s.id for s in invoice.promotion_snapshots}
        for promotion_id in promotion_ids:
            self._promotions.add((customer, promotion_id))
        codes = {invoice.voucher_code or ""}
        if invoice.voucher_snapshot is not None:
            codes.add(invoice.voucher_snapshot.code)
        for code in codes:
            if code.strip():
                self._vouchers.add((customer, code.strip().upper()))

    def replace(self, invoices: Iterable[Invoice]) -> None:
        fresh = RedemptionIndex.from_invoices(invoices)
        self._promotions = fresh._promotions
        self._vouchers = fresh._vouchers

    def attach(self, store: EntityStore) -> Unsubscribe:
        return store.subscribe(
            INVOICES,
            lambda rows: self.replace(Invoice.from_doc(doc_id, doc) for doc_id, doc in rows),
        )

    def has_promotion(self, customer_id: Optional[str], promotion_id: str) -> bool:
        return bool(customer_id) and (str(customer_id), promotion_id) in self._promotions

    def has_voucher(self, customer_id: Optional[str], code: str) -> bool:
        return bool(customer_id) and (str(customer_id), code.strip().upper()) in self._vouchers


def _rule_failure(rule: Rule, snapshot: CartSnapshot, today: date) -> Optional[str]:
    if not rule.has_quota_left:
        return EXHAUSTED
    if not (parse_day(rule.start_date) <= today <= parse_day(rule.end_date)):
        return OUTSIDE_WINDOW
    if rule.status_on(today) != "active":
        return INACTIVE
    if snapshot.subtotal < rule.min_purchase:
        return BELOW_MIN_PURCHASE
    if rule.product_ids is not None and not snapshot.product_ids.intersection(rule.product_ids):
        return PRODUCT_NOT_ELIGIBLE
    if rule.customer_ids is not None and snapshot.customer_id not in rule.customer_ids:
        return CUSTOMER_NOT_ELIGIBLE
    return None


def promotion_is_eligible(promotion: Promotion, snapshot: CartSnapshot, redemptions: RedemptionIndex, today: date) -> bool:
    if _rule_failure(promotion, snapshot, today) is not None:
        return False
    return not redemptions.has_promotion(snapshot.customer_id, promotion.id)


def check_voucher(voucher: Optional[Voucher], snapshot: CartSnapshot, redemptions: RedemptionIndex, today: date) -> Optional[str]:
    """Return the first rule the voucher fails, or None when it applies."""
    if voucher is None or not voucher.matches(snapshot.voucher_code):
        return NOT_FOUND
    failure = _rule_failure(voucher, snapshot, today)
    if failure is not None:
        return failure
    if redemptions.has_voucher(snapshot.customer_id, voucher.code):
        return ALREADY_REDEEMED
    return None


@dataclass(frozen=True)
class Eligibility:
    promotions: tuple[Promotion, ...] = ()
    voucher: Optional[Voucher] = None

    @property
    def promotion_ids(self) -> list[str]:
        return [p.id for p in self.promotions]


def evaluate(
    snapshot: CartSnapshot,
    promotions: Iterable[Promotion],
    vouchers: Iterable[Voucher],
    redemptions: RedemptionIndex,
    today: date,
) -> Eligibility:
    if not snapshot.product_ids:
        return Eligibility()

    eligible = tuple(p for p in promotions if promotion_is_eligible(p, snapshot, redemptions, today))

    voucher = None
    if snapshot.voucher_code:
        for candidate in vouchers:
            if candidate.matches(snapshot.voucher_code):
                if check_voucher(candidate, snapshot, redemptions, today) is None:
                    voucher = candidate
                break

    return Eligibility(promotions=eligible, voucher=voucher)
