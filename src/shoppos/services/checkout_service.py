"""Turns a priced cart into an invoice.

A checkout moves Building -> Previewing -> Settling and ends Settled or
Aborted. Nothing is written before the invoice itself; once the invoice
exists every follow-up write (stock, usage counters, debt, customer stats)
is best effort and reported back as a warning instead of failing the sale.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Callable, Optional

from shoppos.config import PosSettings
from shoppos.domain.errors import (
    AppError,
    InsufficientStockError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from shoppos.domain.models import (
    PAYMENT_METHODS,
    BankAccount,
    BankAccountSnapshot,
    Cart,
    Invoice,
    InvoiceItem,
)
from shoppos.repositories.contracts import INVOICES, PRODUCTS, EntityStore
from shoppos.services.discounts import attribute_promotions, voucher_snapshot
from shoppos.services.pricing_service import PricingResult

log = logging.getLogger("shoppos.checkout")

BUILDING = "building"
PREVIEWING = "previewing"
SETTLING = "settling"
SETTLED = "settled"
ABORTED = "aborted"

TRANSITIONS = {
    BUILDING: {PREVIEWING},
    PREVIEWING: {PREVIEWING, BUILDING, SETTLING},
    SETTLING: {SETTLED, ABORTED},
    SETTLED: set(),
    ABORTED: set(),
}


def format_invoice_code(counter: int, prefix: str = "HD", width: int = 6) -> str:
    return f"{prefix}{int(counter):0{width}d}"


@dataclass(frozen=True)
class CheckoutPreview:
    invoice_code: str
    subtotal: float
    promotion_discount: float
    voucher_discount: float
    discount: float
    total: float
    payment_method: str
    bank_account: Optional[BankAccount] = None
    qr_description: Optional[str] = None
    qr_url: Optional[str] = None


@dataclass
class CheckoutSession:
    cart_id: str
    state: str = BUILDING
    payment_method: str = "cash"
    bank_account_id: Optional[str] = None
    preview: Optional[CheckoutPreview] = None


@dataclass(frozen=True)
class CheckoutResult:
    state: str
    invoice: Optional[Invoice] = None
    warnings: list[str] = field(default_factory=list)
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.state == SETTLED


class CheckoutService:
    def __init__(
        self,
        store: EntityStore,
        catalog,
        customers,
        carts,
        pricing,
        debt,
        bank_qr,
        settings: Optional[PosSettings] = None,
        now: Callable[[], datetime] = datetime.now,
    ):
        self.store = store
        self.catalog = catalog
        self.customers = customers
        self.carts = carts
        self.pricing = pricing
        self.debt = debt
        self.bank_qr = bank_qr
        self.settings = settings or PosSettings()
        self.now = now

    # ---------- State machine ----------
    def _move(self, session: CheckoutSession, state: str) -> None:
        if state not in TRANSITIONS[session.state]:
            raise ValidationError(f"Checkout cannot go from {session.state} to {state}.")
        session.state = state

    def begin(self, cart_id: Optional[str] = None) -> CheckoutSession:
        cart = self.carts.get_cart(cart_id)
        if not cart.lines:
            raise ValidationError("Cart is empty.")
        return CheckoutSession(cart_id=cart.id)

    def back_to_cart(self, session: CheckoutSession) -> None:
        self._move(session, BUILDING)
        session.preview = None

    def preview(
        self,
        session: CheckoutSession,
        payment_method: str = "cash",
        bank_account_id: Optional[str] = None,
    ) -> CheckoutPreview:
        if payment_method not in PAYMENT_METHODS:
            raise ValidationError(f"Payment method must be one of: {', '.join(PAYMENT_METHODS)}")
        cart = self.carts.get_cart(session.cart_id)
        if not cart.lines:
            raise ValidationError("Cart is empty.")
        self._move(session, PREVIEWING)
        session.payment_method = payment_method
        session.bank_account_id = bank_account_id

        breakdown = self.carts.reprice(cart.id).breakdown
        # peek only: the counter is consumed when the invoice is saved
        code = self._code(self.store.peek_sequence(self.settings.invoice_sequence) + 1)

        account = description = qr_url = None
        if payment_method == "transfer":
            profile = self.catalog.shop_profile()
            account = self._bank_account(profile, bank_account_id)
            if account is not None:
                description = self.bank_qr.describe(code, profile.name)
                qr_url = self.bank_qr.build_qr_url(account, breakdown.total, description)

        session.preview = CheckoutPreview(
            invoice_code=code,
            subtotal=breakdown.subtotal,
            promotion_discount=breakdown.promotion_discount,
            voucher_discount=breakdown.voucher_discount,
            discount=breakdown.discount,
            total=breakdown.total,
            payment_method=payment_method,
            bank_account=account,
            qr_description=description,
            qr_url=qr_url,
        )
        return session.preview

    # ---------- Commit ----------
    def confirm(self, session: CheckoutSession, new_customer_name: str = "") -> CheckoutResult:
        if session.state != PREVIEWING:
            raise ValidationError("Preview the checkout before confirming it.")
        cart = self.carts.get_cart(session.cart_id)
        method = session.payment_method
        try:
            self._validate(cart, method, new_customer_name)
        except AppError:
            self._move(session, BUILDING)
            session.preview = None
            raise
        self._move(session, SETTLING)

        warnings: list[str] = []

        customer_id = cart.customer_id or None
        customer_name = cart.customer_name or None
        typed_name = (new_customer_name or cart.customer_name or "").strip()
        if customer_id is None and typed_name:
            try:
                created = self.customers.create_customer(typed_name)
            except Exception as e:
                log.warning("customer_create_failed cart=%s name=%s error=%s", cart.id, typed_name, e)
                if method == "debt":
                    return self._abort(session, f"Could not create customer {typed_name}; debt sale cancelled.")
                warnings.append(f"Customer {typed_name} could not be saved; sale recorded without a customer.")
            else:
                customer_id, customer_name = created.id, created.name
                self.carts.select_customer(created.id, created.name, cart_id=cart.id)

        try:
            priced = self.carts.reprice(cart.id)
            profile = self.catalog.shop_profile() if method == "transfer" else None
            account = self._bank_account(profile, session.bank_account_id) if profile is not None else None
        except AppError as e:
            log.error("checkout_prepare_failed cart=%s error=%s", cart.id, e)
            return self._abort(session, f"Could not prepare the invoice: {e}")

        try:
            counter = self.store.next_sequence(self.settings.invoice_sequence)
        except AppError as e:
            log.error("invoice_code_failed cart=%s error=%s", cart.id, e)
            return self._abort(session, f"Could not allocate an invoice code: {e}")
        code = self._code(counter)

        bank_snapshot = None
        if account is not None:
            bank_snapshot = self.bank_qr.snapshot(account, self.bank_qr.describe(code, profile.name))
        invoice = self._build_invoice(cart, priced, code, method, customer_id, customer_name, bank_snapshot)
        try:
            invoice_id = self.store.create(INVOICES, invoice.to_doc())
        except PermissionDeniedError as e:
            log.error("invoice_save_denied code=%s error=%s", code, e)
            return self._abort(session, "You do not have permission to save invoices. Nothing was charged.")
        except AppError as e:
            log.error("invoice_save_failed code=%s error=%s", code, e)
            return self._abort(session, f"Could not save invoice {code}: {e}")
        invoice = replace(invoice, id=invoice_id)
        self.pricing.redemptions.record(invoice)

        warnings += self._decrement_stock(invoice)
        warnings += self._bump_usage(invoice, priced)
        if method == "debt" and customer_id and invoice.total > 0:
            try:
                self.debt.add_debt(customer_id, invoice.total, note=f"Invoice {code}", invoice_ids=[invoice_id])
            except Exception as e:
                log.error("debt_record_failed invoice=%s customer=%s error=%s", code, customer_id, e)
                warnings.append(f"Debt for {code} was not recorded: {e}")
        if customer_id:
            try:
                self.customers.refresh_purchase_stats(customer_id)
            except Exception as e:
                log.warning("customer_stats_failed customer=%s error=%s", customer_id, e)
                warnings.append(f"Customer statistics were not updated: {e}")

        self.carts.reset_after_checkout(cart.id)
        session.payment_method = "cash"
        session.preview = None
        self._move(session, SETTLED)
        log.info(
            "checkout_settled invoice=%s code=%s total=%.2f method=%s warnings=%s",
            invoice_id, code, invoice.total, method, len(warnings),
        )
        return CheckoutResult(state=SETTLED, invoice=invoice, warnings=warnings, message=f"Invoice {code} saved.")

    # ---------- Internals ----------
    def _code(self, counter: int) -> str:
        return format_invoice_code(counter, self.settings.invoice_prefix, self.settings.invoice_code_width)

    def _abort(self, session: CheckoutSession, message: str) -> CheckoutResult:
        self._move(session, ABORTED)
        log.error("checkout_aborted cart=%s message=%s", session.cart_id, message)
        return CheckoutResult(state=ABORTED, message=message)

    def _validate(self, cart: Cart, method: str, new_customer_name: str) -> None:
        if not cart.lines:
            raise ValidationError("Cart is empty.")
        if method not in PAYMENT_METHODS:
            raise ValidationError(f"Payment method must be one of: {', '.join(PAYMENT_METHODS)}")
        if method == "debt" and not (cart.customer_id or (new_customer_name or cart.customer_name).strip()):
            raise ValidationError("Select a customer to sell on debt.")
        for line in cart.lines:
            try:
                product = self.catalog.get_product(line.product_id)
            except NotFoundError as e:
                raise NotFoundError(f"{line.name} is no longer in the catalog.") from e
            if line.quantity > product.stock:
                raise InsufficientStockError(f"Not enough stock for {line.name}. Available: {product.stock}")

    def _bank_account(self, profile, bank_account_id: Optional[str]) -> Optional[BankAccount]:
        if bank_account_id:
            for account in profile.bank_accounts:
                if account.id == bank_account_id:
                    return account
            raise NotFoundError(f"Bank account not found: {bank_account_id}")
        return profile.default_bank_account

    def _build_invoice(
        self,
        cart: Cart,
        priced: PricingResult,
        code: str,
        method: str,
        customer_id: Optional[str],
        customer_name: Optional[str],
        bank_snapshot: Optional[BankAccountSnapshot],
    ) -> Invoice:
        now = self.now()
        breakdown = priced.breakdown
        eligibility = priced.eligibility
        # voucher_discount matches the cart and preview; the snapshot carries the capped share
        return Invoice(
            id="",
            invoice_code=code,
            date=now.date().isoformat(),
            time=now.strftime("%H:%M"),
            items=tuple(
                InvoiceItem(
                    product_id=line.product_id,
                    product_name=line.name,
                    quantity=line.quantity,
                    price=line.price,
                    unit=line.unit,
                )
                for line in cart.lines
            ),
            subtotal=breakdown.subtotal,
            discount=breakdown.discount,
            total=breakdown.total,
            payment_method=method,
            promotion_discount=breakdown.promotion_discount,
            voucher_discount=breakdown.voucher_discount,
            customer_id=customer_id,
            customer_name=customer_name,
            promotion_ids=tuple(eligibility.promotion_ids),
            promotion_snapshots=tuple(
                attribute_promotions(eligibility.promotions, breakdown.subtotal, breakdown.promotion_discount)
            ),
            voucher_code=eligibility.voucher.code if eligibility.voucher else None,
            voucher_snapshot=voucher_snapshot(eligibility.voucher, breakdown) if eligibility.voucher else None,
            bank_account_snapshot=bank_snapshot,
        )

    def _decrement_stock(self, invoice: Invoice) -> list[str]:
        warnings: list[str] = []
        for item in invoice.items:
            try:
                self.store.mutate(
                    PRODUCTS,
                    item.product_id,
                    lambda doc, qty=item.quantity: {"stock": max(0, int(doc.get("stock", 0)) - qty)},
                )
            except Exception as e:
                log.warning("stock_update_failed invoice=%s product=%s error=%s", invoice.invoice_code, item.product_id, e)
                warnings.append(f"Stock for {item.product_name} was not updated: {e}")
        return warnings

    def _bump_usage(self, invoice: Invoice, priced: PricingResult) -> list[str]:
        warnings: list[str] = []
        for promotion in priced.eligibility.promotions:
            try:
                self.catalog.use_promotion(promotion.id)
            except Exception as e:
                log.warning("promotion_usage_failed invoice=%s promotion=%s error=%s", invoice.invoice_code, promotion.id, e)
                warnings.append(f"Usage of promotion {promotion.name} was not recorded: {e}")
        voucher = priced.eligibility.voucher
        if voucher is not None:
            try:
                self.catalog.use_voucher(voucher.id)
            except Exception as e:
                log.warning("voucher_usage_failed invoice=%s voucher=%s error=%s", invoice.invoice_code, voucher.code, e)
                warnings.append(f"Usage of voucher {voucher.code} was not recorded: {e}")
        return warnings
