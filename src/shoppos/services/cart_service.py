from __future__ import annotations

import logging
import time
from typing import Callable, Iterable, Optional

from shoppos.domain.errors import (
    CartCapacityWarning,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
    VoucherRejectedError,
)
from shoppos.domain.models import Cart, CartLine, Voucher
from shoppos.repositories.cart_state import CartState, CartStateFile
from shoppos.services.pricing_service import PricingResult, PricingService

log = logging.getLogger(__name__)


def _default_cart_id() -> str:
    return f"cart-{int(time.time() * 1000)}"


class CartService:
    """Up to `max_carts` open sales on one terminal, one of them current.

    Every mutation re-prices the touched cart and writes the whole cart set
    to the local state file, so open carts survive restarts.
    """

    def __init__(
        self,
        pricing: PricingService,
        catalog,
        state_file: CartStateFile,
        max_carts: int = 5,
        id_factory: Callable[[], str] = _default_cart_id,
    ):
        self.pricing = pricing
        self.catalog = catalog
        self.state_file = state_file
        self.max_carts = max_carts
        self.id_factory = id_factory

        state = state_file.load()
        if state is None:
            first = Cart(id=self._new_id(set()))
            self._carts = [first]
            self._current_id = first.id
            self._save()
        else:
            self._carts = list(state.carts)
            ids = {c.id for c in self._carts}
            self._current_id = state.current_cart_id if state.current_cart_id in ids else self._carts[0].id

    # ---------- Cart set ----------
    @property
    def carts(self) -> list[Cart]:
        return list(self._carts)

    @property
    def current(self) -> Cart:
        return self.get_cart(self._current_id)

    def get_cart(self, cart_id: Optional[str] = None) -> Cart:
        wanted = cart_id or self._current_id
        for cart in self._carts:
            if cart.id == wanted:
                return cart
        raise NotFoundError(f"Cart not found: {wanted}")

    def create_cart(self) -> Cart:
        if len(self._carts) >= self.max_carts:
            raise CartCapacityWarning(f"You can only keep {self.max_carts} carts open.")
        cart = Cart(id=self._new_id({c.id for c in self._carts}))
        self._carts.append(cart)
        self._current_id = cart.id
        self._save()
        return cart

    def delete_cart(self, cart_id: str) -> None:
        cart = self.get_cart(cart_id)
        if len(self._carts) <= 1:
            raise ValidationError("At least one cart must remain.")
        self._carts = [c for c in self._carts if c.id != cart.id]
        if self._current_id == cart.id:
            self._current_id = self._carts[0].id
        self._save()

    def switch_cart(self, cart_id: str) -> Cart:
        cart = self.get_cart(cart_id)
        self._current_id = cart.id
        self._save()
        return cart

    # ---------- Lines ----------
    def add_item(self, product_id: str, quantity: int = 1) -> CartLine:
        if quantity <= 0:
            raise ValidationError("Qty must be >= 1.")
        product = self.catalog.get_product(product_id)
        if product.stock <= 0:
            raise InsufficientStockError(f"{product.name} is out of stock.")

        cart = self.current
        line = cart.line_for(product.id)
        new_qty = (line.quantity if line else 0) + int(quantity)
        if new_qty > product.stock:
            raise InsufficientStockError(f"Quantity exceeds stock ({product.stock} left).")

        if line:
            line.quantity = new_qty
            line.stock = product.stock
        else:
            line = CartLine(
                product_id=product.id,
                name=product.name,
                price=product.price,
                stock=product.stock,
                quantity=new_qty,
                unit=product.unit,
            )
            cart.lines.append(line)
        self._commit(cart)
        return line

    def change_quantity(self, product_id: str, delta: int) -> Optional[CartLine]:
        cart = self.current
        line = cart.line_for(product_id)
        if line is None:
            raise NotFoundError("Product is not in the cart.")
        new_qty = line.quantity + int(delta)
        if new_qty <= 0:
            return self._drop(cart, product_id)
        if delta > 0:
            live_stock = self.catalog.get_product(product_id).stock
            line.stock = live_stock
            new_qty = min(new_qty, live_stock)
            if new_qty <= 0:
                return self._drop(cart, product_id)
        line.quantity = new_qty
        self._commit(cart)
        return line

    def set_quantity(self, product_id: str, quantity: int) -> Optional[CartLine]:
        cart = self.current
        line = cart.line_for(product_id)
        if line is None:
            raise NotFoundError("Product is not in the cart.")
        if quantity <= 0:
            return self._drop(cart, product_id)
        live_stock = self.catalog.get_product(product_id).stock
        line.stock = live_stock
        clamped = min(int(quantity), live_stock)
        if clamped <= 0:
            return self._drop(cart, product_id)
        line.quantity = clamped
        self._commit(cart)
        return line

    def remove_item(self, product_id: str) -> None:
        self._drop(self.current, product_id)

    def prune_missing_products(self, existing_ids: Iterable[str]) -> int:
        """Drop lines whose product left the catalog; returns how many were removed."""
        existing = set(existing_ids)
        removed = 0
        for cart in self._carts:
            kept = [line for line in cart.lines if line.product_id in existing]
            if len(kept) != len(cart.lines):
                removed += len(cart.lines) - len(kept)
                cart.lines = kept
                self.pricing.apply(cart)
        if removed:
            log.info("cart_lines_pruned removed=%s", removed)
            self._save()
        return removed

    # ---------- Voucher / customer ----------
    def apply_voucher(self, code: str) -> Voucher:
        cart = self.current
        try:
            voucher = self.pricing.validate_voucher(cart, code)
        except VoucherRejectedError as exc:
            log.info("voucher_rejected cart=%s code=%s reason=%s", cart.id, code, exc.reason)
            cart.voucher_code = ""
            self._commit(cart)
            raise
        cart.voucher_code = voucher.code
        self._commit(cart)
        return voucher

    def clear_voucher(self) -> None:
        cart = self.current
        cart.voucher_code = ""
        self._commit(cart)

    def select_customer(self, customer_id: str, name: str = "", cart_id: Optional[str] = None) -> Cart:
        cart = self.get_cart(cart_id)
        cart.customer_id = customer_id
        cart.customer_name = name
        self._commit(cart)
        return cart

    def set_customer_name(self, name: str) -> None:
        cart = self.current
        cart.customer_name = name
        self._save()

    def clear_customer(self) -> None:
        cart = self.current
        cart.customer_id = ""
        cart.customer_name = ""
        self._commit(cart)

    # ---------- Pricing / checkout hooks ----------
    def reprice(self, cart_id: Optional[str] = None) -> PricingResult:
        cart = self.get_cart(cart_id)
        result = self.pricing.apply(cart)
        self._save()
        return result

    def reset_after_checkout(self, cart_id: str) -> Cart:
        cart = self.get_cart(cart_id)
        cart.lines = []
        cart.voucher_code = ""
        cart.promotion_discount = 0.0
        cart.voucher_discount = 0.0
        cart.discount = 0.0
        cart.applied_promotion_ids = []
        self._save()
        return cart

    # ---------- Internals ----------
    def _drop(self, cart: Cart, product_id: str) -> None:
        cart.lines = [line for line in cart.lines if line.product_id != product_id]
        self._commit(cart)
        return None

    def _commit(self, cart: Cart) -> None:
        self.pricing.apply(cart)
        self._save()

    def _save(self) -> None:
        self.state_file.save(CartState(carts=self._carts, current_cart_id=self._current_id))

    def _new_id(self, taken: set[str]) -> str:
        base = self.id_factory()
        candidate = base
        n = 1
        while candidate in taken:
            candidate = f"{base}-{n}"
            n += 1
        return candidate
