from __future__ import annotations

from typing import Callable, Iterable, Optional

from shoppos.domain.errors import NotFoundError, ValidationError
from shoppos.domain.models import (
    PROMOTION_TYPES,
    VOUCHER_TYPES,
    Invoice,
    Product,
    Promotion,
    ShopProfile,
    Voucher,
    compact,
    parse_day,
)
from shoppos.repositories.contracts import (
    INVOICES,
    PRODUCTS,
    PROMOTIONS,
    SHOP,
    SHOP_PROFILE_ID,
    VOUCHERS,
    EntityStore,
)

PRODUCT_FIELDS = ("name", "price", "stock", "unit", "category")
PROMOTION_FIELDS = (
    "name", "type", "value", "start_date", "end_date",
    "min_purchase", "quantity", "product_ids", "customer_ids", "description",
)
VOUCHER_FIELDS = (
    "code", "type", "value", "quantity", "start_date", "end_date",
    "min_purchase", "max_discount", "product_ids", "customer_ids",
)

# fields an edit may remove by passing None; an absent allow-list means "everyone"
_PROMOTION_CLEARABLE = ("product_ids", "customer_ids", "description")
_VOUCHER_CLEARABLE = ("max_discount", "product_ids", "customer_ids")

_FLOAT_FIELDS = ("price", "value", "min_purchase", "max_discount")
_INT_FIELDS = ("stock", "quantity")
_TEXT_FIELDS = ("name", "code", "unit", "category", "description")


def _validate_window(start_date: str, end_date: str) -> None:
    try:
        start = parse_day(start_date)
        end = parse_day(end_date)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Dates must be YYYY-MM-DD: {exc}") from exc
    if end < start:
        raise ValidationError("End date must be on or after start date.")


def _id_list(ids: Optional[Iterable[str]]) -> Optional[list[str]]:
    return None if ids is None else [str(i) for i in ids]


def _normalize(fields: dict) -> dict:
    out = {}
    for key, value in fields.items():
        if value is None:
            out[key] = None
        elif key in _FLOAT_FIELDS:
            out[key] = float(value)
        elif key in _INT_FIELDS:
            out[key] = int(value)
        elif key in _TEXT_FIELDS:
            out[key] = str(value).strip()
        elif key in ("product_ids", "customer_ids"):
            out[key] = _id_list(value)
        else:
            out[key] = value
    return out


def _split_changes(changes: dict, allowed: tuple, clearable: tuple = ()) -> tuple[dict, list[str]]:
    """Separate an edit into fields to write and fields to remove."""
    unknown = sorted(set(changes) - set(allowed))
    if unknown:
        raise ValidationError(f"Unknown field(s): {', '.join(unknown)}")
    changes = _normalize(changes)
    cleared = [k for k, v in changes.items() if v is None]
    locked = [k for k in cleared if k not in clearable]
    if locked:
        raise ValidationError(f"Field(s) cannot be cleared: {', '.join(locked)}")
    return compact({k: v for k, v in changes.items() if v is not None}), cleared


def _check_product(doc: dict) -> None:
    if not doc.get("name"):
        raise ValidationError("Name is required.")
    if doc.get("price", 0) <= 0:
        raise ValidationError("Price must be > 0.")
    if doc.get("stock", 0) < 0:
        raise ValidationError("Stock must be >= 0.")


def _check_promotion(doc: dict) -> None:
    type = doc.get("type")
    value = doc.get("value", 0)
    if type not in PROMOTION_TYPES:
        raise ValidationError(f"Unknown promotion type: {type}")
    if value < 0 or (type == "percent" and value > 100):
        raise ValidationError("Promotion value out of range.")
    if doc.get("min_purchase", 0) < 0 or doc.get("quantity", 0) < 0:
        raise ValidationError("Minimum purchase and quantity must be >= 0.")
    _validate_window(doc.get("start_date"), doc.get("end_date"))


def _check_voucher(doc: dict) -> None:
    type = doc.get("type")
    value = doc.get("value", 0)
    if not doc.get("code"):
        raise ValidationError("Voucher code is required.")
    if type not in VOUCHER_TYPES:
        raise ValidationError(f"Unknown voucher type: {type}")
    if value <= 0 or (type == "percent" and value > 100):
        raise ValidationError("Voucher value out of range.")
    if doc.get("max_discount") is not None and type != "percent":
        raise ValidationError("Max discount only applies to percent vouchers.")
    if doc.get("quantity", 0) < 0 or doc.get("min_purchase", 0) < 0:
        raise ValidationError("Minimum purchase and quantity must be >= 0.")
    _validate_window(doc.get("start_date"), doc.get("end_date"))


class CatalogService:
    def __init__(self, store: EntityStore):
        self.store = store

    def _edit(
        self,
        collection: str,
        doc_id: str,
        changes: dict,
        allowed: tuple,
        check: Callable[[dict], None],
        clearable: tuple = (),
    ) -> dict:
        updates, cleared = _split_changes(changes, allowed, clearable)

        def apply(doc: dict) -> dict:
            merged = {**doc, **updates}
            for key in cleared:
                merged.pop(key, None)
            check(merged)
            return updates

        return self.store.mutate(collection, doc_id, apply, unset=cleared)

    def _remove(self, collection: str, doc_id: str, label: str) -> None:
        if not self.store.delete(collection, doc_id):
            raise NotFoundError(f"{label} not found.")

    # ---------- Products ----------
    def list_products(self) -> list[Product]:
        products = [Product.from_doc(pid, doc) for pid, doc in self.store.list(PRODUCTS)]
        return sorted((p for p in products if p.active), key=lambda p: p.name)

    def get_product(self, product_id: str) -> Product:
        doc = self.store.get(PRODUCTS, product_id)
        if doc is None:
            raise NotFoundError("Product not found.")
        product = Product.from_doc(product_id, doc)
        if not product.active:
            raise NotFoundError("Product not found.")
        return product

    def add_product(self, name: str, price: float, stock: int, unit: str = "", category: str = "") -> str:
        doc = _normalize({"name": name or "", "price": price, "stock": stock, "unit": unit, "category": category})
        _check_product(doc)
        doc["active"] = True
        return self.store.create(PRODUCTS, doc)

    def update_product(self, product_id: str, **changes) -> Product:
        merged = self._edit(PRODUCTS, product_id, changes, PRODUCT_FIELDS, _check_product)
        return Product.from_doc(product_id, merged)

    def delete_product(self, product_id: str) -> None:
        # soft delete; list_products and get_product skip inactive rows
        self.get_product(product_id)
        self.store.update(PRODUCTS, product_id, {"active": False})

    # ---------- Promotions ----------
    def list_promotions(self) -> list[Promotion]:
        return [Promotion.from_doc(pid, doc) for pid, doc in self.store.list(PROMOTIONS)]

    def get_promotion(self, promotion_id: str) -> Promotion:
        doc = self.store.get(PROMOTIONS, promotion_id)
        if doc is None:
            raise NotFoundError("Promotion not found.")
        return Promotion.from_doc(promotion_id, doc)

    def add_promotion(
        self,
        name: str,
        type: str,
        value: float,
        start_date: str,
        end_date: str,
        min_purchase: float = 0.0,
        quantity: int = 0,
        product_ids: Optional[Iterable[str]] = None,
        customer_ids: Optional[Iterable[str]] = None,
        description: str = "",
    ) -> str:
        doc = _normalize(
            {
                "name": name or "",
                "type": type,
                "value": value,
                "start_date": start_date,
                "end_date": end_date,
                "min_purchase": min_purchase,
                "quantity": quantity,
                "product_ids": product_ids,
                "customer_ids": customer_ids,
                "description": description,
            }
        )
        _check_promotion(doc)
        doc["used"] = 0
        return self.store.create(PROMOTIONS, compact(doc))

    def update_promotion(self, promotion_id: str, **changes) -> Promotion:
        """Edit a promotion in place.

        Passing None for `product_ids`, `customer_ids` or `description` removes
        the field. The usage counter is not editable here, and status is always
        derived from the stored dates and quota, so an edited window or quota
        shows up in `status` immediately.
        """
        merged = self._edit(
            PROMOTIONS, promotion_id, changes, PROMOTION_FIELDS, _check_promotion, _PROMOTION_CLEARABLE
        )
        return Promotion.from_doc(promotion_id, merged)

    def delete_promotion(self, promotion_id: str) -> None:
        self._remove(PROMOTIONS, promotion_id, "Promotion")

    def use_promotion(self, promotion_id: str) -> None:
        def bump(doc: dict) -> dict:
            quantity = int(doc.get("quantity", 0) or 0)
            used = int(doc.get("used", 0) or 0)
            if quantity > 0 and used >= quantity:
                raise ValidationError("Promotion has no uses left.")
            return {"used": used + 1}

        self.store.mutate(PROMOTIONS, promotion_id, bump)

    # ---------- Vouchers ----------
    def list_vouchers(self) -> list[Voucher]:
        return [Voucher.from_doc(vid, doc) for vid, doc in self.store.list(VOUCHERS)]

    def find_voucher(self, code: str) -> Optional[Voucher]:
        if not (code or "").strip():
            return None
        for voucher in self.list_vouchers():
            if voucher.matches(code):
                return voucher
        return None

    def _ensure_code_free(self, code: str, voucher_id: Optional[str] = None) -> None:
        existing = self.find_voucher(code)
        if existing is not None and existing.id != voucher_id:
            raise ValidationError(f"Voucher code already exists: {code.strip().upper()}")

    def add_voucher(
        self,
        code: str,
        type: str,
        value: float,
        quantity: int,
        start_date: str,
        end_date: str,
        min_purchase: float = 0.0,
        max_discount: Optional[float] = None,
        product_ids: Optional[Iterable[str]] = None,
        customer_ids: Optional[Iterable[str]] = None,
    ) -> str:
        doc = _normalize(
            {
                "code": code or "",
                "type": type,
                "value": value,
                "quantity": quantity,
                "start_date": start_date,
                "end_date": end_date,
                "min_purchase": min_purchase,
                "max_discount": max_discount,
                "product_ids": product_ids,
                "customer_ids": customer_ids,
            }
        )
        _check_voucher(doc)
        self._ensure_code_free(doc["code"])
        doc["used"] = 0
        return self.store.create(VOUCHERS, compact(doc))

    def update_voucher(self, voucher_id: str, **changes) -> Voucher:
        """Edit a voucher; a new code must not collide with another voucher in any case."""
        if changes.get("code") is not None:
            self._ensure_code_free(str(changes["code"]), voucher_id)
        merged = self._edit(VOUCHERS, voucher_id, changes, VOUCHER_FIELDS, _check_voucher, _VOUCHER_CLEARABLE)
        return Voucher.from_doc(voucher_id, merged)

    def delete_voucher(self, voucher_id: str) -> None:
        self._remove(VOUCHERS, voucher_id, "Voucher")

    def use_voucher(self, voucher_id: str) -> None:
        def bump(doc: dict) -> dict:
            used = int(doc.get("used", 0) or 0)
            if used >= int(doc.get("quantity", 0) or 0):
                raise ValidationError("Voucher has no uses left.")
            return {"used": used + 1}

        self.store.mutate(VOUCHERS, voucher_id, bump)

    # ---------- Invoices / shop ----------
    def get_invoice(self, invoice_id: str) -> Invoice:
        doc = self.store.get(INVOICES, invoice_id)
        if doc is None:
            raise NotFoundError(f"Invoice not found: {invoice_id}")
        return Invoice.from_doc(invoice_id, doc)

    def list_invoices(self, customer_id: Optional[str] = None) -> list[Invoice]:
        where = {"customer_id": customer_id} if customer_id else None
        return [Invoice.from_doc(iid, doc) for iid, doc in self.store.list(INVOICES, where)]

    def shop_profile(self) -> ShopProfile:
        doc = self.store.get(SHOP, SHOP_PROFILE_ID)
        return ShopProfile.from_doc(doc) if doc else ShopProfile()
