from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Optional


PAYMENT_METHODS = ("cash", "card", "transfer", "debt")
SETTLEMENT_METHODS = ("cash", "transfer")
PROMOTION_TYPES = ("percent", "fixed", "buy_get")
VOUCHER_TYPES = ("percent", "fixed")
DEBT_ACTIONS = ("init", "add", "pay")


def compact(value: Any) -> Any:
    """Drop None values recursively so documents never carry absent fields."""
    if isinstance(value, dict):
        return {k: compact(v) for k, v in value.items() if v is not None}
    if isinstance(value, (list, tuple)):
        return [compact(v) for v in value if v is not None]
    return value


def money(value: float) -> float:
    return round(float(value), 2)


def parse_day(value: str | date) -> date:
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _id_tuple(value) -> Optional[tuple[str, ...]]:
    if value is None:
        return None
    return tuple(str(v) for v in value)


def derive_status(start_date: str, end_date: str, used: int, quantity: int, today: date, *, zero_is_unlimited: bool) -> str:
    exhausted = used >= quantity if not zero_is_unlimited else (quantity > 0 and used >= quantity)
    if parse_day(end_date) < today or exhausted:
        return "expired"
    if parse_day(start_date) <= today:
        return "active"
    return "inactive"


@dataclass(frozen=True)
class Product:
    id: str
    name: str
    price: float
    stock: int
    unit: str = ""
    category: str = ""
    active: bool = True

    @classmethod
    def from_doc(cls, doc_id: str, doc: dict) -> "Product":
        return cls(
            id=str(doc_id),
            name=str(doc.get("name", "")),
            price=float(doc.get("price", 0)),
            stock=int(doc.get("stock", 0)),
            unit=str(doc.get("unit", "")),
            category=str(doc.get("category", "")),
            active=bool(doc.get("active", True)),
        )


@dataclass(frozen=True)
class Promotion:
    id: str
    name: str
    type: str
    value: float
    start_date: str
    end_date: str
    min_purchase: float = 0.0
    quantity: int = 0
    used: int = 0
    product_ids: Optional[tuple[str, ...]] = None
    customer_ids: Optional[tuple[str, ...]] = None
    description: str = ""

    def status_on(self, today: date) -> str:
        return derive_status(self.start_date, self.end_date, self.used, self.quantity, today, zero_is_unlimited=True)

    @property
    def status(self) -> str:
        return self.status_on(date.today())

    @property
    def has_quota_left(self) -> bool:
        return self.quantity <= 0 or self.used < self.quantity

    @classmethod
    def from_doc(cls, doc_id: str, doc: dict) -> "Promotion":
        return cls(
            id=str(doc_id),
            name=str(doc.get("name", "")),
            type=str(doc.get("type", "percent")),
            value=float(doc.get("value", 0)),
            start_date=str(doc["start_date"]),
            end_date=str(doc["end_date"]),
            min_purchase=float(doc.get("min_purchase", 0) or 0),
            quantity=int(doc.get("quantity", 0) or 0),
            used=int(doc.get("used", 0) or 0),
            product_ids=_id_tuple(doc.get("product_ids")),
            customer_ids=_id_tuple(doc.get("customer_ids")),
            description=str(doc.get("description", "")),
        )


@dataclass(frozen=True)
class Voucher:
    id: str
    code: str
    type: str
    value: float
    start_date: str
    end_date: str
    quantity: int
    used: int = 0
    min_purchase: float = 0.0
    max_discount: Optional[float] = None
    product_ids: Optional[tuple[str, ...]] = None
    customer_ids: Optional[tuple[str, ...]] = None

    def status_on(self, today: date) -> str:
        # vouchers have no unlimited mode: quantity is always a hard cap
        return derive_status(self.start_date, self.end_date, self.used, self.quantity, today, zero_is_unlimited=False)

    @property
    def status(self) -> str:
        return self.status_on(date.today())

    @property
    def has_quota_left(self) -> bool:
        return self.used < self.quantity

    def matches(self, code: str) -> bool:
        return bool(code) and self.code.strip().upper() == code.strip().upper()

    @classmethod
    def from_doc(cls, doc_id: str, doc: dict) -> "Voucher":
        max_discount = doc.get("max_discount")
        return cls(
            id=str(doc_id),
            code=str(doc.get("code", "")),
            type=str(doc.get("type", "percent")),
            value=float(doc.get("value", 0)),
            start_date=str(doc["start_date"]),
            end_date=str(doc["end_date"]),
            quantity=int(doc.get("quantity", 0) or 0),
            used=int(doc.get("used", 0) or 0),
            min_purchase=float(doc.get("min_purchase", 0) or 0),
            max_discount=float(max_discount) if max_discount is not None else None,
            product_ids=_id_tuple(doc.get("product_ids")),
            customer_ids=_id_tuple(doc.get("customer_ids")),
        )


@dataclass(frozen=True)
class InvoiceItem:
    product_id: str
    product_name: str
    quantity: int
    price: float
    unit: str = ""

    @property
    def line_total(self) -> float:
        return money(self.price * self.quantity)

    def to_doc(self) -> dict:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": int(self.quantity),
            "price": float(self.price),
            "unit": self.unit,
        }

    @classmethod
    def from_doc(cls, doc: dict) -> "InvoiceItem":
        return cls(
            product_id=str(doc["product_id"]),
            product_name=str(doc.get("product_name", "")),
            quantity=int(doc["quantity"]),
            price=float(doc["price"]),
            unit=str(doc.get("unit", "")),
        )


@dataclass(frozen=True)
class PromotionSnapshot:
    id: str
    name: str
    type: str
    value: float
    discount_amount: float

    def to_doc(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "value": float(self.value),
            "discount_amount": float(self.discount_amount),
        }

    @classmethod
    def from_doc(cls, doc: dict) -> "PromotionSnapshot":
        return cls(
            id=str(doc["id"]),
            name=str(doc.get("name", "")),
            type=str(doc["type"]),
            value=float(doc["value"]),
            discount_amount=float(doc["discount_amount"]),
        )


@dataclass(frozen=True)
class VoucherSnapshot:
    id: str
    code: str
    type: str
    value: float
    discount_amount: float

    def to_doc(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "type": self.type,
            "value": float(self.value),
            "discount_amount": float(self.discount_amount),
        }

    @classmethod
    def from_doc(cls, doc: dict) -> "VoucherSnapshot":
        return cls(
            id=str(doc.get("id", "")),
            code=str(doc["code"]),
            type=str(doc["type"]),
            value=float(doc["value"]),
            discount_amount=float(doc["discount_amount"]),
        )


@dataclass(frozen=True)
class BankAccount:
    id: str
    bank_name: str
    account_number: str
    account_holder: str
    bank_code: Optional[str] = None
    is_default: bool = False

    @classmethod
    def from_doc(cls, doc: dict) -> "BankAccount":
        return cls(
            id=str(doc["id"]),
            bank_name=str(doc.get("bank_name", "")),
            account_number=str(doc.get("account_number", "")).strip(),
            account_holder=str(doc.get("account_holder", "")),
            bank_code=(str(doc["bank_code"]) if doc.get("bank_code") else None),
            is_default=bool(doc.get("is_default", False)),
        )


@dataclass(frozen=True)
class BankAccountSnapshot:
    id: str
    bank_name: str
    account_number: str
    account_holder: str
    bank_code: str
    qr_description: Optional[str] = None

    def to_doc(self) -> dict:
        return compact(
            {
                "id": self.id,
                "bank_name": self.bank_name,
                "account_number": self.account_number,
                "account_holder": self.account_holder,
                "bank_code": self.bank_code,
                "qr_description": self.qr_description,
            }
        )

    @classmethod
    def from_doc(cls, doc: dict) -> "BankAccountSnapshot":
        return cls(
            id=str(doc["id"]),
            bank_name=str(doc.get("bank_name", "")),
            account_number=str(doc.get("account_number", "")),
            account_holder=str(doc.get("account_holder", "")),
            bank_code=str(doc.get("bank_code", "")),
            qr_description=doc.get("qr_description"),
        )


@dataclass(frozen=True)
class ShopProfile:
    name: str = "Shop"
    address: str = ""
    phone: str = ""
    bank_accounts: tuple[BankAccount, ...] = ()

    @property
    def default_bank_account(self) -> Optional[BankAccount]:
        for account in self.bank_accounts:
            if account.is_default:
                return account
        return self.bank_accounts[0] if self.bank_accounts else None

    @classmethod
    def from_doc(cls, doc: dict) -> "ShopProfile":
        return cls(
            name=str(doc.get("name") or "Shop"),
            address=str(doc.get("address", "")),
            phone=str(doc.get("phone", "")),
            bank_accounts=tuple(BankAccount.from_doc(b) for b in doc.get("bank_accounts") or []),
        )


@dataclass(frozen=True)
class Invoice:
    id: str
    invoice_code: str
    date: str
    time: str
    items: tuple[InvoiceItem, ...]
    subtotal: float
    discount: float
    total: float
    payment_method: str
    promotion_discount: float = 0.0
    voucher_discount: float = 0.0
    customer_id: Optional[str] = None
    customer_name: Optional[str] = None
    promotion_ids: tuple[str, ...] = ()
    promotion_snapshots: tuple[PromotionSnapshot, ...] = ()
    voucher_code: Optional[str] = None
    voucher_snapshot: Optional[VoucherSnapshot] = None
    bank_account_snapshot: Optional[BankAccountSnapshot] = None

    def to_doc(self) -> dict:
        doc: dict[str, Any] = {
            "invoice_code": self.invoice_code,
            "date": self.date,
            "time": self.time,
            "items": [it.to_doc() for it in self.items],
            "subtotal": float(self.subtotal),
            "discount": float(self.discount),
            "total": float(self.total),
            "payment_method": self.payment_method,
            "customer_id": self.customer_id or None,
            "customer_name": self.customer_name or None,
            "voucher_code": self.voucher_code or None,
        }
        if self.promotion_discount > 0:
            doc["promotion_discount"] = float(self.promotion_discount)
        if self.voucher_discount > 0:
            doc["voucher_discount"] = float(self.voucher_discount)
        if self.promotion_ids:
            doc["promotion_ids"] = list(self.promotion_ids)
        if self.promotion_snapshots:
            doc["promotion_snapshots"] = [s.to_doc() for s in self.promotion_snapshots]
        if self.voucher_snapshot is not None:
            doc["voucher_snapshot"] = self.voucher_snapshot.to_doc()
        if self.bank_account_snapshot is not None:
            doc["bank_account_snapshot"] = self.bank_account_snapshot.to_doc()
        return compact(doc)

    @classmethod
    def from_doc(cls, doc_id: str, doc: dict) -> "Invoice":
        voucher = doc.get("voucher_snapshot")
        bank = doc.get("bank_account_snapshot")
        return cls(
            id=str(doc_id),
            invoice_code=str(doc.get("invoice_code", "")),
            date=str(doc.get("date", "")),
            time=str(doc.get("time", "")),
            items=tuple(InvoiceItem.from_doc(it) for it in doc.get("items") or []),
            subtotal=float(doc.get("subtotal", 0)),
            discount=float(doc.get("discount", 0)),
            total=float(doc.get("total", 0)),
            payment_method=str(doc.get("payment_method", "cash")),
            promotion_discount=float(doc.get("promotion_discount", 0) or 0),
            voucher_discount=float(doc.get("voucher_discount", 0) or 0),
            customer_id=doc.get("customer_id"),
            customer_name=doc.get("customer_name"),
            promotion_ids=tuple(str(p) for p in doc.get("promotion_ids") or []),
            promotion_snapshots=tuple(PromotionSnapshot.from_doc(s) for s in doc.get("promotion_snapshots") or []),
            voucher_code=doc.get("voucher_code"),
            voucher_snapshot=VoucherSnapshot.from_doc(voucher) if voucher else None,
            bank_account_snapshot=BankAccountSnapshot.from_doc(bank) if bank else None,
        )


@dataclass(frozen=True)
class DebtHistoryEntry:
    id: str
    new_amount: float
    change_amount: float
    action: str
    timestamp: str
    previous_amount: Optional[float] = None
    note: Optional[str] = None
    invoice_ids: tuple[str, ...] = ()

    def to_doc(self) -> dict:
        return compact(
            {
                "id": self.id,
                "previous_amount": self.previous_amount,
                "new_amount": float(self.new_amount),
                "change_amount": float(self.change_amount),
                "action": self.action,
                "note": self.note or None,
                "timestamp": self.timestamp,
                "invoice_ids": list(self.invoice_ids) or None,
            }
        )

    @classmethod
    def from_doc(cls, doc: dict) -> "DebtHistoryEntry":
        previous = doc.get("previous_amount")
        return cls(
            id=str(doc["id"]),
            new_amount=float(doc["new_amount"]),
            change_amount=float(doc["change_amount"]),
            action=str(doc["action"]),
            timestamp=str(doc.get("timestamp", "")),
            previous_amount=float(previous) if previous is not None else None,
            note=doc.get("note") or None,
            invoice_ids=tuple(str(i) for i in doc.get("invoice_ids") or []),
        )


@dataclass(frozen=True)
class Customer:
    id: str
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    notes: Optional[str] = None
    active: bool = True
    debt_amount: Optional[float] = None
    debt_history: tuple[DebtHistoryEntry, ...] = ()
    debt_invoice_ids: tuple[str, ...] = ()
    total_spent: float = 0.0
    purchase_count: int = 0
    purchase_frequency: float = 0.0
    last_purchase_date: Optional[str] = None

    @property
    def balance(self) -> float:
        return float(self.debt_amount or 0.0)

    @classmethod
    def from_doc(cls, doc_id: str, doc: dict) -> "Customer":
        debt = doc.get("debt_amount")
        return cls(
            id=str(doc_id),
            name=str(doc.get("name", "")),
            phone=doc.get("phone"),
            email=doc.get("email"),
            address=doc.get("address"),
            notes=doc.get("notes"),
            active=bool(doc.get("active", True)),
            debt_amount=float(debt) if debt is not None else None,
            debt_history=tuple(DebtHistoryEntry.from_doc(e) for e in doc.get("debt_history") or []),
            debt_invoice_ids=tuple(str(i) for i in doc.get("debt_invoice_ids") or []),
            total_spent=float(doc.get("total_spent", 0) or 0),
            purchase_count=int(doc.get("purchase_count", 0) or 0),
            purchase_frequency=float(doc.get("purchase_frequency", 0) or 0),
            last_purchase_date=doc.get("last_purchase_date"),
        )


@dataclass
class CartLine:
    product_id: str
    name: str
    price: float
    stock: int
    quantity: int
    unit: str = ""

    @property
    def line_total(self) -> float:
        return float(self.price) * int(self.quantity)

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "name": self.name,
            "price": float(self.price),
            "stock": int(self.stock),
            "quantity": int(self.quantity),
            "unit": self.unit,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CartLine":
        return cls(
            product_id=str(data["product_id"]),
            name=str(data.get("name", "")),
            price=float(data["price"]),
            stock=int(data.get("stock", 0)),
            quantity=int(data["quantity"]),
            unit=str(data.get("unit", "")),
        )


@dataclass
class Cart:
    id: str
    lines: list[CartLine] = field(default_factory=list)
    voucher_code: str = ""
    customer_id: str = ""
    customer_name: str = ""
    promotion_discount: float = 0.0
    voucher_discount: float = 0.0
    discount: float = 0.0
    applied_promotion_ids: list[str] = field(default_factory=list)

    @property
    def subtotal(self) -> float:
        return sum(line.line_total for line in self.lines)

    @property
    def total(self) -> float:
        return self.subtotal - self.discount

    @property
    def product_ids(self) -> set[str]:
        return {line.product_id for line in self.lines}

    def line_for(self, product_id: str) -> Optional[CartLine]:
        for line in self.lines:
            if line.product_id == product_id:
                return line
        return None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "lines": [line.to_dict() for line in self.lines],
            "voucher_code": self.voucher_code,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "promotion_discount": float(self.promotion_discount),
            "voucher_discount": float(self.voucher_discount),
            "discount": float(self.discount),
            "applied_promotion_ids": list(self.applied_promotion_ids),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Cart":
        return cls(
            id=str(data["id"]),
            lines=[CartLine.from_dict(line) for line in data.get("lines") or []],
            voucher_code=str(data.get("voucher_code", "")),
            customer_id=str(data.get("customer_id", "")),
            customer_name=str(data.get("customer_name", "")),
            promotion_discount=float(data.get("promotion_discount", 0)),
            voucher_discount=float(data.get("voucher_discount", 0)),
            discount=float(data.get("discount", 0)),
            applied_promotion_ids=[str(p) for p in data.get("applied_promotion_ids") or []],
        )
