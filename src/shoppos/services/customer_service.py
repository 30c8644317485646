from __future__ import annotations

from datetime import date
from typing import Callable, Iterable, Optional

from shoppos.domain.errors import NotFoundError, ValidationError
from shoppos.domain.models import Customer, Invoice, compact, money, parse_day
from shoppos.repositories.contracts import CUSTOMERS, INVOICES, EntityStore

_OPTIONAL_FIELDS = ("phone", "email", "address", "notes")
CUSTOMER_FIELDS = ("name", "active") + _OPTIONAL_FIELDS


def _clean(value: Optional[str]) -> Optional[str]:
    value = (value or "").strip()
    return value or None


def derive_purchase_stats(invoices: Iterable[Invoice], today: date) -> dict:
    """Purchase statistics re-derived from a customer's whole invoice history.

    Frequency is purchases per 30 days, measured from the first purchase up
    to today with a 30 day minimum window.
    """
    invoices = [inv for inv in invoices if inv.date]
    if not invoices:
        return {"total_spent": 0.0, "purchase_count": 0, "purchase_frequency": 0.0}

    days = sorted(parse_day(inv.date) for inv in invoices)
    window = max(30, (today - days[0]).days + 1)
    return {
        "total_spent": money(sum(inv.total for inv in invoices)),
        "purchase_count": len(invoices),
        "purchase_frequency": money(len(invoices) * 30 / window),
        "last_purchase_date": days[-1].isoformat(),
    }


class CustomerService:
    def __init__(self, store: EntityStore, today: Callable[[], date] = date.today):
        self.store = store
        self.today = today

    def create_customer(
        self,
        name: str,
        phone: Optional[str] = None,
        email: Optional[str] = None,
        address: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Customer:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Customer name is required.")

        doc = compact(
            {
                "name": name,
                "phone": _clean(phone),
                "email": _clean(email),
                "address": _clean(address),
                "notes": _clean(notes),
                "active": True,
                "total_spent": 0.0,
                "purchase_count": 0,
                "purchase_frequency": 0.0,
            }
        )
        customer_id = self.store.create(CUSTOMERS, doc)
        return Customer.from_doc(customer_id, doc)

    def update_customer(self, customer_id: str, **changes) -> Customer:
        """Edit contact details. An empty or None optional field is removed."""
        unknown = sorted(set(changes) - set(CUSTOMER_FIELDS))
        if unknown:
            raise ValidationError(f"Unknown field(s): {', '.join(unknown)}")

        updates: dict = {}
        cleared: list[str] = []
        if "name" in changes:
            name = (changes["name"] or "").strip()
            if not name:
                raise ValidationError("Customer name is required.")
            updates["name"] = name
        for key in _OPTIONAL_FIELDS:
            if key in changes:
                value = _clean(changes[key])
                if value is None:
                    cleared.append(key)
                else:
                    updates[key] = value
        if "active" in changes:
            updates["active"] = bool(changes["active"])

        merged = self.store.mutate(CUSTOMERS, customer_id, lambda _doc: compact(updates), unset=cleared)
        return Customer.from_doc(customer_id, merged)

    def deactivate_customer(self, customer_id: str) -> Customer:
        return self.update_customer(customer_id, active=False)

    def delete_customer(self, customer_id: str) -> None:
        if not self.store.delete(CUSTOMERS, customer_id):
            raise NotFoundError(f"Customer not found: {customer_id}")

    def get_customer(self, customer_id: str) -> Customer:
        doc = self.store.get(CUSTOMERS, customer_id)
        if doc is None:
            raise NotFoundError(f"Customer not found: {customer_id}")
        return Customer.from_doc(customer_id, doc)

    def list_customers(self, include_inactive: bool = False) -> list[Customer]:
        customers = [Customer.from_doc(cid, doc) for cid, doc in self.store.list(CUSTOMERS)]
        if not include_inactive:
            customers = [c for c in customers if c.active]
        return sorted(customers, key=lambda c: c.name.lower())

    def refresh_purchase_stats(self, customer_id: str) -> Customer:
        invoices = [
            Invoice.from_doc(iid, doc)
            for iid, doc in self.store.list(INVOICES, {"customer_id": customer_id})
        ]
        stats = derive_purchase_stats(invoices, self.today())
        merged = self.store.mutate(CUSTOMERS, customer_id, lambda _doc: stats)
        return Customer.from_doc(customer_id, merged)
