"""Customer debt ledger.

Every movement is one read-modify-write of the customer document: balance,
history and the outstanding invoice list change together or not at all, and
exactly one history entry is appended per movement.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, Optional

from shoppos.domain.errors import NotFoundError, ValidationError
from shoppos.domain.models import (
    SETTLEMENT_METHODS,
    Customer,
    DebtHistoryEntry,
    Invoice,
    money,
)
from shoppos.repositories.contracts import CUSTOMERS, INVOICES, EntityStore

log = logging.getLogger("shoppos.debt")


@dataclass(frozen=True)
class DebtMovement:
    customer: Customer
    entry: DebtHistoryEntry
    warnings: list[str] = field(default_factory=list)


def _sanitize_history(raw: Iterable[dict]) -> list[dict]:
    # re-serialize through the model so stray keys and None values never survive a rewrite
    return [DebtHistoryEntry.from_doc(doc).to_doc() for doc in raw or []]


def _positive_amount(amount: float) -> float:
    try:
        value = money(amount)
    except (TypeError, ValueError) as exc:
        raise ValidationError("Amount must be a number.") from exc
    if value <= 0:
        raise ValidationError("Amount must be > 0.")
    return value


class DebtLedger:
    def __init__(self, store: EntityStore, now: Callable[[], datetime] = datetime.now):
        self.store = store
        self.now = now

    # ---------- Movements ----------
    def add_debt(
        self,
        customer_id: str,
        amount: float,
        note: Optional[str] = None,
        invoice_ids: Iterable[str] = (),
    ) -> DebtMovement:
        amount = _positive_amount(amount)
        linked = [str(i) for i in invoice_ids]

        def apply(doc: dict) -> dict:
            previous = doc.get("debt_amount")
            action = "init" if previous is None else "add"
            new_amount = money((previous or 0.0) + amount)
            entry = self._entry(previous, new_amount, action, note, linked)
            outstanding = list(doc.get("debt_invoice_ids") or [])
            outstanding += [i for i in linked if i not in outstanding]
            return {
                "debt_amount": new_amount,
                "debt_history": _sanitize_history(doc.get("debt_history")) + [entry.to_doc()],
                "debt_invoice_ids": outstanding,
            }

        movement = self._commit(customer_id, apply)
        log.info(
            "debt_added customer=%s action=%s amount=%.2f balance=%.2f",
            customer_id, movement.entry.action, amount, movement.entry.new_amount,
        )
        return movement

    def pay_debt(self, customer_id: str, amount: float, note: Optional[str] = None) -> DebtMovement:
        amount = _positive_amount(amount)

        def apply(doc: dict) -> dict:
            previous = doc.get("debt_amount")
            new_amount = self._paid_balance(previous, amount)
            entry = self._entry(previous, new_amount, "pay", note, [])
            return {
                "debt_amount": new_amount,
                "debt_history": _sanitize_history(doc.get("debt_history")) + [entry.to_doc()],
            }

        movement = self._commit(customer_id, apply)
        log.info("debt_paid customer=%s amount=%.2f balance=%.2f", customer_id, amount, movement.entry.new_amount)
        return movement

    def quote_invoices(self, customer_id: str, invoice_ids: Iterable[str]) -> float:
        """Amount a payment against these outstanding invoices must cover."""
        customer = self._customer(customer_id)
        invoices = self._outstanding(customer, invoice_ids)
        return money(sum(inv.total for inv in invoices))

    def pay_invoices(
        self,
        customer_id: str,
        invoice_ids: Iterable[str],
        settlement_method: str = "cash",
        note: Optional[str] = None,
    ) -> DebtMovement:
        if settlement_method not in SETTLEMENT_METHODS:
            raise ValidationError(f"Settlement method must be one of: {', '.join(SETTLEMENT_METHODS)}")
        ids = [str(i) for i in invoice_ids]
        if not ids:
            raise ValidationError("Select at least one invoice to pay.")

        customer = self._customer(customer_id)
        amount = money(sum(inv.total for inv in self._outstanding(customer, ids)))

        def apply(doc: dict) -> dict:
            outstanding = list(doc.get("debt_invoice_ids") or [])
            missing = [i for i in ids if i not in outstanding]
            if missing:
                raise ValidationError(f"Invoices are no longer outstanding: {', '.join(missing)}")
            previous = doc.get("debt_amount")
            new_amount = self._paid_balance(previous, amount)
            entry = self._entry(previous, new_amount, "pay", note, ids)
            return {
                "debt_amount": new_amount,
                "debt_history": _sanitize_history(doc.get("debt_history")) + [entry.to_doc()],
                "debt_invoice_ids": [i for i in outstanding if i not in ids],
            }

        movement = self._commit(customer_id, apply)

        # purchase statistics already counted these invoices when they were created
        warnings: list[str] = []
        for invoice_id in ids:
            try:
                self.store.update(INVOICES, invoice_id, {"payment_method": settlement_method})
            except Exception as exc:
                log.warning("invoice_settle_failed invoice=%s error=%s", invoice_id, exc)
                warnings.append(f"Invoice {invoice_id} could not be marked as {settlement_method}: {exc}")

        log.info(
            "debt_invoices_paid customer=%s invoices=%s amount=%.2f balance=%.2f",
            customer_id, ",".join(ids), amount, movement.entry.new_amount,
        )
        return DebtMovement(customer=movement.customer, entry=movement.entry, warnings=warnings)

    def settle_invoice(self, invoice_id: str, settlement_method: str = "cash", note: Optional[str] = None) -> DebtMovement:
        doc = self.store.get(INVOICES, invoice_id)
        if doc is None:
            raise NotFoundError(f"Invoice not found: {invoice_id}")
        invoice = Invoice.from_doc(invoice_id, doc)
        if invoice.payment_method != "debt" or not invoice.customer_id:
            raise ValidationError(f"Invoice {invoice.invoice_code or invoice_id} is not a debt invoice.")
        return self.pay_invoices(
            invoice.customer_id,
            [invoice_id],
            settlement_method,
            note or f"Settled invoice {invoice.invoice_code}",
        )

    # ---------- Reads ----------
    def history(self, customer_id: str) -> list[DebtHistoryEntry]:
        return list(self._customer(customer_id).debt_history)

    def outstanding_invoices(self, customer_id: str) -> list[Invoice]:
        customer = self._customer(customer_id)
        return self._outstanding(customer, customer.debt_invoice_ids)

    # ---------- Internals ----------
    def _paid_balance(self, previous: Optional[float], amount: float) -> float:
        balance = float(previous or 0.0)
        if balance == 0:
            raise ValidationError("Customer has no debt to pay.")
        if balance > 0:
            if amount > balance:
                raise ValidationError(f"Payment {amount:,.2f} exceeds the current debt {balance:,.2f}.")
            return money(balance - amount)
        # negative balance: the shop owes the customer, repayment moves it up toward zero
        if amount > -balance:
            raise ValidationError(f"Payment {amount:,.2f} exceeds the amount owed to the customer {-balance:,.2f}.")
        return money(balance + amount)

    def _entry(
        self,
        previous: Optional[float],
        new_amount: float,
        action: str,
        note: Optional[str],
        invoice_ids: list[str],
    ) -> DebtHistoryEntry:
        change = money(new_amount - (previous or 0.0))
        return DebtHistoryEntry(
            id=uuid.uuid4().hex,
            previous_amount=money(previous) if previous is not None else None,
            new_amount=new_amount,
            change_amount=change,
            action=action,
            note=(note or "").strip() or None,
            timestamp=self.now().isoformat(timespec="seconds"),
            invoice_ids=tuple(invoice_ids),
        )

    def _commit(self, customer_id: str, apply: Callable[[dict], dict]) -> DebtMovement:
        merged = self.store.mutate(CUSTOMERS, customer_id, apply)
        customer = Customer.from_doc(customer_id, merged)
        return DebtMovement(customer=customer, entry=customer.debt_history[-1])

    def _customer(self, customer_id: str) -> Customer:
        doc = self.store.get(CUSTOMERS, customer_id)
        if doc is None:
            raise NotFoundError(f"Customer not found: {customer_id}")
        return Customer.from_doc(customer_id, doc)

    def _outstanding(self, customer: Customer, invoice_ids: Iterable[str]) -> list[Invoice]:
        out: list[Invoice] = []
        for invoice_id in invoice_ids:
            invoice_id = str(invoice_id)
            if invoice_id not in customer.debt_invoice_ids:
                raise ValidationError(f"Invoice {invoice_id} is not an outstanding debt of {customer.name}.")
            doc = self.store.get(INVOICES, invoice_id)
            if doc is None:
                raise NotFoundError(f"Invoice not found: {invoice_id}")
            out.append(Invoice.from_doc(invoice_id, doc))
        return out
