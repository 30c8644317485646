from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from shoppos.config import PosSettings
from shoppos.repositories.cart_state import CartStateFile
from shoppos.repositories.contracts import Unsubscribe
from shoppos.repositories.document_store import SqliteDocumentStore
from shoppos.services.bank_qr_service import BankQrService
from shoppos.services.cart_service import CartService
from shoppos.services.catalog_service import CatalogService
from shoppos.services.checkout_service import CheckoutService
from shoppos.services.customer_service import CustomerService
from shoppos.services.debt_service import DebtLedger
from shoppos.services.eligibility import RedemptionIndex
from shoppos.services.pricing_service import PricingService
from shoppos.services.statement_service import StatementService


@dataclass(frozen=True)
class AppContainer:
    store: SqliteDocumentStore
    settings: PosSettings
    redemptions: RedemptionIndex
    catalog: CatalogService
    customers: CustomerService
    pricing: PricingService
    carts: CartService
    debt: DebtLedger
    bank_qr: BankQrService
    checkout: CheckoutService
    statements: StatementService
    unsubscribe: Unsubscribe


def build_container(
    db_path: Path | str,
    carts_path: Path | str,
    settings: Optional[PosSettings] = None,
) -> AppContainer:
    settings = settings or PosSettings()
    store = SqliteDocumentStore(db_path)
    store.init_db()

    redemptions = RedemptionIndex()
    unsubscribe = redemptions.attach(store)

    catalog = CatalogService(store)
    customers = CustomerService(store)
    pricing = PricingService(catalog, redemptions)
    carts = CartService(pricing, catalog, CartStateFile(carts_path), max_carts=settings.max_carts)
    debt = DebtLedger(store)
    bank_qr = BankQrService(settings)
    checkout = CheckoutService(store, catalog, customers, carts, pricing, debt, bank_qr, settings)
    statements = StatementService(debt, customers)

    return AppContainer(
        store=store,
        settings=settings,
        redemptions=redemptions,
        catalog=catalog,
        customers=customers,
        pricing=pricing,
        carts=carts,
        debt=debt,
        bank_qr=bank_qr,
        checkout=checkout,
        statements=statements,
        unsubscribe=unsubscribe,
    )
