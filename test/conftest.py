import sys
from datetime import date, datetime, timedelta
from pathlib import Path
from types import SimpleNamespace

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

TODAY = date(2025, 6, 15)
NOW = datetime(2025, 6, 15, 10, 30)


def day(offset: int = 0) -> str:
    return (TODAY + timedelta(days=offset)).isoformat()


def open_store(tmp_path: Path, name: str = "shop.db"):
    from shoppos.repositories.document_store import SqliteDocumentStore

    store = SqliteDocumentStore(tmp_path / name)
    store.init_db()
    return store


def offline_bank_qr(settings=None):
    from shoppos.services.bank_qr_service import BankQrService

    bank_qr = BankQrService(settings)
    bank_qr._banks = [{"name": "Vietcombank", "short_name": "VCB", "code": "VCB"}]
    return bank_qr


def build_pos(tmp_path: Path, store=None, max_carts: int = 5):
    from shoppos.config import PosSettings
    from shoppos.repositories.cart_state import CartStateFile
    from shoppos.services.cart_service import CartService
    from shoppos.services.catalog_service import CatalogService
    from shoppos.services.checkout_service import CheckoutService
    from shoppos.services.customer_service import CustomerService
    from shoppos.services.debt_service import DebtLedger
    from shoppos.services.eligibility import RedemptionIndex
    from shoppos.services.pricing_service import PricingService

    store = store or open_store(tmp_path)
    settings = PosSettings(max_carts=max_carts)
    redemptions = RedemptionIndex()
    redemptions.attach(store)
    catalog = CatalogService(store)
    customers = CustomerService(store, today=lambda: TODAY)
    pricing = PricingService(catalog, redemptions, today=lambda: TODAY)
    carts = CartService(pricing, catalog, CartStateFile(tmp_path / "carts.json"), max_carts=max_carts)
    debt = DebtLedger(store, now=lambda: NOW)
    bank_qr = offline_bank_qr(settings)
    checkout = CheckoutService(store, catalog, customers, carts, pricing, debt, bank_qr, settings, now=lambda: NOW)
    return SimpleNamespace(
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
    )
