from .bank_qr_service import BankQrService
from .cart_service import CartService
from .catalog_service import CatalogService
from .checkout_service import CheckoutService
from .customer_service import CustomerService
from .debt_service import DebtLedger
from .pricing_service import PricingService
from .statement_service import StatementService

__all__ = [
    "BankQrService",
    "CartService",
    "CatalogService",
    "CheckoutService",
    "CustomerService",
    "DebtLedger",
    "PricingService",
    "StatementService",
]
