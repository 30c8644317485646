from .models import (
    Cart,
    CartLine,
    Customer,
    DebtHistoryEntry,
    Invoice,
    InvoiceItem,
    Product,
    Promotion,
    ShopProfile,
    Voucher,
)
from .errors import (
    CartCapacityWarning,
    InsufficientStockError,
    NotFoundError,
    PermissionDeniedError,
    PersistenceError,
    ValidationError,
    VoucherRejectedError,
)

__all__ = [
    "Cart",
    "CartLine",
    "Customer",
    "DebtHistoryEntry",
    "Invoice",
    "InvoiceItem",
    "Product",
    "Promotion",
    "ShopProfile",
    "Voucher",
    "CartCapacityWarning",
    "InsufficientStockError",
    "NotFoundError",
    "PermissionDeniedError",
    "PersistenceError",
    "ValidationError",
    "VoucherRejectedError",
]
