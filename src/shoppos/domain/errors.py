class AppError(Exception):
    """Base app error."""


class ValidationError(AppError):
    pass


class NotFoundError(AppError):
    pass


class InsufficientStockError(AppError):
    pass


class CartCapacityWarning(AppError):
    """User-facing warning; the cart set is left untouched."""


class VoucherRejectedError(ValidationError):
    def __init__(self, reason: str, message: str):
        super().__init__(message)
        self.reason = reason


class PersistenceError(AppError):
    pass


class PermissionDeniedError(PersistenceError):
    pass
