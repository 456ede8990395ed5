"""
Error taxonomy for the storefront.

Every error carries a short human-readable message and the HTTP status code
the API answers with. ``main.py`` renders them as ``{"detail": message}``.
"""


class StoreError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(StoreError):
    status_code = 400

    def __init__(self, message: str, field: str = None):
        super().__init__(message)
        self.field = field


class NotFound(StoreError):
    status_code = 404


class Forbidden(StoreError):
    status_code = 403


# ----------------------- Cart -----------------------
class StockError(StoreError):
    status_code = 409


class OutOfStock(StockError):
    pass


class StockExceeded(StockError):
    pass


# ----------------------- Orders -----------------------
class InvalidTransition(StoreError):
    status_code = 409


class ConcurrentUpdate(StoreError):
    status_code = 409


class PersistenceError(StoreError):
    status_code = 503


class OrderCreationFailed(PersistenceError):
    status_code = 500

    def __init__(self, message: str = "Failed to create order"):
        super().__init__(message)


# ----------------------- Payments -----------------------
class PaymentError(StoreError):
    status_code = 402


class InvalidPhone(PaymentError):
    status_code = 400

    def __init__(self, message: str = "Invalid phone number format"):
        super().__init__(message)


class AmountOutOfRange(PaymentError):
    status_code = 400


class PaymentRejected(PaymentError):
    pass


# ----------------------- Notifications -----------------------
class NotificationError(StoreError):
    status_code = 502
