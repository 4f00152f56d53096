"""Exceptions raised by the checkout and profile controllers.

Every error carries a stable ``code`` plus the title/message pair shown to
the shopper. ``main.py`` maps each class to an HTTP status.
"""
from typing import Optional


class ShopError(Exception):
    """Base exception for all shop errors."""

    status_code = 400
    code = "shop_error"

    def __init__(self, title: str, message: str, code: Optional[str] = None):
        self.title = title
        self.message = message
        if code:
            self.code = code
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"error": self.code, "title": self.title, "detail": self.message}


class PreconditionError(ShopError):
    """Raised when the shopper has not met a requirement of the action."""

    status_code = 400
    code = "precondition_failed"


class NotFoundError(ShopError):
    """Raised when a document, address or order does not exist."""

    status_code = 404
    code = "not_found"


class MissingDataError(ShopError):
    """Raised when a document exists but lacks a required field."""

    status_code = 422
    code = "missing_data"


class StorageError(ShopError):
    """Raised when the database or object storage call fails."""

    status_code = 502
    code = "storage_error"

    def __init__(self, message: str = "There was an issue reaching the database. Please try again."):
        super().__init__("Error", message)


class PaymentLinkError(ShopError):
    """Raised when the payment provider cannot create a checkout link."""

    status_code = 502
    code = "payment_error"

    def __init__(self, message: str):
        super().__init__("Payment Error", message)


class AuthError(ShopError):
    status_code = 401
    code = "unauthorized"

    def __init__(self, message: str = "Please sign in again."):
        super().__init__("Unauthorized", message)
