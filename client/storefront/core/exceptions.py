"""Error taxonomy surfaced to the presentation layer.

Every error carries a human-readable ``message`` that a UI can show as-is.
"""

from __future__ import annotations


class StorefrontError(Exception):
    default_message = "Something went wrong"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class AuthError(StorefrontError):
    INVALID_CREDENTIALS = "invalid_credentials"
    CONFLICT = "conflict"
    VALIDATION_ERROR = "validation_error"

    default_message = "Authentication failed"

    def __init__(self, reason: str, message: str | None = None) -> None:
        self.reason = reason
        super().__init__(message)


class SessionError(StorefrontError):
    UNAUTHORIZED = "unauthorized"
    EXPIRED = "expired"

    default_message = "Session expired. Please sign in again."

    def __init__(self, reason: str = EXPIRED, message: str | None = None) -> None:
        self.reason = reason
        super().__init__(message)


class Unauthorized(SessionError):
    def __init__(self, message: str | None = None) -> None:
        super().__init__(SessionError.UNAUTHORIZED, message)


class NetworkError(StorefrontError):
    default_message = "Could not reach the store. Check your connection and try again."


class ServerError(StorefrontError):
    default_message = "The store could not complete the request"

    def __init__(self, message: str | None = None, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class AlreadyExists(StorefrontError):
    default_message = "Already in wishlist"


class CartError(StorefrontError):
    default_message = "Cart update failed"


class QuantityExceeded(CartError):
    def __init__(self, limit: int, message: str | None = None) -> None:
        self.limit = limit
        super().__init__(message or f"Maximum quantity is {limit} items per product")


class InvalidQuantity(CartError):
    default_message = "Quantity must be at least 1"


class LineNotFound(CartError):
    default_message = "Cart item not found"


class EmptyCart(CartError):
    default_message = "Your cart is empty"
