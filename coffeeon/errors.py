"""Exceptions raised by the shop services and rendered by the HTTP layer."""


class ShopError(Exception):
    """Base exception for all coffeeon errors."""

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class Unauthenticated(ShopError):
    status_code = 401
    default_message = "Not authenticated"


class Forbidden(ShopError):
    status_code = 403
    default_message = "Forbidden"


class NotFound(ShopError):
    status_code = 404
    default_message = "Not found"


class Conflict(ShopError):
    status_code = 409
    default_message = "Conflict"


class ValidationFailed(ShopError):
    status_code = 400
    default_message = "Invalid request"


class EmptyOrder(ValidationFailed):
    default_message = "An order must contain at least 1 item."


class InvalidLineItem(ValidationFailed):
    """Raised when a line item lacks a product, has a non-positive quantity or a negative price."""

    default_message = "Invalid fields in one of the items."

    def __init__(self, item=None, reason: str | None = None):
        self.item = item
        self.reason = reason
        super().__init__()


class InvalidStatus(ValidationFailed):
    def __init__(self, status):
        self.status = status
        super().__init__(f"Invalid status: {status}")


class NothingToUpdate(ValidationFailed):
    default_message = "Nothing to update."


class OrderCreationFailed(ShopError):
    default_message = "Failed to create order"


class OrderUpdateFailed(ShopError):
    default_message = "Failed to update order"


class CashbackConflict(ShopError):
    """Raised when the cashback balance moved between the read and the guarded decrement."""

    status_code = 409
    default_message = "Cashback balance changed during checkout"

    def __init__(self, user_id: str, requested_cents: int):
        self.user_id = user_id
        self.requested_cents = requested_cents
        super().__init__()
