"""
Errors raised by the order, table, cart and catalog layers.

Handlers in main.py turn them into ``{"success": false, "message": ...}``
responses; nothing here knows about HTTP.
"""


class PosError(Exception):
    """Base exception for point-of-sale domain errors."""

    default_message = "Point-of-sale error"

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(PosError):
    """Raised when required fields are missing or malformed."""

    default_message = "Please fill in all required fields"


class EmptyOrder(ValidationError):
    """Raised when an empty cart is submitted."""

    default_message = "Please add items to the order before processing"


class NotFound(PosError):
    """Raised when a menu item, order or table does not exist."""

    default_message = "Not found"


class InvalidTransition(PosError):
    """Raised when an order status change is not allowed."""

    def __init__(self, current_status=None, new_status=None, message=None):
        self.current_status = current_status
        self.new_status = new_status
        if message is None:
            message = f"Cannot transition order from {current_status} to {new_status}"
        super().__init__(message)


class Conflict(PosError):
    """Raised when a table is held by another order or still has history."""

    default_message = "Conflict"


class AlreadyCompleted(PosError):
    """Raised when payment is completed twice for the same order."""

    def __init__(self, order_number=None, message=None):
        self.order_number = order_number
        if message is None:
            message = f"Order {order_number} is already completed"
        super().__init__(message)


class StoreError(PosError):
    """Raised when the database or session store fails a write."""

    default_message = "Datastore error"
