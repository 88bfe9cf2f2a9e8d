"""
services/exceptions.py
----------------------
Error taxonomy shared by the repositories, services and both surfaces
(HTTP and Telegram). Each error carries the HTTP status it maps to.
"""


class RecurBudgetError(Exception):
    """Base exception for all recurring-payment errors."""
    status_code = 500
    default_message = "Server error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(RecurBudgetError):
    """A required field is missing or has an invalid value."""
    status_code = 400
    default_message = "Invalid input"


class NotFoundError(RecurBudgetError):
    """Record does not exist or belongs to another user."""
    status_code = 404
    default_message = "Not found"


class ConflictError(RecurBudgetError):
    """A checkpoint compare-and-swap lost a race; retry the single payment."""
    status_code = 409
    default_message = "Payment was modified concurrently, try again"


class StoreError(RecurBudgetError):
    """The database failed to serve a request."""
    status_code = 500
    default_message = "Server error"
