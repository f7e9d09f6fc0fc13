"""
Order lifecycle exceptions.

All are recoverable by the caller except ``OrderNotFoundError``, which is
surfaced to the user as a 404.
"""

from typing import Optional


class OrderLifecycleError(Exception):
    """Base class for order lifecycle failures."""

    def __init__(self, message: str, order_number: Optional[str] = None):
        self.order_number = order_number
        super().__init__(message)


class OrderNotFoundError(OrderLifecycleError):
    """Raised when the requested order does not exist."""


class TransitionError(OrderLifecycleError):
    """A requested status change was rejected. No state was changed."""

    def __init__(self, message: str, order_number: Optional[str], current_status, requested_status):
        self.current_status = current_status
        self.requested_status = requested_status
        super().__init__(message, order_number)


class InvalidTransitionError(TransitionError):
    """Illegal edge, terminal source state, or fulfillment-type mismatch."""


class NoOpTransitionError(TransitionError):
    """The order is already in the requested status. Callers treat this as success."""


class PaymentNotSettledError(TransitionError):
    """Completion requested while the order is neither paid nor cash on delivery."""


class ConcurrentModificationError(OrderLifecycleError):
    """
    Another transition committed first.

    The stored status no longer matched the expected previous status, so the
    update was rolled back. Re-read the order and try again.
    """

    def __init__(self, order_number: Optional[str], expected_status):
        self.expected_status = expected_status
        super().__init__(
            f"Order {order_number} changed while updating (expected status {expected_status.value})",
            order_number,
        )


class HistoryConsistencyError(OrderLifecycleError):
    """Replaying the status history does not reproduce the live status."""
