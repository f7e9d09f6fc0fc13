"""
Order lifecycle: transition rules, status history and the order service.
"""

from hidasushi.orders.errors import (
    ConcurrentModificationError,
    HistoryConsistencyError,
    InvalidTransitionError,
    NoOpTransitionError,
    OrderLifecycleError,
    OrderNotFoundError,
    PaymentNotSettledError,
    TransitionError,
)
from hidasushi.orders.lifecycle import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATUSES,
    TransitionRecord,
    allowed_next_statuses,
    attempt_transition,
    seed_record,
)
from hidasushi.orders.history import replay_status, verify_history
from hidasushi.orders.repository import OrderRepository
from hidasushi.orders.service import OrderService, calculate_order_totals, generate_order_number

__all__ = [
    "ALLOWED_TRANSITIONS",
    "TERMINAL_STATUSES",
    "TransitionRecord",
    "allowed_next_statuses",
    "attempt_transition",
    "seed_record",
    "replay_status",
    "verify_history",
    "OrderRepository",
    "OrderService",
    "calculate_order_totals",
    "generate_order_number",
    "OrderLifecycleError",
    "OrderNotFoundError",
    "TransitionError",
    "InvalidTransitionError",
    "NoOpTransitionError",
    "PaymentNotSettledError",
    "ConcurrentModificationError",
    "HistoryConsistencyError",
]
