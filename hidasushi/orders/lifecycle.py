"""
Order Status Transition Validator

Pure state machine for the order lifecycle:

    received -> accepted -> in_preparation -> ready
        ready -> out_for_delivery -> completed      (delivery orders)
        ready -> ready_for_pickup -> completed      (pickup orders)

``cancelled`` is reachable from every non-terminal status; ``completed`` and
``cancelled`` are terminal. The legal edges live in ``ALLOWED_TRANSITIONS``,
keyed by ``(current status, order type)``.

The validator never writes anything. It returns a ``TransitionRecord`` that the
caller commits together with the status update in one unit of work.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from hidasushi.models import OrderStatus, OrderType, PaymentMethod, PaymentStatus
from hidasushi.orders.errors import (
    InvalidTransitionError,
    NoOpTransitionError,
    PaymentNotSettledError,
)


TERMINAL_STATUSES = frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED})

_KITCHEN_FLOW = {
    OrderStatus.RECEIVED: OrderStatus.ACCEPTED,
    OrderStatus.ACCEPTED: OrderStatus.IN_PREPARATION,
    OrderStatus.IN_PREPARATION: OrderStatus.READY,
}

_FULFILLMENT_FLOW = {
    OrderType.DELIVERY: {
        OrderStatus.READY: OrderStatus.OUT_FOR_DELIVERY,
        OrderStatus.OUT_FOR_DELIVERY: OrderStatus.COMPLETED,
    },
    OrderType.PICKUP: {
        OrderStatus.READY: OrderStatus.READY_FOR_PICKUP,
        OrderStatus.READY_FOR_PICKUP: OrderStatus.COMPLETED,
    },
}

# Statuses that only exist for one fulfillment type
FULFILLMENT_ONLY = {
    OrderStatus.OUT_FOR_DELIVERY: OrderType.DELIVERY,
    OrderStatus.READY_FOR_PICKUP: OrderType.PICKUP,
}


def _build_transition_table() -> dict[tuple[OrderStatus, OrderType], frozenset[OrderStatus]]:
    table = {}
    for order_type in OrderType:
        flow = {**_KITCHEN_FLOW, **_FULFILLMENT_FLOW[order_type]}
        for status in OrderStatus:
            allowed = set()
            if status in flow:
                allowed.add(flow[status])
            if status not in TERMINAL_STATUSES:
                allowed.add(OrderStatus.CANCELLED)
            table[(status, order_type)] = frozenset(allowed)
    return table


ALLOWED_TRANSITIONS = _build_transition_table()

# Order column stamped with the transition time when entering a status
STATUS_TIMESTAMP_FIELDS = {
    OrderStatus.ACCEPTED: "accepted_at",
    OrderStatus.IN_PREPARATION: "preparation_started_at",
    OrderStatus.READY: "preparation_completed_at",
    OrderStatus.COMPLETED: "completed_at",
    OrderStatus.CANCELLED: "cancelled_at",
}


@dataclass(frozen=True)
class TransitionRecord:
    """Immutable audit entry for one status change."""
    order_id: Optional[int]
    order_number: str
    previous_status: Optional[OrderStatus]
    new_status: OrderStatus
    actor_id: Optional[int] = None
    note: str = ""
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_creation(self) -> bool:
        return self.previous_status is None

    def order_changes(self) -> dict[str, Any]:
        """Column values the order row takes on when this record commits."""
        changes = {"status": self.new_status, "updated_at": self.created_at}
        stamp = STATUS_TIMESTAMP_FIELDS.get(self.new_status)
        if stamp:
            changes[stamp] = self.created_at
        if self.new_status == OrderStatus.ACCEPTED:
            changes["accepted_by"] = self.actor_id
        return changes

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "order_id": self.order_id,
            "order_number": self.order_number,
            "previous_status": self.previous_status.value if self.previous_status else None,
            "new_status": self.new_status.value,
            "actor_id": self.actor_id,
            "note": self.note,
            "created_at": self.created_at.isoformat(),
        }


def allowed_next_statuses(status: OrderStatus, order_type: OrderType) -> frozenset[OrderStatus]:
    """Statuses reachable in one step from ``status`` for this order type."""
    return ALLOWED_TRANSITIONS[(status, order_type)]


def is_payment_settled(order) -> bool:
    """An order may complete once paid, or when the cash is collected on delivery."""
    return (
        order.payment_status == PaymentStatus.PAID
        or order.payment_method == PaymentMethod.CASH_ON_DELIVERY
    )


def attempt_transition(
    order,
    requested_status: OrderStatus,
    actor_id: Optional[int] = None,
    note: str = "",
    now: Optional[datetime] = None,
) -> TransitionRecord:
    """
    Validate a status change and build its audit record.

    Args:
        order: Anything exposing id, order_number, status, order_type,
            payment_status and payment_method (normally an ``Order`` row)
        requested_status: Status the caller wants to move to
        actor_id: Admin user requesting the change (None for system changes)
        note: Free-text note stored with the record
        now: Transition time (defaults to the current UTC time)

    Returns:
        TransitionRecord: Uncommitted record for the caller's unit of work

    Raises:
        NoOpTransitionError: The order already has ``requested_status``
        InvalidTransitionError: The edge is not in the transition table
        PaymentNotSettledError: Completion before payment is settled
    """
    current = order.status
    number = order.order_number

    if requested_status == current:
        raise NoOpTransitionError(
            f"Order {number} is already {current.value}", number, current, requested_status
        )

    if current in TERMINAL_STATUSES:
        raise InvalidTransitionError(
            f"Order {number} is {current.value}; no further changes allowed",
            number, current, requested_status,
        )

    required_type = FULFILLMENT_ONLY.get(requested_status)
    if required_type is not None and required_type != order.order_type:
        raise InvalidTransitionError(
            f"{requested_status.value} is not available for {order.order_type.value} orders",
            number, current, requested_status,
        )

    if requested_status not in allowed_next_statuses(current, order.order_type):
        raise InvalidTransitionError(
            f"Order {number} cannot move from {current.value} to {requested_status.value}",
            number, current, requested_status,
        )

    if requested_status == OrderStatus.COMPLETED and not is_payment_settled(order):
        raise PaymentNotSettledError(
            f"Order {number} cannot complete: payment is {order.payment_status.value}",
            number, current, requested_status,
        )

    return TransitionRecord(
        order_id=order.id,
        order_number=number,
        previous_status=current,
        new_status=requested_status,
        actor_id=actor_id,
        note=note or "",
        created_at=now or datetime.now(timezone.utc),
    )


def seed_record(order, note: str = "Order received", now: Optional[datetime] = None) -> TransitionRecord:
    """Creation record (no previous status) written when an order is placed."""
    return TransitionRecord(
        order_id=order.id,
        order_number=order.order_number,
        previous_status=None,
        new_status=OrderStatus.RECEIVED,
        actor_id=None,
        note=note,
        created_at=now or datetime.now(timezone.utc),
    )
