"""
Order Service

Order intake and the status lifecycle:

    load order -> validate transition -> commit (status + history, atomically)
               -> notify subscribers

Notification runs only after the commit has completed and its failures never
reach the caller.
"""

import logging
import random
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import TYPE_CHECKING, Iterable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from hidasushi.core.config import Settings, get_settings
from hidasushi.models import (
    Order,
    OrderItem,
    OrderStatus,
    OrderType,
    PaymentMethod,
    PaymentStatus,
)
from hidasushi.orders.errors import HistoryConsistencyError
from hidasushi.orders.history import verify_history
from hidasushi.orders.lifecycle import TransitionRecord, attempt_transition, seed_record
from hidasushi.orders.repository import OrderRepository
from hidasushi.schemas import OrderCreate

if TYPE_CHECKING:
    from hidasushi.realtime.dispatcher import NotificationDispatcher

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    delivery_fee: Decimal
    tax_amount: Decimal
    total: Decimal


def calculate_order_totals(
    item_prices: Iterable[Decimal],
    order_type: OrderType,
    delivery_fee: Decimal,
    tax_rate: Decimal,
) -> OrderTotals:
    """
    Price breakdown for a set of line totals.

    Tax applies to subtotal plus delivery fee; the total is the exact sum of
    the three rounded parts.
    """
    subtotal = to_money(sum(item_prices, Decimal("0")))
    fee = to_money(delivery_fee) if order_type == OrderType.DELIVERY else to_money(0)
    tax = to_money((subtotal + fee) * tax_rate)
    return OrderTotals(subtotal=subtotal, delivery_fee=fee, tax_amount=tax, total=subtotal + fee + tax)


def generate_order_number(now: Optional[datetime] = None) -> str:
    """HS + UTC timestamp + 4 random digits, e.g. HS202610181230051234."""
    now = now or datetime.now(timezone.utc)
    return f"HS{now:%Y%m%d%H%M%S}{random.randint(1000, 9999)}"


class OrderService:
    """Business operations on orders, bound to one database session."""

    def __init__(
        self,
        session: AsyncSession,
        dispatcher: "NotificationDispatcher",
        settings: Optional[Settings] = None,
    ):
        self.repository = OrderRepository(session)
        self.dispatcher = dispatcher
        self.settings = settings or get_settings()

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def get_order(self, order_id: int) -> Order:
        return await self.repository.get(order_id)

    async def get_order_by_number(self, order_number: str) -> Order:
        return await self.repository.get_by_number(order_number)

    async def list_orders(self, **filters) -> tuple[int, list[Order]]:
        total, orders = await self.repository.list_orders(**filters)
        return total, list(orders)

    async def get_status_history(self, order_number: str) -> tuple[Order, list[TransitionRecord], bool]:
        """
        The order, its ledger (oldest first) and whether the ledger replays
        to the live status.
        """
        order = await self.repository.get_by_number(order_number)
        records = list(await self.repository.history.list_for_order(order_number))
        try:
            verify_history(order, records)
            consistent = True
        except HistoryConsistencyError as e:
            logger.error(f"History check failed: {e}")
            consistent = False
        return order, records, consistent

    # =========================================================================
    # COMMANDS
    # =========================================================================

    async def create_order(self, data: OrderCreate) -> Order:
        """Place a new order in status received and announce it."""
        logger.info(f"Creating new order for customer: {data.customer_name}")

        now = datetime.now(timezone.utc)
        items = [
            OrderItem(
                sushi_roll_id=item.sushi_roll_id,
                custom_roll_id=item.custom_roll_id,
                name=item.name,
                quantity=item.quantity,
                unit_price=to_money(item.unit_price),
                price=to_money(item.unit_price * item.quantity),
                notes=item.notes,
                created_at=now,
            )
            for item in data.items
        ]
        totals = calculate_order_totals(
            (item.price for item in items),
            data.order_type,
            delivery_fee=self.settings.delivery_fee,
            tax_rate=self.settings.tax_rate,
        )
        eta_minutes = (
            self.settings.estimated_pickup_minutes
            if data.order_type == OrderType.PICKUP
            else self.settings.estimated_delivery_minutes
        )

        order = Order(
            order_number=generate_order_number(now),
            customer_id=data.customer_id,
            customer_name=data.customer_name,
            customer_email=data.customer_email,
            customer_phone=data.customer_phone,
            order_type=data.order_type,
            delivery_address=data.delivery_address,
            delivery_instructions=data.delivery_instructions,
            location=self.settings.restaurant_location,
            notes=data.notes,
            items=items,
            subtotal=totals.subtotal,
            delivery_fee=totals.delivery_fee,
            tax_amount=totals.tax_amount,
            total=totals.total,
            status=OrderStatus.RECEIVED,
            payment_method=data.payment_method,
            payment_status=PaymentStatus.PENDING,
            created_at=now,
            updated_at=now,
            estimated_ready_time=now + timedelta(minutes=eta_minutes),
        )

        record = await self.repository.add(order, lambda o: seed_record(o, now=now))
        logger.info(f"New order created: {order.order_number} for {order.customer_name} (ID: {order.id})")

        await self.dispatcher.notify(order, record)
        return order

    async def transition_order(
        self,
        order: Order,
        requested_status: OrderStatus,
        actor_id: Optional[int] = None,
        note: str = "",
    ) -> TransitionRecord:
        """
        Move ``order`` to ``requested_status``.

        Raises:
            NoOpTransitionError: Already in that status (nothing written or sent)
            InvalidTransitionError: Illegal edge for this order
            PaymentNotSettledError: Completion before payment
            ConcurrentModificationError: Another transition won; re-read and retry
        """
        record = attempt_transition(order, requested_status, actor_id=actor_id, note=note)
        await self.repository.commit_transition(order, record)

        logger.info(
            f"Order {order.order_number} status updated from "
            f"{record.previous_status.value} to {record.new_status.value}"
        )

        await self.dispatcher.notify(order, record)
        return record

    async def update_payment_status(
        self,
        order: Order,
        payment_status: PaymentStatus,
        transaction_id: Optional[str] = None,
        payment_method: Optional[PaymentMethod] = None,
        payment_intent_id: Optional[str] = None,
    ) -> Order:
        """Record the payment outcome reported by the payment subsystem."""
        order.payment_status = payment_status
        if payment_method is not None:
            order.payment_method = payment_method
        if payment_intent_id:
            order.payment_intent_id = payment_intent_id
        if transaction_id:
            order.payment_reference = transaction_id
        order.updated_at = datetime.now(timezone.utc)
        await self.repository.session.commit()

        logger.info(
            f"Order {order.order_number} payment status updated to "
            f"{payment_status.value}, transaction: {transaction_id}"
        )

        await self.dispatcher.notify_payment_update(order)
        return order

    async def set_payment_intent(self, order: Order, payment_intent_id: str) -> None:
        order.payment_intent_id = payment_intent_id
        order.updated_at = datetime.now(timezone.utc)
        await self.repository.session.commit()
