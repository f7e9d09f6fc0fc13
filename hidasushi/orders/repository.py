"""
Order Repository

Loads orders and commits status transitions with optimistic concurrency:
the status update only applies while the stored status still equals the
transition's previous status, and the history row is written in the same
transaction.
"""

import logging
from datetime import datetime
from typing import Callable, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from hidasushi.models import Order, OrderStatus
from hidasushi.orders.errors import ConcurrentModificationError, OrderNotFoundError
from hidasushi.orders.history import SqlAlchemyStatusHistoryStore
from hidasushi.orders.lifecycle import TransitionRecord

logger = logging.getLogger(__name__)


class OrderRepository:
    """Persistence for the order aggregate, bound to one session."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.history = SqlAlchemyStatusHistoryStore(session)

    async def get(self, order_id: int) -> Order:
        result = await self.session.execute(select(Order).where(Order.id == order_id))
        order = result.scalar_one_or_none()
        if order is None:
            raise OrderNotFoundError(f"Order #{order_id} not found")
        return order

    async def get_by_number(self, order_number: str) -> Order:
        result = await self.session.execute(
            select(Order).where(Order.order_number == order_number)
        )
        order = result.scalar_one_or_none()
        if order is None:
            raise OrderNotFoundError(f"Order {order_number} not found", order_number)
        return order

    async def list_orders(
        self,
        status: Optional[OrderStatus] = None,
        from_date: Optional[datetime] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> tuple[int, Sequence[Order]]:
        """Newest first. Returns (total matching, page)."""
        query = select(Order).order_by(Order.created_at.desc(), Order.id.desc())
        count_query = select(func.count(Order.id))

        if status is not None:
            query = query.where(Order.status == status)
            count_query = count_query.where(Order.status == status)
        if from_date is not None:
            query = query.where(Order.created_at >= from_date)
            count_query = count_query.where(Order.created_at >= from_date)

        total = (await self.session.execute(count_query)).scalar() or 0
        result = await self.session.execute(query.offset(skip).limit(limit))
        return total, result.scalars().all()

    async def add(self, order: Order, seed: Callable[[Order], TransitionRecord]) -> TransitionRecord:
        """
        Insert a new order together with its creation history record.

        ``seed`` builds the record once the order has an id.
        """
        self.session.add(order)
        await self.session.flush()

        record = seed(order)
        await self.history.append(record)
        await self.session.commit()
        return record

    async def commit_transition(self, order: Order, record: TransitionRecord) -> None:
        """
        Apply ``record`` to the stored order and append it to the ledger.

        Raises:
            ConcurrentModificationError: The stored status is no longer
                ``record.previous_status``; nothing was written.
        """
        changes = record.order_changes()

        result = await self.session.execute(
            update(Order)
            .where(Order.id == record.order_id, Order.status == record.previous_status)
            .values(**changes)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount != 1:
            await self.session.rollback()
            logger.warning(
                f"Concurrent modification on {record.order_number}: "
                f"expected {record.previous_status.value}, wanted {record.new_status.value}"
            )
            raise ConcurrentModificationError(record.order_number, record.previous_status)

        await self.history.append(record)
        await self.session.commit()

        # Mirror the committed row without marking the instance dirty
        for key, value in changes.items():
            set_committed_value(order, key, value)
