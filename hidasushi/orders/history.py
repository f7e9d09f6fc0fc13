"""
Status History Store

Append-only ledger of order status transitions. Replaying an order's records
in order must reproduce the order's live status; ``verify_history`` is that
check.
"""

import logging
from abc import ABC, abstractmethod
from typing import Iterable, Iterator, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hidasushi.models import Order, OrderStatus, OrderStatusHistory
from hidasushi.orders.errors import HistoryConsistencyError
from hidasushi.orders.lifecycle import TransitionRecord

logger = logging.getLogger(__name__)


class BaseStatusHistoryStore(ABC):
    """Interface for the transition ledger."""

    @abstractmethod
    async def append(self, record: TransitionRecord) -> None:
        """Stage a record in the caller's unit of work. Never commits."""
        pass

    @abstractmethod
    async def list_for_order(self, order_number: str) -> Iterator[TransitionRecord]:
        """
        Records for one order, oldest first.

        Returns a one-shot iterator; call again to read the ledger again.
        """
        pass


class SqlAlchemyStatusHistoryStore(BaseStatusHistoryStore):
    """Ledger backed by the ``order_status_history`` table."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def append(self, record: TransitionRecord) -> None:
        if record.order_id is None:
            raise ValueError("Cannot append a history record for an unsaved order")

        self.session.add(OrderStatusHistory(
            order_id=record.order_id,
            previous_status=record.previous_status,
            new_status=record.new_status,
            changed_by=record.actor_id,
            notes=record.note or None,
            created_at=record.created_at,
        ))

    async def list_for_order(self, order_number: str) -> Iterator[TransitionRecord]:
        result = await self.session.execute(
            select(OrderStatusHistory, Order.order_number)
            .join(Order, Order.id == OrderStatusHistory.order_id)
            .where(Order.order_number == order_number)
            .order_by(OrderStatusHistory.created_at, OrderStatusHistory.id)
        )
        rows = result.all()
        return (
            TransitionRecord(
                order_id=row.order_id,
                order_number=number,
                previous_status=row.previous_status,
                new_status=row.new_status,
                actor_id=row.changed_by,
                note=row.notes or "",
                created_at=row.created_at,
            )
            for row, number in rows
        )


def replay_status(records: Iterable[TransitionRecord]) -> Optional[OrderStatus]:
    """Fold the records' new statuses; None for an empty ledger."""
    status = None
    for record in records:
        status = record.new_status
    return status


def verify_history(order, records: Iterable[TransitionRecord]) -> None:
    """
    Raise HistoryConsistencyError unless the ledger replays to the live status.

    Also rejects ledgers whose records do not chain (each record's previous
    status must equal the status the ledger had reached).
    """
    status = None
    for record in records:
        if record.previous_status != status:
            raise HistoryConsistencyError(
                f"History of {order.order_number} breaks at "
                f"{record.previous_status} -> {record.new_status.value} (ledger was at {status})",
                order.order_number,
            )
        status = record.new_status

    if status != order.status:
        replayed = status.value if status else None
        raise HistoryConsistencyError(
            f"History of {order.order_number} replays to {replayed}, order is {order.status.value}",
            order.order_number,
        )
