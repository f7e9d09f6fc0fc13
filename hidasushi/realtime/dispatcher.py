"""
Notification Dispatcher

Pushes committed order changes to the groups interested in them:

    admin                  always
    order:<order number>   always
    customer:<id>          when the order belongs to a known customer

Delivery is best effort. Each connection is pushed to independently with its
own timeout; a failed or slow connection is logged and skipped, never
retried, and never reported back to the caller. By the time ``notify`` runs
the transition is already committed.
"""

import asyncio
import logging
from typing import Any, Optional

from hidasushi.orders.lifecycle import TransitionRecord
from hidasushi.realtime.base import BasePushTransport
from hidasushi.realtime.registry import (
    ADMIN_GROUP,
    SubscriptionRegistry,
    customer_group,
    order_group,
)

logger = logging.getLogger(__name__)


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def build_order_snapshot(order) -> dict[str, Any]:
    """JSON-ready view of the order fields clients track."""
    return {
        "id": order.id,
        "order_number": order.order_number,
        "status": order.status.value,
        "order_type": order.order_type.value,
        "customer_id": order.customer_id,
        "payment_status": order.payment_status.value,
        "payment_method": order.payment_method.value,
        "total": str(order.total),
        "created_at": _iso(order.created_at),
        "updated_at": _iso(order.updated_at),
        "estimated_ready_time": _iso(order.estimated_ready_time),
        "accepted_at": _iso(order.accepted_at),
        "preparation_started_at": _iso(order.preparation_started_at),
        "preparation_completed_at": _iso(order.preparation_completed_at),
        "completed_at": _iso(order.completed_at),
        "cancelled_at": _iso(order.cancelled_at),
    }


def target_groups(order) -> list[str]:
    groups = [ADMIN_GROUP, order_group(order.order_number)]
    if order.customer_id is not None:
        groups.append(customer_group(order.customer_id))
    return groups


class NotificationDispatcher:
    """
    Fan-out of order updates over a push transport.

    Also the narrow group-messaging surface used by the WebSocket endpoint:
    ``join``, ``leave``, ``disconnect`` and ``send_to_group``.
    """

    def __init__(
        self,
        registry: SubscriptionRegistry,
        transport: BasePushTransport,
        push_timeout: float = 2.0,
    ):
        self.registry = registry
        self.transport = transport
        self.push_timeout = push_timeout

    # =========================================================================
    # GROUP MEMBERSHIP
    # =========================================================================

    def join(self, connection_id: str, group_key: str) -> None:
        self.registry.join(connection_id, group_key)

    def leave(self, connection_id: str, group_key: str) -> None:
        self.registry.leave(connection_id, group_key)

    async def disconnect(self, connection_id: str) -> None:
        self.registry.disconnect(connection_id)
        await self.transport.close(connection_id)

    # =========================================================================
    # DELIVERY
    # =========================================================================

    async def send_to_group(self, group_key: str, message: dict[str, Any]) -> int:
        """Push to every current member of the group. Returns successful deliveries."""
        return await self._push_all(self.registry.members_of(group_key), message)

    async def notify(self, order, record: TransitionRecord) -> int:
        """
        Broadcast a committed transition. Never raises.

        Returns:
            Number of connections that accepted the push
        """
        try:
            message = {
                "event": "order_created" if record.is_creation else "order_status_updated",
                "order": build_order_snapshot(order),
                "transition": record.to_dict(),
            }
            delivered = await self._broadcast(target_groups(order), message)
            logger.info(
                f"Order {order.order_number} {message['event']} "
                f"({record.new_status.value}) pushed to {delivered} connection(s)"
            )
            return delivered
        except Exception:
            logger.exception(f"Failed to dispatch notification for order {record.order_number}")
            return 0

    async def notify_payment_update(self, order) -> int:
        """Broadcast a payment status change. Never raises."""
        try:
            message = {
                "event": "payment_status_updated",
                "order": build_order_snapshot(order),
            }
            return await self._broadcast(target_groups(order), message)
        except Exception:
            logger.exception(f"Failed to dispatch payment update for order {order.order_number}")
            return 0

    async def _broadcast(self, groups: list[str], message: dict[str, Any]) -> int:
        # A connection in several target groups receives the message once
        recipients = set()
        for group_key in groups:
            recipients |= self.registry.members_of(group_key)
        return await self._push_all(recipients, message)

    async def _push_all(self, connection_ids, message: dict[str, Any]) -> int:
        if not connection_ids:
            return 0
        results = await asyncio.gather(
            *(self._push(connection_id, message) for connection_id in connection_ids)
        )
        return sum(results)

    async def _push(self, connection_id: str, message: dict[str, Any]) -> bool:
        try:
            await asyncio.wait_for(
                self.transport.send(connection_id, message),
                timeout=self.push_timeout,
            )
            return True
        except asyncio.TimeoutError:
            logger.warning(f"Push to {connection_id} timed out after {self.push_timeout}s")
        except Exception as e:
            logger.warning(f"Push to {connection_id} failed: {e}")
        return False
