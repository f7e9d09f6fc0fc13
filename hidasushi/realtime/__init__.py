"""
Real-time Notification Factory

One subscription registry, transport and dispatcher per process.

Usage:
    from hidasushi.realtime import get_dispatcher

    dispatcher = get_dispatcher()
    await dispatcher.notify(order, record)
"""

import logging
from functools import lru_cache

from hidasushi.core.config import get_settings
from hidasushi.realtime.base import BasePushTransport, ConnectionClosedError
from hidasushi.realtime.dispatcher import (
    NotificationDispatcher,
    build_order_snapshot,
    target_groups,
)
from hidasushi.realtime.registry import (
    ADMIN_GROUP,
    SubscriptionRegistry,
    customer_group,
    order_group,
)
from hidasushi.realtime.websocket import WebSocketTransport

logger = logging.getLogger(__name__)


@lru_cache()
def get_transport() -> WebSocketTransport:
    return WebSocketTransport()


@lru_cache()
def get_dispatcher() -> NotificationDispatcher:
    """Get the process-wide dispatcher."""
    settings = get_settings()
    transport = get_transport()
    logger.info(f"Notification Dispatcher: using {transport.provider_name} transport")
    return NotificationDispatcher(
        registry=SubscriptionRegistry(),
        transport=transport,
        push_timeout=settings.notification_push_timeout_seconds,
    )


def reset_dispatcher() -> None:
    """Clear the cached instances (connections and memberships are dropped)."""
    get_dispatcher.cache_clear()
    get_transport.cache_clear()


__all__ = [
    "get_dispatcher",
    "get_transport",
    "reset_dispatcher",
    "NotificationDispatcher",
    "SubscriptionRegistry",
    "BasePushTransport",
    "ConnectionClosedError",
    "WebSocketTransport",
    "build_order_snapshot",
    "target_groups",
    "ADMIN_GROUP",
    "customer_group",
    "order_group",
]
