"""
Subscription Registry

Process-local map of live connections to the notification groups they joined.
Nothing is persisted: after a restart clients rejoin their groups.

Group keys:
    admin                   kitchen / admin dashboard
    customer:<customer id>  every order of one customer
    order:<order number>    one specific order
"""

import logging
import re
import threading
from collections import defaultdict
from typing import Optional

logger = logging.getLogger(__name__)

ADMIN_GROUP = "admin"

_GROUP_PATTERN = re.compile(r"^(admin|customer:\d+|order:[A-Za-z0-9#_-]+)$")


def customer_group(customer_id: int) -> str:
    return f"customer:{int(customer_id)}"


def order_group(order_number: str) -> str:
    return f"order:{order_number}"


def validate_group_key(group_key: str) -> str:
    if not isinstance(group_key, str) or not _GROUP_PATTERN.match(group_key):
        raise ValueError(f"Invalid group key: {group_key!r}")
    return group_key


class SubscriptionRegistry:
    """
    Connection <-> group membership.

    Every public method takes the registry lock for its whole duration, so a
    join, leave or disconnect is seen completely or not at all. Lookups
    return frozen copies.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._groups: dict[str, set[str]] = defaultdict(set)
        self._connections: dict[str, set[str]] = defaultdict(set)

    def join(self, connection_id: str, group_key: str) -> None:
        validate_group_key(group_key)
        with self._lock:
            self._groups[group_key].add(connection_id)
            self._connections[connection_id].add(group_key)
        logger.debug(f"{connection_id} joined {group_key}")

    def leave(self, connection_id: str, group_key: str) -> None:
        with self._lock:
            self._discard(connection_id, group_key)
        logger.debug(f"{connection_id} left {group_key}")

    def disconnect(self, connection_id: str) -> frozenset[str]:
        """Remove the connection from every group. Returns the groups it was in."""
        with self._lock:
            groups = frozenset(self._connections.get(connection_id, ()))
            for group_key in groups:
                self._discard(connection_id, group_key)
            self._connections.pop(connection_id, None)
        if groups:
            logger.debug(f"{connection_id} removed from {len(groups)} group(s)")
        return groups

    def groups_for(self, connection_id: str) -> frozenset[str]:
        with self._lock:
            return frozenset(self._connections.get(connection_id, ()))

    def members_of(self, group_key: str) -> frozenset[str]:
        with self._lock:
            return frozenset(self._groups.get(group_key, ()))

    def connection_count(self, group_key: Optional[str] = None) -> int:
        with self._lock:
            if group_key is None:
                return len(self._connections)
            return len(self._groups.get(group_key, ()))

    def _discard(self, connection_id: str, group_key: str) -> None:
        members = self._groups.get(group_key)
        if members is not None:
            members.discard(connection_id)
            if not members:
                del self._groups[group_key]

        groups = self._connections.get(connection_id)
        if groups is not None:
            groups.discard(group_key)
            if not groups:
                del self._connections[connection_id]
