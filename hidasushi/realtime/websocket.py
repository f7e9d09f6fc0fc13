"""
WebSocket push transport.

Holds the accepted FastAPI WebSocket for every live connection id.
"""

import asyncio
import logging
import uuid
from typing import Any

from fastapi import WebSocket

from hidasushi.realtime.base import BasePushTransport, ConnectionClosedError

logger = logging.getLogger(__name__)


class WebSocketTransport(BasePushTransport):
    """Delivers pushes over accepted WebSocket connections."""

    def __init__(self):
        self._connections: dict[str, WebSocket] = {}
        self._lock = asyncio.Lock()

    @property
    def provider_name(self) -> str:
        return "websocket"

    async def connect(self, websocket: WebSocket) -> str:
        """Accept and register a new WebSocket connection; returns its id."""
        await websocket.accept()
        connection_id = uuid.uuid4().hex
        async with self._lock:
            self._connections[connection_id] = websocket

        client = websocket.client
        client_info = f"{client.host}:{client.port}" if client else "unknown"
        logger.info(
            f"🔌 WebSocket connected: {client_info} as {connection_id} "
            f"(Total: {len(self._connections)})"
        )
        return connection_id

    async def close(self, connection_id: str) -> None:
        async with self._lock:
            websocket = self._connections.pop(connection_id, None)
        if websocket is not None:
            logger.info(f"🔌 WebSocket disconnected: {connection_id} (Remaining: {len(self._connections)})")

    async def send(self, connection_id: str, message: dict[str, Any]) -> None:
        websocket = self._connections.get(connection_id)
        if websocket is None:
            raise ConnectionClosedError(connection_id)
        await websocket.send_json(message)

    def connection_count(self) -> int:
        return len(self._connections)
