"""Live websocket connections, keyed by the connection id handed to each client."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4

from fastapi import WebSocket

from relay.core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class _Connection:
    websocket: WebSocket
    send_lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class ConnectionManager:
    """In-process registry of accepted websockets.

    Sends to one connection are serialized with its own lock so events for a
    bot arrive in the order they were emitted. A failed send marks the
    connection gone.
    """

    def __init__(self) -> None:
        self._connections: dict[str, _Connection] = {}

    def __len__(self) -> int:
        return len(self._connections)

    def add(self, websocket: WebSocket, connection_id: str | None = None) -> str:
        connection_id = connection_id or uuid4().hex
        self._connections[connection_id] = _Connection(websocket=websocket)
        logger.info(
            "Client connected",
            extra={
                "component": "connection_manager",
                "operation": "add",
                "context_data": {"connection_id": connection_id, "live": len(self._connections)},
            },
        )
        return connection_id

    def remove(self, connection_id: str) -> bool:
        removed = self._connections.pop(connection_id, None) is not None
        if removed:
            logger.info(
                "Client disconnected",
                extra={
                    "component": "connection_manager",
                    "operation": "remove",
                    "context_data": {
                        "connection_id": connection_id,
                        "live": len(self._connections),
                    },
                },
            )
        return removed

    def is_live(self, connection_id: str) -> bool:
        return connection_id in self._connections

    def live_connection_ids(self) -> list[str]:
        return list(self._connections)

    async def send_to(self, connection_id: str, event_name: str, payload: dict[str, Any]) -> bool:
        """Send one ``{event, data}`` frame; ``False`` when the connection is gone."""

        connection = self._connections.get(connection_id)
        if connection is None:
            return False
        try:
            async with connection.send_lock:
                await connection.websocket.send_json({"event": event_name, "data": payload})
            return True
        except Exception:
            logger.warning(
                "Send failed, dropping connection",
                extra={
                    "component": "connection_manager",
                    "operation": "send_to",
                    "context_data": {"connection_id": connection_id, "event": event_name},
                },
            )
            self._connections.pop(connection_id, None)
            return False

    async def broadcast(self, event_name: str, payload: dict[str, Any]) -> int:
        """Send to every live connection; returns how many sends succeeded."""

        delivered = 0
        for connection_id in self.live_connection_ids():
            if await self.send_to(connection_id, event_name, payload):
                delivered += 1
        return delivered
