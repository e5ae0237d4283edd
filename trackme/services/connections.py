"""WebSocket connection registry addressed by owner."""

import asyncio
import logging
import uuid
from collections import defaultdict

from fastapi import WebSocket

from trackme.models.events import Notification, OutboundEvent

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Tracks every open WebSocket per owner so events can be routed by user.

    All methods run on the event loop thread.
    """

    def __init__(self):
        self._connections: dict[int, dict[str, WebSocket]] = defaultdict(dict)

    async def connect(self, owner_id: int, websocket: WebSocket) -> str:
        """Accept a socket and register it under its owner.

        Returns:
            Connection ID identifying this socket.
        """
        await websocket.accept()
        connection_id = uuid.uuid4().hex
        self._connections[owner_id][connection_id] = websocket
        logger.info("Connection %s opened for user %d", connection_id, owner_id)
        return connection_id

    def disconnect(self, owner_id: int, connection_id: str) -> None:
        connections = self._connections.get(owner_id)
        if not connections:
            return
        connections.pop(connection_id, None)
        if not connections:
            del self._connections[owner_id]

    def owner_connection_count(self, owner_id: int) -> int:
        return len(self._connections.get(owner_id, {}))

    @property
    def total_connections(self) -> int:
        return sum(len(conns) for conns in self._connections.values())

    async def emit_to_connection(
        self, owner_id: int, connection_id: str, event: OutboundEvent
    ) -> bool:
        """Send an event to one socket. Returns False if it is gone."""
        websocket = self._connections.get(owner_id, {}).get(connection_id)
        if websocket is None:
            return False
        try:
            await websocket.send_json(event.frame())
        except Exception as e:  # pylint: disable=broad-exception-caught
            logger.warning("Dropping connection %s: %s", connection_id, e)
            self.disconnect(owner_id, connection_id)
            return False
        return True

    async def emit_to_owner(self, owner_id: int, event: OutboundEvent) -> int:
        """Broadcast an event to every socket of an owner.

        Sockets that fail to receive are dropped. An owner with no open
        sockets simply receives nothing.

        Returns:
            Number of sockets the event was delivered to.
        """
        connection_ids = list(self._connections.get(owner_id, {}))
        if not connection_ids:
            logger.info(
                "No open connection for user %d, %s not delivered",
                owner_id,
                event.event,
            )
            return 0

        results = await asyncio.gather(
            *(
                self.emit_to_connection(owner_id, connection_id, event)
                for connection_id in connection_ids
            )
        )
        return sum(results)

    async def send_notification_to_user(
        self, owner_id: int, message: str, **extra
    ) -> int:
        """Push a free-form ``notification`` event to a user."""
        return await self.emit_to_owner(
            owner_id, Notification(message=message, **extra)
        )
