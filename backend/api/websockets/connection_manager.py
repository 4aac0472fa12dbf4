"""WebSocket connection manager for real-time run updates."""

from fastapi import WebSocket
from typing import Any, Set
import logging
import json

logger = logging.getLogger(__name__)


class ConnectionManager:
    """
    Manages active WebSocket connections.

    Subscribed to the orchestrator's event bus; every engine event is
    broadcast to every connected client as ``{"event": name, "data": payload}``.
    """

    def __init__(self):
        """Initialize connection manager."""
        self.active_connections: Set[WebSocket] = set()

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self.active_connections.add(websocket)
        logger.info(f"WebSocket connected ({len(self.active_connections)} active)")

    async def disconnect(self, websocket: WebSocket) -> None:
        self.active_connections.discard(websocket)
        logger.info(f"WebSocket disconnected ({len(self.active_connections)} active)")

    async def broadcast(self, message: dict) -> None:
        """
        Broadcast message to all connected clients.

        Args:
            message: Message to broadcast (will be JSON encoded)
        """
        message_str = json.dumps(message, default=str)
        disconnected = set()

        for connection in list(self.active_connections):
            try:
                await connection.send_text(message_str)
            except Exception as e:
                logger.error(f"Error broadcasting message: {str(e)}")
                disconnected.add(connection)

        for connection in disconnected:
            await self.disconnect(connection)

    async def on_engine_event(self, event: str, payload: dict[str, Any]) -> None:
        """Event bus subscriber."""
        if self.active_connections:
            await self.broadcast({"event": event, "data": payload})

    def get_connection_count(self) -> int:
        return len(self.active_connections)
