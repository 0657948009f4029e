"""
WebSocket fan-out for battle updates.

Battles publish from their worker threads; WebSocket sends must happen on
the server's event loop. ThreadSafeWebSocketBroadcaster hands messages over
to the loop without blocking the publishing thread.
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Set

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Manage WebSocket connections for battle updates"""

    def __init__(self):
        self.active_connections: Set[WebSocket] = set()

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self.active_connections.add(websocket)
        logger.info(f"WebSocket connected. Total: {len(self.active_connections)}")

    def disconnect(self, websocket: WebSocket):
        self.active_connections.discard(websocket)
        logger.info(f"WebSocket disconnected. Total: {len(self.active_connections)}")

    async def broadcast(self, message: Dict[str, Any]):
        """Broadcast message to all connected clients"""
        disconnected = set()
        for connection in list(self.active_connections):
            try:
                await connection.send_json(message)
            except Exception as e:
                logger.error(f"Error broadcasting to client: {e}")
                disconnected.add(connection)

        # Clean up disconnected clients
        for conn in disconnected:
            self.active_connections.discard(conn)


class ThreadSafeWebSocketBroadcaster:
    """
    Broadcaster for battle worker threads.

    Messages published before the event loop is attached (or after it
    closes) are dropped; observers only care about live standings.
    """

    def __init__(self, manager: ConnectionManager):
        self.manager = manager
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def attach_loop(self, loop: asyncio.AbstractEventLoop):
        self._loop = loop

    def detach_loop(self):
        self._loop = None

    def publish(self, message: Dict[str, Any]) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            logger.debug(f"No event loop attached, dropping {message.get('type')} message")
            return
        if not self.manager.active_connections:
            return
        asyncio.run_coroutine_threadsafe(self.manager.broadcast(message), loop)
