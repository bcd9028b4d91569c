"""WebSocket connection registry for live notification delivery.

Connections are grouped in channels; every authenticated staff socket joins
``user:{id}``. Delivery is best effort: a failed send drops the connection and
the notification stays queryable over REST.
"""

import asyncio
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import WebSocket, status

logger = logging.getLogger(__name__)


def user_channel(user_id: int) -> str:
    return f"user:{user_id}"


class ConnectionManager:
    """Manages WebSocket connections for real-time updates."""

    MAX_CONNECTIONS_PER_CHANNEL = 100
    MAX_MESSAGE_SIZE = 65536  # 64KB

    def __init__(self):
        self.active_connections: Dict[str, List[WebSocket]] = {}
        self.connection_metadata: Dict[int, Dict[str, Any]] = {}
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._lock = threading.Lock()

    def bind_loop(self, loop: Optional[asyncio.AbstractEventLoop]) -> None:
        """Remember the event loop sockets live on, so worker threads can publish."""
        self._loop = loop

    async def connect(
        self,
        websocket: WebSocket,
        channel: str,
        user_id: Optional[int] = None,
        accept: bool = True,
    ) -> bool:
        """Connect a WebSocket to a channel with connection limiting.

        Returns True if connection was successful, False if rejected.
        """
        if len(self.active_connections.get(channel, [])) >= self.MAX_CONNECTIONS_PER_CHANNEL:
            logger.warning(f"WebSocket connection rejected: channel '{channel}' at capacity")
            if accept:
                await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return False

        if accept:
            await websocket.accept()

        with self._lock:
            self.active_connections.setdefault(channel, []).append(websocket)
            self.connection_metadata[id(websocket)] = {
                "connected_at": datetime.now(timezone.utc),
                "user_id": user_id,
                "channel": channel,
                "last_ping": datetime.now(timezone.utc),
            }

        logger.debug(f"WebSocket connected to channel '{channel}', user_id={user_id}")
        return True

    def disconnect(self, websocket: WebSocket, channel: str):
        """Disconnect a WebSocket from a channel."""
        with self._lock:
            connections = self.active_connections.get(channel)
            if connections and websocket in connections:
                connections.remove(websocket)
                if not connections:
                    del self.active_connections[channel]
            self.connection_metadata.pop(id(websocket), None)

        logger.debug(f"WebSocket disconnected from channel '{channel}'")

    def update_ping(self, websocket: WebSocket):
        """Update last ping time for a connection."""
        meta = self.connection_metadata.get(id(websocket))
        if meta:
            meta["last_ping"] = datetime.now(timezone.utc)

    async def broadcast(self, message: Dict[str, Any], channel: str):
        """Send a message to all connections in a channel."""
        disconnected = []
        for connection in list(self.active_connections.get(channel, [])):
            try:
                await connection.send_json(message)
            except Exception as e:
                logger.debug(f"WebSocket send failed: {e}")
                disconnected.append(connection)

        for conn in disconnected:
            self.disconnect(conn, channel)

    def publish(self, message: Dict[str, Any], channel: str) -> None:
        """Schedule a broadcast from synchronous code.

        Safe to call from request worker threads. Without a bound loop (no
        running app, e.g. scheduled jobs in scripts) the message is dropped.
        """
        loop = self._loop
        if loop is None or loop.is_closed() or channel not in self.active_connections:
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            loop.create_task(self.broadcast(message, channel))
        else:
            asyncio.run_coroutine_threadsafe(self.broadcast(message, channel), loop)

    def get_connection_count(self, channel: Optional[str] = None) -> int:
        """Get the number of active connections."""
        if channel:
            return len(self.active_connections.get(channel, []))
        return sum(len(conns) for conns in self.active_connections.values())


ws_manager = ConnectionManager()
