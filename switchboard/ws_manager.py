"""
WebSocket connection manager for remote operator clients.

Each connection is identified by a connection ID. Only authenticated
connections receive switchboard notifications; the manager is itself a
channel endpoint, so the mediator's hub fans out to every operator socket
through it.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Dict, Optional, Set

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class WSManager:
    """Manages WebSocket connections from operator clients."""

    def __init__(self):
        self.connections: Dict[str, WebSocket] = {}  # connection_id → WebSocket
        self.authenticated: Set[str] = set()
        self.last_ping_at: Optional[datetime] = None
        self._send_locks: Dict[str, asyncio.Lock] = {}
        self._tasks: Set[asyncio.Task] = set()

    async def connect(self, websocket: WebSocket, connection_id: str):
        """Accept and register a new WebSocket connection."""
        await websocket.accept()
        self.connections[connection_id] = websocket
        self._send_locks[connection_id] = asyncio.Lock()
        logger.info(f"Operator client connected: {connection_id}")

    def disconnect(self, connection_id: str):
        """Remove a disconnected client."""
        if self.connections.pop(connection_id, None) is None:
            return
        self.authenticated.discard(connection_id)
        self._send_locks.pop(connection_id, None)
        logger.info(f"Operator client disconnected: {connection_id}")

    def authenticate(self, connection_id: str):
        """Mark a connection as authenticated."""
        self.authenticated.add(connection_id)
        logger.info(f"Operator client authenticated: {connection_id}")

    def is_authenticated(self, connection_id: str) -> bool:
        return connection_id in self.authenticated

    async def send_to_connection(self, connection_id: str, message: dict) -> bool:
        """Send a JSON message to one authenticated client."""
        ws = self.connections.get(connection_id)
        lock = self._send_locks.get(connection_id)
        if ws and lock and connection_id in self.authenticated:
            try:
                # Sends on one socket must not interleave, or clients see reordered state
                async with lock:
                    await ws.send_json(message)
                return True
            except Exception as e:
                logger.error(f"Failed to send to {connection_id}: {e}")
                self.disconnect(connection_id)
        return False

    async def broadcast(self, message: dict):
        """Send a message to ALL authenticated clients."""
        for connection_id in list(self.authenticated):
            await self.send_to_connection(connection_id, message)

    def notify(self, message: dict) -> None:
        """Channel endpoint hook: broadcast without making the mediator wait."""
        if not self.authenticated:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"No running loop; dropping {message.get('type')} for remote clients")
            return
        task = loop.create_task(self.broadcast(message))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self):
        """Wait for broadcasts already in flight."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def send_ping_all(self):
        """Send ping to all authenticated connections."""
        self.last_ping_at = datetime.now(timezone.utc)
        for connection_id in list(self.authenticated):
            await self.send_to_connection(connection_id, {"type": "ping"})

    def get_stats(self) -> dict:
        """Connection statistics for the health endpoint."""
        return {
            "total_connections": len(self.connections),
            "authenticated_connections": len(self.authenticated),
            "last_ping_at": self.last_ping_at.isoformat() if self.last_ping_at else None,
        }
