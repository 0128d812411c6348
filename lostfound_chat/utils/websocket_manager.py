import logging
from typing import Dict, Set

from fastapi import WebSocket


logger = logging.getLogger(__name__)


class ConnectionManager:
    """Open sockets of this worker, keyed by user. A user may hold several."""

    def __init__(self) -> None:
        self.active_connections: Dict[str, Set[WebSocket]] = {}

    async def connect(self, user_id: str, websocket: WebSocket) -> None:
        await websocket.accept()
        self.active_connections.setdefault(user_id, set()).add(websocket)
        logger.debug("%s connected (%d sockets)", user_id, len(self.active_connections[user_id]))

    def disconnect(self, user_id: str, websocket: WebSocket) -> None:
        sockets = self.active_connections.get(user_id)
        if sockets is None:
            return
        sockets.discard(websocket)
        if not sockets:
            del self.active_connections[user_id]

    def is_online(self, user_id: str) -> bool:
        return bool(self.active_connections.get(user_id))

    async def deliver(self, user_id: str, payload: str) -> int:
        """Send an encoded event to every socket of a user; returns how many took it.

        A socket that fails to send is dropped from the registry.
        """
        delivered = 0
        for socket in list(self.active_connections.get(user_id, ())):
            try:
                await socket.send_text(payload)
            except Exception as exc:
                logger.debug("Dropping socket of %s: %s", user_id, exc)
                self.disconnect(user_id, socket)
                continue
            delivered += 1
        return delivered


manager = ConnectionManager()
