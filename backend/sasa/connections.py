"""Registry of live WebSocket connections, one per user.

The registry is a routing table, not a presence record: a user missing from
it is merely unreachable right now. Persisted messages and notification rows
stay the source of truth, and every push is best-effort.
"""

from typing import Annotated

from fastapi import Depends, WebSocket
from starlette.requests import HTTPConnection
from starlette.websockets import WebSocketState

from .logging_config import get_logger

logger = get_logger("sasa.connections")


class ConnectionManager:
    """Maps user ids to their open WebSocket.

    Created once by the app factory and shared through ``app.state``.
    """

    def __init__(self):
        self._connections: dict[str, WebSocket] = {}

    def register(self, user_id: str, websocket: WebSocket) -> WebSocket | None:
        """Route ``user_id`` to this socket. Returns the socket it replaced, if any."""
        previous = self._connections.get(user_id)
        self._connections[user_id] = websocket
        logger.info(f"Connection registered | user={user_id} | online={len(self._connections)}")
        return previous if previous is not websocket else None

    def unregister(self, user_id: str, websocket: WebSocket) -> bool:
        """Forget ``user_id`` if it still routes to ``websocket``.

        A newer socket for the same user (another tab) stays registered.
        """
        if self._connections.get(user_id) is not websocket:
            return False
        del self._connections[user_id]
        logger.info(f"Connection removed | user={user_id} | online={len(self._connections)}")
        return True

    def get(self, user_id: str) -> WebSocket | None:
        return self._connections.get(user_id)

    def is_connected(self, user_id: str) -> bool:
        ws = self._connections.get(user_id)
        return ws is not None and ws.client_state == WebSocketState.CONNECTED

    async def send(self, user_id: str | None, frame: dict) -> bool:
        """Push one JSON frame. Returns False when the user is unreachable."""
        if not user_id or not self.is_connected(user_id):
            return False
        try:
            await self._connections[user_id].send_json(frame)
        except Exception as e:
            logger.warning(f"Push failed | user={user_id} | type={frame.get('type')} | {e}")
            return False
        return True

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, user_id: str) -> bool:
        return user_id in self._connections


def get_connections(conn: HTTPConnection) -> ConnectionManager:
    """FastAPI dependency returning the app-wide connection registry."""
    return conn.app.state.connections


Connections = Annotated[ConnectionManager, Depends(get_connections)]
