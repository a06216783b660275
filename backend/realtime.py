# realtime.py — Per-workspace registry of live WebSocket connections
import uuid
import logging
from typing import Any, Dict, Optional, Tuple

logger = logging.getLogger("taskforge.ws")


class ConnectionManager:
    """Manages WebSocket connections per workspace.

    Each connection is keyed by workspace id and a connection id, so one user
    may hold several sockets (tabs, devices) in the same workspace. Delivery
    is best effort: a socket that fails to send is dropped from the registry.
    """

    def __init__(self):
        self._connections: Dict[str, Dict[str, Tuple[str, Any]]] = {}  # workspace_id -> {conn_id -> (user_id, ws)}

    async def connect(self, websocket, workspace_id: str, user_id: str) -> str:
        await websocket.accept()
        connection_id = str(uuid.uuid4())
        self._connections.setdefault(workspace_id, {})[connection_id] = (user_id, websocket)
        logger.info(f"WS connected: user={user_id[:8]} workspace={workspace_id[:8]} conn={connection_id[:8]}")
        return connection_id

    def disconnect(self, workspace_id: str, connection_id: str):
        conns = self._connections.get(workspace_id)
        if conns is None:
            return
        conns.pop(connection_id, None)
        if not conns:
            del self._connections[workspace_id]
        logger.info(f"WS disconnected: workspace={workspace_id[:8]} conn={connection_id[:8]}")

    async def _send(self, workspace_id: str, connection_id: str, websocket, message: dict) -> bool:
        try:
            await websocket.send_json(message)
            return True
        except Exception as e:
            logger.debug(f"WS send failed, dropping conn={connection_id[:8]}: {e}")
            self.disconnect(workspace_id, connection_id)
            return False

    async def send_to_user(self, workspace_id: str, user_id: str, message: dict) -> int:
        delivered = 0
        for conn_id, (uid, ws) in list(self._connections.get(workspace_id, {}).items()):
            if uid == user_id and await self._send(workspace_id, conn_id, ws, message):
                delivered += 1
        return delivered

    async def broadcast_to_workspace(self, workspace_id: str, message: dict, exclude_user: Optional[str] = None) -> int:
        delivered = 0
        for conn_id, (uid, ws) in list(self._connections.get(workspace_id, {}).items()):
            if uid == exclude_user:
                continue
            if await self._send(workspace_id, conn_id, ws, message):
                delivered += 1
        return delivered

    def connection_count(self, workspace_id: str) -> int:
        return len(self._connections.get(workspace_id, {}))

    def get_online_users(self, workspace_id: str) -> list:
        return sorted({uid for uid, _ in self._connections.get(workspace_id, {}).values()})

    def get_stats(self) -> dict:
        return {
            "total_connections": sum(len(c) for c in self._connections.values()),
            "workspaces": len(self._connections),
        }

    def clear(self):
        self._connections.clear()


# Global connection manager
manager = ConnectionManager()
