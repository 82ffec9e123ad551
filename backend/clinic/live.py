# clinic/live.py
#
# Open WebSocket connections per user. Used by the live notification feed and
# to tell a user's other tabs that the session was closed.

import logging
from typing import Any, Dict, List

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class ConnectionManager:
    def __init__(self):
        self.active_connections: Dict[str, List[WebSocket]] = {}

    async def connect(self, user_id: str, websocket: WebSocket):
        await websocket.accept()
        self.active_connections.setdefault(user_id, []).append(websocket)
        logger.info("LIVE: User %s connected (%d open)", user_id, len(self.active_connections[user_id]))

    def disconnect(self, user_id: str, websocket: WebSocket):
        connections = self.active_connections.get(user_id, [])
        if websocket in connections:
            connections.remove(websocket)
        if not connections:
            self.active_connections.pop(user_id, None)

    async def send_to_user(self, user_id: str, message: Dict[str, Any]) -> int:
        sent = 0
        for connection in list(self.active_connections.get(user_id, [])):
            try:
                await connection.send_json(message)
                sent += 1
            except Exception as e:
                logger.warning("LIVE: Dropping dead connection for %s: %s", user_id, e)
                self.disconnect(user_id, connection)
        return sent


manager = ConnectionManager()
