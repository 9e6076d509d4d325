"""WebSocket clients of the session feed."""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Tracks connected clients and pushes session snapshots to them."""

    def __init__(self, send_timeout: float = 5.0):
        self.clients: set[WebSocket] = set()
        self.send_timeout = send_timeout
        self._last_sessions: list[dict[str, Any]] | None = None

    async def connect(self, websocket: WebSocket, hello: dict[str, Any]) -> None:
        """Accept a client and send it the current snapshot before any push."""
        await websocket.accept()
        await websocket.send_json(hello)
        self.clients.add(websocket)

    def disconnect(self, websocket: WebSocket) -> None:
        self.clients.discard(websocket)

    async def _send(self, websocket: WebSocket, message: str) -> bool:
        try:
            await asyncio.wait_for(websocket.send_text(message), self.send_timeout)
        except Exception as e:
            logger.debug("Dropping WebSocket client: %s", e)
            return False
        return True

    async def push_sessions(self, payload: dict[str, Any]) -> int:
        """
        Send a ``sessions`` message when the session list has changed.

        Clients whose send fails or times out are dropped.
        Returns the number of clients reached.
        """
        if not self.clients or payload["sessions"] == self._last_sessions:
            return 0
        self._last_sessions = payload["sessions"]

        message = json.dumps({
            "type": "sessions",
            **payload,
            "server_time": datetime.now(timezone.utc).isoformat(),
        }, default=str)
        clients = list(self.clients)
        results = await asyncio.gather(*(self._send(ws, message) for ws in clients))
        for ws, ok in zip(clients, results):
            if not ok:
                self.disconnect(ws)
        return sum(results)

    @property
    def client_count(self) -> int:
        return len(self.clients)
