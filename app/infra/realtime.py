from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from threading import RLock
from typing import Any, Protocol
from uuid import uuid4

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class RealtimeChannel(Protocol):
    def is_connected(self, channel_ref: str) -> bool: ...

    def emit(self, channel_ref: str, event_type: str, payload: dict[str, Any]) -> None: ...


@dataclass
class _Connection:
    websocket: WebSocket
    loop: asyncio.AbstractEventLoop
    owner_id: str


class NotificationHub:
    """Tracks live notification sockets by channel ref.

    Workflow operations run on worker threads, so ``emit`` schedules the send
    on the loop that owns the socket and returns immediately.
    """

    def __init__(self) -> None:
        self._connections: dict[str, _Connection] = {}
        self._lock = RLock()

    async def connect(self, websocket: WebSocket, owner_id: str) -> str:
        await websocket.accept()
        channel_ref = str(uuid4())
        with self._lock:
            self._connections[channel_ref] = _Connection(
                websocket=websocket,
                loop=asyncio.get_running_loop(),
                owner_id=owner_id,
            )
        await websocket.send_json({"event": "connected", "channel_ref": channel_ref})
        return channel_ref

    def disconnect(self, channel_ref: str) -> None:
        with self._lock:
            self._connections.pop(channel_ref, None)

    def is_connected(self, channel_ref: str) -> bool:
        with self._lock:
            return channel_ref in self._connections

    def owner_of(self, channel_ref: str) -> str | None:
        with self._lock:
            connection = self._connections.get(channel_ref)
        return connection.owner_id if connection is not None else None

    def emit(self, channel_ref: str, event_type: str, payload: dict[str, Any]) -> None:
        with self._lock:
            connection = self._connections.get(channel_ref)
        if connection is None:
            return
        message = {"event": event_type, "data": payload}
        coro = self._send(channel_ref, connection, message)
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is connection.loop:
            running.create_task(coro)
            return
        try:
            asyncio.run_coroutine_threadsafe(coro, connection.loop)
        except RuntimeError:
            coro.close()
            logger.warning("realtime channel %s has no running loop", channel_ref)
            self.disconnect(channel_ref)

    async def _send(self, channel_ref: str, connection: _Connection, message: dict[str, Any]) -> None:
        try:
            await connection.websocket.send_json(message)
        except Exception:
            logger.warning("dropping realtime channel %s after failed send", channel_ref)
            self.disconnect(channel_ref)


notification_hub = NotificationHub()
