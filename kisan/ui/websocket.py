from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from kisan.orchestrator.events import SessionSnapshot
from kisan.telemetry.logging import get_logger

MessageHandler = Callable[[dict[str, Any]], Awaitable[None]]
SnapshotSource = Callable[[], SessionSnapshot]


@dataclass(slots=True)
class ClientCapabilities:
    capture: bool = False
    synthesis: bool = False


class UIBridge:
    """WebSocket channel to the browser UI.

    Outbound messages (state snapshots, capture and speech requests) go through
    one queue so every client sees them in the order they were produced.
    Inbound messages are routed by their ``type`` to registered handlers; a
    client announces what it can do with a ``hello`` message.
    """

    def __init__(self, path: str = "/ws/voice") -> None:
        self._clients: dict[WebSocket, ClientCapabilities] = {}
        self._router = APIRouter()
        self._router.add_api_websocket_route(path, self._websocket_handler)
        self._lock = asyncio.Lock()
        self._handlers: dict[str, MessageHandler] = {}
        self._outbox: asyncio.Queue[dict[str, Any] | None] | None = None
        self._pump: asyncio.Task[None] | None = None
        self._snapshot_source: SnapshotSource | None = None
        self._logger = get_logger(__name__)

    @property
    def router(self) -> APIRouter:
        return self._router

    @property
    def client_count(self) -> int:
        return len(self._clients)

    def on(self, message_type: str, handler: MessageHandler) -> None:
        self._handlers[message_type] = handler

    def set_snapshot_source(self, source: SnapshotSource) -> None:
        self._snapshot_source = source

    def has_capability(self, name: str) -> bool:
        return any(getattr(caps, name, False) for caps in self._clients.values())

    def start(self) -> None:
        """Begin delivering outbound messages; must run on the serving loop."""
        if self._pump is not None:
            return
        self._lock = asyncio.Lock()
        self._outbox = asyncio.Queue()
        self._pump = asyncio.create_task(self._drain(self._outbox))

    async def aclose(self) -> None:
        pump = self._pump
        outbox = self._outbox
        if pump is None or outbox is None:
            return
        self._pump = None
        self._outbox = None
        outbox.put_nowait(None)
        await asyncio.wait([pump])

    def publish_snapshot(self, snapshot: SessionSnapshot) -> None:
        """State listener: queue the snapshot for every connected client."""
        self._enqueue({"type": "state", "payload": snapshot.to_dict()})

    async def send(self, message: dict[str, Any]) -> None:
        self._enqueue(message)

    def _enqueue(self, message: dict[str, Any]) -> None:
        if self._outbox is None:
            self._logger.debug("ui.message.dropped", type=message.get("type"))
            return
        self._outbox.put_nowait(message)

    async def dispatch(self, message: dict[str, Any]) -> None:
        kind = message.get("type")
        handler = self._handlers.get(kind) if isinstance(kind, str) else None
        if handler is None:
            self._logger.warning("ui.message.unhandled", type=kind)
            return
        await handler(message)

    async def _drain(self, outbox: asyncio.Queue[dict[str, Any] | None]) -> None:
        while True:
            message = await outbox.get()
            if message is None:
                break
            await self._broadcast(message)

    async def _broadcast(self, message: dict[str, Any]) -> None:
        async with self._lock:
            send_tasks = [client.send_json(message) for client in self._clients]
        if send_tasks:
            await asyncio.gather(*send_tasks, return_exceptions=True)

    async def _websocket_handler(self, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            self._clients[websocket] = ClientCapabilities()
        self._logger.info("ui.client.connected", count=len(self._clients))
        if self._snapshot_source is not None:
            await websocket.send_json({"type": "state", "payload": self._snapshot_source().to_dict()})
        try:
            while True:
                message = await websocket.receive_json()
                if not isinstance(message, dict):
                    continue
                if message.get("type") == "hello":
                    self._clients[websocket] = ClientCapabilities(
                        capture=bool(message.get("capture")),
                        synthesis=bool(message.get("synthesis")),
                    )
                    caps = self._clients[websocket]
                    self._logger.info("ui.client.hello", capture=caps.capture, synthesis=caps.synthesis)
                    continue
                try:
                    await self.dispatch(message)
                except ValueError as exc:
                    await websocket.send_json({"type": "error", "message": str(exc)})
        except WebSocketDisconnect:
            pass
        finally:
            async with self._lock:
                self._clients.pop(websocket, None)
            self._logger.info("ui.client.disconnected", count=len(self._clients))


__all__ = ["UIBridge", "ClientCapabilities", "MessageHandler"]
