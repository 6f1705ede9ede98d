from __future__ import annotations

from typing import Any

from kisan.capture.base import CaptureEngine, CaptureListener
from kisan.orchestrator.events import CaptureUnavailable
from kisan.telemetry.logging import get_logger
from kisan.ui.websocket import UIBridge

CAPTURE_MESSAGES = ("capture.interim", "capture.final", "capture.error", "capture.end")


class BrowserCapture(CaptureEngine):
    """Speech recognition delegated to a connected browser over the UI socket."""

    name = "browser"

    def __init__(self, bridge: UIBridge) -> None:
        self._bridge = bridge
        self._listener: CaptureListener | None = None
        self._logger = get_logger(__name__)
        for message_type in CAPTURE_MESSAGES:
            bridge.on(message_type, self.handle_message)

    @property
    def available(self) -> bool:
        return self._bridge.has_capability("capture")

    async def start(self, listener: CaptureListener, locale: str) -> None:
        if not self.available:
            raise CaptureUnavailable("No connected client supports speech recognition")
        self._listener = listener
        await self._bridge.send({"type": "capture.start", "locale": locale, "interim_results": True})

    async def stop(self) -> None:
        if self._listener is not None:
            await self._bridge.send({"type": "capture.stop"})

    async def abort(self) -> None:
        self._listener = None
        await self._bridge.send({"type": "capture.abort"})

    async def handle_message(self, message: dict[str, Any]) -> None:
        listener = self._listener
        if listener is None:
            self._logger.debug("capture.browser.unexpected", type=message.get("type"))
            return
        kind = message.get("type")
        if kind == "capture.interim":
            listener.on_interim_result(str(message.get("text") or ""))
        elif kind == "capture.final":
            listener.on_final_result(str(message.get("text") or ""))
        elif kind == "capture.error":
            listener.on_error(str(message.get("error") or "unknown"))
        elif kind == "capture.end":
            self._listener = None
            listener.on_end()


__all__ = ["BrowserCapture"]
