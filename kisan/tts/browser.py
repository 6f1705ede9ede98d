from __future__ import annotations

import asyncio
from typing import Any

from kisan.lang.tags import Language, locale_for
from kisan.telemetry.logging import get_logger
from kisan.tts.base import SynthesisError
from kisan.ui.websocket import UIBridge


class BrowserSynthesizer:
    """Speech synthesis performed by the connected browser.

    ``speak`` sends ``speech.speak`` and waits for the matching ``speech.end``
    (or ``speech.error``). ``cancel_all`` releases every waiting call and tells
    the browser to drop its queue.
    """

    name = "browser"

    def __init__(self, bridge: UIBridge, timeout: float = 30.0) -> None:
        self._bridge = bridge
        self._timeout = timeout
        self._utterance = 0
        self._pending: dict[int, asyncio.Future[None]] = {}
        self._logger = get_logger(__name__)
        bridge.on("speech.end", self.handle_message)
        bridge.on("speech.error", self.handle_message)

    async def speak(self, text: str, language: Language) -> None:
        if not self._bridge.has_capability("synthesis"):
            raise SynthesisError("No connected client supports speech synthesis")
        self._utterance += 1
        utterance = self._utterance
        done: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._pending[utterance] = done
        await self._bridge.send(
            {"type": "speech.speak", "id": utterance, "text": text, "locale": locale_for(language)}
        )
        try:
            await asyncio.wait_for(done, self._timeout)
        except asyncio.TimeoutError as exc:
            raise SynthesisError(f"No speech.end within {self._timeout:.0f}s") from exc
        finally:
            self._pending.pop(utterance, None)

    async def cancel_all(self) -> None:
        pending = list(self._pending.values())
        self._pending.clear()
        for done in pending:
            if not done.done():
                done.set_result(None)
        if self._bridge.client_count:
            await self._bridge.send({"type": "speech.cancel"})

    async def handle_message(self, message: dict[str, Any]) -> None:
        done = self._pending.get(message.get("id"))  # type: ignore[arg-type]
        if done is None or done.done():
            return
        if message.get("type") == "speech.error":
            self._logger.warning("speech.browser.error", error=message.get("error"))
            done.set_exception(SynthesisError(str(message.get("error") or "speech synthesis failed")))
        else:
            done.set_result(None)


__all__ = ["BrowserSynthesizer"]
