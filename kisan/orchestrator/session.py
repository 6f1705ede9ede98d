from __future__ import annotations

import asyncio
from uuid import uuid4

from kisan.capture.base import SILENT_CAPTURE_CODES, UNAVAILABLE_CAPTURE_CODES, CaptureEngine
from kisan.lang.tags import coerce_language, locale_for
from kisan.orchestrator.dispatcher import ResponseDispatcher
from kisan.orchestrator.events import CaptureError, CaptureUnavailable, SessionSnapshot
from kisan.orchestrator.session_state import SessionState
from kisan.telemetry.logging import bind_session, get_logger
from kisan.tts.base import SpeechSynthesizer

CAPTURE_UNAVAILABLE_TEXT = "Speech recognition is not available on this device."


class _CycleListener:
    """Capture callbacks stamped with the listening cycle they were created for."""

    def __init__(self, session: "VoiceSession", cycle: int) -> None:
        self._session = session
        self._cycle = cycle

    def on_interim_result(self, text: str) -> None:
        self._session._on_interim(self._cycle, text)

    def on_final_result(self, text: str) -> None:
        self._session._on_final(self._cycle, text)

    def on_error(self, code: str) -> None:
        self._session._on_error(self._cycle, code)

    def on_end(self) -> None:
        self._session._on_end(self._cycle)


class VoiceSession:
    """Owns the capture engine, the dispatch task and the synthesizer for one user."""

    def __init__(
        self,
        state: SessionState,
        dispatcher: ResponseDispatcher,
        capture: CaptureEngine,
        synthesizer: SpeechSynthesizer,
        session_id: str | None = None,
    ) -> None:
        self.session_id = session_id or uuid4().hex
        self._state = state
        self._dispatcher = dispatcher
        self._capture = capture
        self._synthesizer = synthesizer
        self._cycle: int | None = None
        self._forwarded = False
        self._final_text: str | None = None
        self._interim_text = ""
        self._task: asyncio.Task[SessionSnapshot] | None = None
        self._logger = get_logger(__name__)

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def capture(self) -> CaptureEngine:
        return self._capture

    @property
    def synthesizer(self) -> SpeechSynthesizer:
        return self._synthesizer

    @property
    def dispatch_task(self) -> asyncio.Task[SessionSnapshot] | None:
        return self._task

    def snapshot(self) -> SessionSnapshot:
        return self._state.snapshot()

    async def start_listening(self) -> SessionSnapshot:
        status = self._state.status
        if status != "IDLE" and status != "ERRORED":
            self._logger.info("session.start.ignored", status=status)
            return self.snapshot()

        bind_session(self.session_id, self._state.language)
        if not self._capture.available:
            self._logger.warning("capture.unavailable", engine=self._capture.name)
            self._state.fail("capture_unavailable", CAPTURE_UNAVAILABLE_TEXT)
            return self.snapshot()

        cycle = self._state.begin_listening()
        self._cycle = cycle
        self._forwarded = False
        self._final_text = None
        self._interim_text = ""
        locale = locale_for(self._state.language)
        self._logger.info("session.start", engine=self._capture.name, locale=locale, generation=cycle)
        try:
            await self._capture.start(_CycleListener(self, cycle), locale)
        except CaptureUnavailable as exc:
            self._logger.warning("capture.unavailable", engine=self._capture.name, error=str(exc))
            self._cycle = None
            self._state.fail(exc.kind, str(exc))
        except CaptureError as exc:
            self._logger.warning("capture.fault", engine=self._capture.name, code=exc.code, error=str(exc))
            self._cycle = None
            self._state.report_fault_for(cycle, exc.kind, str(exc))
        return self.snapshot()

    async def stop_listening(self) -> SessionSnapshot:
        cycle = self._cycle
        if cycle is None or self._state.status != "LISTENING":
            return self.snapshot()
        self._logger.info("session.stop", generation=cycle)
        await self._capture.stop()
        self._forward(cycle)
        return self.snapshot()

    async def cancel(self) -> SessionSnapshot:
        await self._interrupt("cancel")
        return self.snapshot()

    async def set_language(self, tag: str) -> SessionSnapshot:
        language = coerce_language(tag)
        await self._interrupt("set_language")
        self._state.set_language(language)
        bind_session(self.session_id, language)
        self._logger.info("session.language", language=language)
        return self.snapshot()

    async def stop_speaking(self) -> SessionSnapshot:
        if self._state.status == "SPEAKING":
            self._logger.info("session.stop_speaking")
            await self._synthesizer.cancel_all()
        return self.snapshot()

    async def submit_text(self, text: str) -> SessionSnapshot:
        """Dispatch typed text as if it had been heard, and wait for the cycle to finish."""
        if self._state.busy:
            self._logger.info("session.submit.ignored", status=self._state.status)
            return self.snapshot()
        bind_session(self.session_id, self._state.language)
        if self._state.status == "LISTENING":
            self._cycle = None
            await self._capture.abort()
        elif self._state.status == "ERRORED":
            self._state.reset()
        task = self._launch(text)
        await asyncio.wait([task])
        return self.snapshot()

    async def aclose(self) -> None:
        await self._interrupt("shutdown")

    async def _interrupt(self, reason: str) -> None:
        listening = self._state.status == "LISTENING"
        self._cycle = None
        self._state.reset()
        self._logger.info("session.interrupt", reason=reason)
        if listening:
            await self._capture.abort()
        task = self._task
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait([task])
        await self._synthesizer.cancel_all()

    def _on_interim(self, cycle: int, text: str) -> None:
        if cycle != self._cycle or self._forwarded:
            return
        self._interim_text = text
        self._state.update_transcript(text)

    def _on_final(self, cycle: int, text: str) -> None:
        if cycle != self._cycle or self._forwarded:
            return
        self._final_text = text
        self._state.update_transcript(text)
        self._forward(cycle)

    def _on_error(self, cycle: int, code: str) -> None:
        if cycle != self._cycle or self._forwarded:
            return
        if code in SILENT_CAPTURE_CODES:
            self._logger.info("capture.silent", code=code)
            self._forward(cycle)
            return
        self._forwarded = True
        self._cycle = None
        if code in UNAVAILABLE_CAPTURE_CODES:
            self._logger.warning("capture.unavailable", engine=self._capture.name, code=code)
            self._state.fail("capture_unavailable", CAPTURE_UNAVAILABLE_TEXT)
            return
        self._logger.warning("capture.fault", engine=self._capture.name, code=code)
        self._state.report_fault_for(cycle, "capture_fault", f"Speech recognition error: {code}")

    def _on_end(self, cycle: int) -> None:
        self._forward(cycle)

    def _forward(self, cycle: int) -> None:
        """Hand the cycle's best transcript to the dispatcher, at most once per cycle."""
        if cycle != self._cycle or self._forwarded:
            return
        if not self._state.is_current(cycle) or self._state.status != "LISTENING":
            return
        self._forwarded = True
        text = self._final_text if self._final_text is not None else self._interim_text
        self._logger.info("session.forward", generation=cycle, final=self._final_text is not None)
        self._launch(text)

    def _launch(self, text: str) -> asyncio.Task[SessionSnapshot]:
        task = asyncio.create_task(self._dispatcher.handle(text))
        self._task = task
        task.add_done_callback(self._dispatch_done)
        return task

    def _dispatch_done(self, task: asyncio.Task[SessionSnapshot]) -> None:
        if self._task is task:
            self._task = None
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._logger.error("dispatch.failed", error=str(exc), error_type=exc.__class__.__name__)


__all__ = ["VoiceSession", "CAPTURE_UNAVAILABLE_TEXT"]
