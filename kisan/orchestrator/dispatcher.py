from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import aclosing
from typing import Protocol

from kisan.intents.matcher import IntentMatcher
from kisan.lang.script_detect import normalize_transcript
from kisan.lang.tags import Language
from kisan.llm.types import RemoteCompletionError
from kisan.orchestrator.events import EmptyTranscript, Matched, SessionSnapshot, Transcript
from kisan.orchestrator.session_state import SessionState
from kisan.telemetry.logging import get_logger
from kisan.tts.base import SpeechSynthesizer, SynthesisError


class CompletionService(Protocol):
    def stream(self, text: str, language: Language) -> AsyncIterator[str]: ...


class ResponseDispatcher:
    """Turns one transcript into one spoken response.

    Local intents answer immediately; anything else goes to the remote model,
    whose snapshots are published as they arrive. Remote failures never
    surface as errors: the localized fallback text is spoken instead. Every
    state mutation is tied to the generation captured when processing began,
    so a cancelled cycle stops publishing the moment the session resets.
    """

    def __init__(
        self,
        state: SessionState,
        matcher: IntentMatcher,
        completion: CompletionService,
        synthesizer: SpeechSynthesizer,
    ) -> None:
        self._state = state
        self._matcher = matcher
        self._completion = completion
        self._synthesizer = synthesizer
        self._logger = get_logger(__name__)

    async def handle(self, text: str) -> SessionSnapshot:
        transcript = normalize_transcript(text, self._state.language)
        if isinstance(transcript, EmptyTranscript):
            self._logger.info("dispatch.empty_transcript", raw_len=len(transcript.raw))
            if self._state.status == "LISTENING":
                self._state.finish_for(self._state.generation)
            return self._state.snapshot()

        generation = self._state.begin_processing(transcript.text)
        try:
            reply = await self._respond(generation, transcript)
            if reply is not None:
                await self._speak(generation, reply, transcript.language)
        except Exception as exc:
            self._logger.exception("dispatch.failed", generation=generation)
            self._state.report_fault_for(generation, "dispatch_failed", str(exc) or exc.__class__.__name__)
        return self._state.snapshot()

    async def _respond(self, generation: int, transcript: Transcript) -> str | None:
        match = self._matcher.match(transcript)
        if isinstance(match, Matched):
            self._logger.info(
                "dispatch.fast_path",
                intent=match.category,
                commodity=match.commodity,
                language=match.language,
            )
            if not self._state.update_response_for(generation, match.response_text):
                return None
            return match.response_text

        self._logger.info("dispatch.remote", language=transcript.language)
        reply = ""
        try:
            async with aclosing(self._completion.stream(transcript.text, transcript.language)) as chunks:
                async for chunk in chunks:
                    if not self._state.update_response_for(generation, chunk):
                        self._logger.info("dispatch.stale", generation=generation)
                        return None
                    reply = chunk
        except RemoteCompletionError as exc:
            self._logger.warning("completion.failed", **exc.to_log())
            reply = self._matcher.catalog.fallback_text(transcript.language)
            if not self._state.update_response_for(generation, reply):
                return None
        return reply

    async def _speak(self, generation: int, text: str, language: Language) -> None:
        if not self._state.begin_speaking_for(generation):
            return
        await self._synthesizer.cancel_all()
        try:
            await self._synthesizer.speak(text, language)
        except SynthesisError as exc:
            self._logger.warning("dispatch.synthesis_failed", synthesizer=self._synthesizer.name, error=str(exc))
        self._state.finish_for(generation)


__all__ = ["ResponseDispatcher", "CompletionService"]
