from __future__ import annotations

import asyncio
import json
from collections.abc import Callable, Mapping
from typing import Any

from vosk import KaldiRecognizer, Model, SetLogLevel  # type: ignore[import]

from kisan.capture.base import CaptureEngine, CaptureListener, FrameSource
from kisan.lang.tags import Language, coerce_language
from kisan.orchestrator import clock
from kisan.orchestrator.events import CaptureFault, CaptureUnavailable
from kisan.telemetry.logging import get_logger


def _payload_text(payload: str, key: str) -> str:
    if not payload:
        return ""
    try:
        data = json.loads(payload)
    except json.JSONDecodeError:
        return ""
    return str(data.get(key) or "").strip()


class VoskCapture(CaptureEngine):
    """Offline recognition from the local microphone, one Vosk model per language.

    Partial hypotheses are reported as interim results. The capture ends on
    ``stop()``, after ``silence_timeout`` seconds of quiet following speech, or
    after ``max_duration`` seconds; the accumulated text is then delivered as
    the final result (or ``no-speech`` when nothing was recognised).
    """

    name = "vosk"

    def __init__(
        self,
        model_paths: Mapping[str, str],
        frame_source: Callable[[], FrameSource],
        sample_rate: int = 16_000,
        silence_timeout: float = 1.2,
        max_duration: float = 15.0,
    ) -> None:
        self._model_paths = dict(model_paths)
        self._frame_source = frame_source
        self._sample_rate = sample_rate
        self._silence_timeout = silence_timeout
        self._max_duration = max_duration
        self._models: dict[Language, Any] = {}
        self._source: FrameSource | None = None
        self._task: asyncio.Task[None] | None = None
        self._logger = get_logger(__name__)
        SetLogLevel(-1)

    @property
    def available(self) -> bool:
        return bool(self._model_paths)

    async def start(self, listener: CaptureListener, locale: str) -> None:
        if self._task is not None and not self._task.done():
            raise CaptureFault("A capture is already running", code="busy")
        recognizer = KaldiRecognizer(self._model_for(locale), self._sample_rate)
        source = self._frame_source()
        try:
            await source.start()
        except Exception as exc:
            raise CaptureUnavailable(f"Microphone could not be opened: {exc}", code="audio-capture") from exc
        self._source = source
        self._task = asyncio.create_task(self._run(source, recognizer, listener))
        self._logger.info("vosk.capture.started", locale=locale)

    async def stop(self) -> None:
        task = self._task
        if self._source is not None:
            await self._source.stop()
        if task is not None:
            await asyncio.wait([task])

    async def abort(self) -> None:
        task = self._task
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait([task])
        if self._source is not None:
            await self._source.stop()
        self._logger.info("vosk.capture.aborted")

    def _model_for(self, locale: str) -> Any:
        language = coerce_language(locale)
        model = self._models.get(language)
        if model is not None:
            return model
        path = self._model_paths.get(language)
        if not path:
            raise CaptureUnavailable(f"No Vosk model configured for '{language}'", code="language-not-supported")
        try:
            model = Model(path)
        except Exception as exc:
            raise CaptureUnavailable(f"Vosk model at {path} failed to load: {exc}") from exc
        self._models[language] = model
        return model

    async def _run(self, source: FrameSource, recognizer: Any, listener: CaptureListener) -> None:
        segments: list[str] = []
        last_partial = ""
        heard = False
        started = clock.monotonic()
        last_voice = started
        try:
            async for frame in source.frames():
                if recognizer.AcceptWaveform(frame.pcm16le):
                    text = _payload_text(recognizer.Result(), "text")
                    if text:
                        segments.append(text)
                        last_partial = ""
                        listener.on_interim_result(" ".join(segments))
                else:
                    partial = _payload_text(recognizer.PartialResult(), "partial")
                    if partial and partial != last_partial:
                        last_partial = partial
                        listener.on_interim_result(" ".join([*segments, partial]))

                now = clock.monotonic()
                if frame.voiced:
                    heard = True
                    last_voice = now
                elif heard and now - last_voice >= self._silence_timeout:
                    self._logger.debug("vosk.capture.silence")
                    break
                if now - started >= self._max_duration:
                    self._logger.debug("vosk.capture.max_duration")
                    break
            tail = _payload_text(recognizer.FinalResult(), "text")
        except Exception as exc:
            self._logger.error("vosk.capture.failed", error=str(exc))
            listener.on_error("recognizer-error")
            listener.on_end()
            return
        finally:
            await source.stop()
            self._source = None

        if tail:
            segments.append(tail)
        text = " ".join(segments)
        if text:
            listener.on_final_result(text)
        else:
            listener.on_error("no-speech")
        listener.on_end()


__all__ = ["VoskCapture"]
