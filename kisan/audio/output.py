from __future__ import annotations

import asyncio
import io

import numpy as np
import sounddevice as sd
import soundfile as sf

from kisan.telemetry.logging import get_logger
from kisan.tts.base import SynthesisError


class AudioOutputController:
    """Plays one synthesized utterance at a time on the default output device."""

    def __init__(self, device: str | int | None = None) -> None:
        self._device = device
        self._lock = asyncio.Lock()
        self._current_tag: str | None = None
        self._current_done: asyncio.Event | None = None
        self._logger = get_logger(__name__)

    @property
    def current_tag(self) -> str | None:
        return self._current_tag

    async def play_bytes(self, audio: bytes, tag: str, await_completion: bool = True) -> float:
        """Decode an encoded buffer (wav, flac, ogg) and play it."""
        if not audio:
            raise SynthesisError("Speech endpoint returned no audio")
        try:
            with io.BytesIO(audio) as buffer:
                data, samplerate = sf.read(buffer, dtype="float32")
        except RuntimeError as exc:
            raise SynthesisError(f"Could not decode speech audio: {exc}") from exc
        return await self.play_array(np.asarray(data), int(samplerate), tag, await_completion=await_completion)

    async def play_array(
        self,
        data: np.ndarray,
        samplerate: int,
        tag: str,
        await_completion: bool = True,
    ) -> float:
        if samplerate <= 0 or data.size == 0:
            raise SynthesisError(f"Invalid audio payload ({samplerate} Hz, {int(data.size)} samples)")

        duration = data.shape[0] / float(samplerate)
        loop = asyncio.get_running_loop()
        done_event = asyncio.Event()

        def _play() -> None:
            try:
                sd.play(data, samplerate=samplerate, blocking=False, device=self._device)
                sd.wait()
            except sd.PortAudioError as exc:
                self._logger.error("audio.output.play_error", tag=tag, error=str(exc))
            finally:
                loop.call_soon_threadsafe(done_event.set)

        async with self._lock:
            await self._stop_locked()
            self._current_tag = tag
            self._current_done = done_event
            task = asyncio.create_task(asyncio.to_thread(_play))

        self._logger.debug("audio.output.play", tag=tag, duration=round(duration, 3))
        if await_completion:
            await self._finalise(task, done_event)
        else:
            asyncio.create_task(self._finalise(task, done_event))
        return duration

    async def stop(self, tag: str | None = None) -> bool:
        """Stop current playback if tags match (or any playback when tag is None)."""
        async with self._lock:
            if self._current_tag is None:
                return False
            if tag is not None and self._current_tag != tag:
                return False
            await self._stop_locked()
        return True

    async def _stop_locked(self) -> None:
        done = self._current_done
        if done is None:
            return
        sd.stop()
        await done.wait()

    async def _finalise(self, task: asyncio.Task[None], done_event: asyncio.Event) -> None:
        await done_event.wait()
        await task
        async with self._lock:
            if self._current_done is done_event:
                self._current_tag = None
                self._current_done = None


__all__ = ["AudioOutputController"]
