from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

import numpy as np
import sounddevice as sd

from kisan.capture.base import AudioFrame
from kisan.telemetry.logging import get_logger


class MicrophoneStream:
    """PortAudio input stream whose frames are handed over to the event loop."""

    def __init__(
        self,
        samplerate: int = 16_000,
        channels: int = 1,
        frame_ms: int = 30,
        energy_threshold: float = 500.0,
        device: str | int | None = None,
    ) -> None:
        self.samplerate = samplerate
        self.channels = channels
        self.frame_ms = frame_ms
        self.frame_samples = int(self.samplerate * self.frame_ms / 1000)
        self.energy_threshold = energy_threshold
        self._device = device
        self._stream: sd.InputStream | None = None
        self._queue: asyncio.Queue[AudioFrame | None] = asyncio.Queue()
        self._logger = get_logger(__name__)

    async def __aenter__(self) -> "MicrophoneStream":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    async def start(self) -> None:
        if self._stream:
            return
        loop = asyncio.get_running_loop()
        queue = self._queue

        def callback(indata, frames, time_info, status) -> None:  # type: ignore[override]
            if status:
                self._logger.warning("audio.capture.status", status=str(status))
            pcm = (indata[:, 0] * (2**15 - 1)).astype(np.int16)
            loop.call_soon_threadsafe(queue.put_nowait, self._frame(pcm))

        self._stream = sd.InputStream(
            samplerate=self.samplerate,
            channels=self.channels,
            blocksize=self.frame_samples,
            dtype="float32",
            callback=callback,
            device=self._device,
        )
        self._stream.start()
        self._logger.info(
            "audio.capture.started",
            samplerate=self.samplerate,
            frame_ms=self.frame_ms,
            energy_threshold=self.energy_threshold,
            device=self._device,
        )

    async def stop(self) -> None:
        if self._stream is None:
            return
        self._stream.stop()
        self._stream.close()
        self._stream = None
        self._queue.put_nowait(None)
        self._logger.info("audio.capture.stopped")

    async def frames(self) -> AsyncIterator[AudioFrame]:
        while True:
            frame = await self._queue.get()
            if frame is None:
                break
            yield frame

    def _frame(self, pcm: np.ndarray) -> AudioFrame:
        energy = float(np.abs(pcm).mean()) if pcm.size else 0.0
        return AudioFrame(pcm16le=pcm.tobytes(), energy=energy, voiced=energy > self.energy_threshold)


__all__ = ["MicrophoneStream"]
