from __future__ import annotations

from typing import Protocol

import numpy as np

from kisan.lang.tags import Language


class SynthesisError(Exception):
    """Speech could not be produced or played; the cycle still ends normally."""


class SpeechSynthesizer(Protocol):
    name: str

    async def speak(self, text: str, language: Language) -> None:
        """Speak *text* and return once playback has finished or been cancelled."""

    async def cancel_all(self) -> None:
        """Stop any utterance in progress and drop queued ones."""


class AudioSink(Protocol):
    async def play_bytes(self, audio: bytes, tag: str, await_completion: bool = True) -> float: ...

    async def play_array(self, data: np.ndarray, samplerate: int, tag: str, await_completion: bool = True) -> float: ...

    async def stop(self, tag: str | None = None) -> bool: ...


__all__ = ["SynthesisError", "SpeechSynthesizer", "AudioSink"]
