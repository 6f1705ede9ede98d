from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Protocol

# Error codes that mean "nothing was said" rather than "something broke".
SILENT_CAPTURE_CODES = frozenset({"no-speech", "aborted"})

# Error codes that mean capture cannot work at all on this client.
UNAVAILABLE_CAPTURE_CODES = frozenset({"not-allowed", "service-not-allowed", "audio-capture"})


@dataclass(frozen=True, slots=True)
class AudioFrame:
    pcm16le: bytes
    energy: float
    voiced: bool


class FrameSource(Protocol):
    async def start(self) -> None: ...

    async def stop(self) -> None: ...

    def frames(self) -> AsyncIterator[AudioFrame]: ...


class CaptureListener(Protocol):
    def on_interim_result(self, text: str) -> None: ...

    def on_final_result(self, text: str) -> None: ...

    def on_error(self, code: str) -> None: ...

    def on_end(self) -> None: ...


class CaptureEngine(ABC):
    name: str = "capture"

    @property
    @abstractmethod
    def available(self) -> bool:
        """Whether a capture can be started right now."""

    @abstractmethod
    async def start(self, listener: CaptureListener, locale: str) -> None:
        """Begin one capture; results arrive on *listener* until ``on_end``."""

    @abstractmethod
    async def stop(self) -> None:
        """Finish gracefully, delivering any pending final result."""

    @abstractmethod
    async def abort(self) -> None:
        """Discard the capture without delivering further results."""


__all__ = [
    "AudioFrame",
    "FrameSource",
    "CaptureEngine",
    "CaptureListener",
    "SILENT_CAPTURE_CODES",
    "UNAVAILABLE_CAPTURE_CODES",
]
