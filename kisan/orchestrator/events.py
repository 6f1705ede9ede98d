from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Literal

from kisan.lang.tags import Language


@dataclass(frozen=True, slots=True)
class Transcript:
    text: str
    language: Language


@dataclass(frozen=True, slots=True)
class EmptyTranscript:
    raw: str


IntentCategory = Literal["weather", "market_price", "disease", "scheme"]


@dataclass(frozen=True, slots=True)
class Matched:
    category: IntentCategory
    response_text: str
    language: Language
    commodity: str | None = None


@dataclass(frozen=True, slots=True)
class NoMatch:
    pass


NO_MATCH = NoMatch()

IntentMatch = Matched | NoMatch

Status = Literal["IDLE", "LISTENING", "PROCESSING", "SPEAKING", "ERRORED"]

ErrorKind = Literal["capture_unavailable", "capture_fault", "dispatch_failed"]


@dataclass(frozen=True, slots=True)
class SessionSnapshot:
    status: Status
    language: Language
    transcript_text: str
    response_text: str
    error_text: str
    error_kind: ErrorKind | None
    generation: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class CaptureError(Exception):
    kind: ErrorKind = "capture_fault"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code


class CaptureUnavailable(CaptureError):
    kind: ErrorKind = "capture_unavailable"


class CaptureFault(CaptureError):
    kind: ErrorKind = "capture_fault"


class InvalidTransition(RuntimeError):
    def __init__(self, current: Status, target: Status) -> None:
        super().__init__(f"Cannot move session from {current} to {target}")
        self.current = current
        self.target = target


__all__ = [
    "Transcript",
    "EmptyTranscript",
    "IntentCategory",
    "Matched",
    "NoMatch",
    "NO_MATCH",
    "IntentMatch",
    "Status",
    "ErrorKind",
    "SessionSnapshot",
    "CaptureError",
    "CaptureUnavailable",
    "CaptureFault",
    "InvalidTransition",
]
