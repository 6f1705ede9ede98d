from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, Protocol

from kisan.lang.tags import Language

FailureReason = Literal["missing_credential", "http_error", "empty_result"]


@dataclass(frozen=True, slots=True)
class CompletionRequest:
    model: str
    language: Language
    prompt_text: str
    max_output_tokens: int

    def to_trace(self) -> dict[str, Any]:
        return {
            "model": self.model,
            "language": self.language,
            "prompt_len": len(self.prompt_text),
            "max_output_tokens": self.max_output_tokens,
        }


@dataclass(slots=True)
class CompletionResponse:
    text: str | None
    error_code: int | None = None
    error_message: str | None = None

    @property
    def ok(self) -> bool:
        return self.error_code is None and self.error_message is None


class CompletionProvider(Protocol):
    name: str

    @property
    def has_credential(self) -> bool: ...

    async def generate(self, request: CompletionRequest) -> CompletionResponse: ...


class RemoteCompletionError(Exception):
    """Base for remote fallback failures; the dispatcher turns all of them into the fallback text."""

    reason: FailureReason

    def to_log(self) -> dict[str, Any]:
        return {"reason": self.reason, "error": str(self)}


class MissingCredential(RemoteCompletionError):
    reason: FailureReason = "missing_credential"

    def __init__(self, provider: str) -> None:
        super().__init__(f"No API key configured for {provider}")
        self.provider = provider


class RemoteHttpError(RemoteCompletionError):
    reason: FailureReason = "http_error"

    def __init__(self, status_code: int | None, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message

    def to_log(self) -> dict[str, Any]:
        return {"reason": self.reason, "status_code": self.status_code, "error": self.message}


class EmptyResult(RemoteCompletionError):
    reason: FailureReason = "empty_result"

    def __init__(self) -> None:
        super().__init__("Provider returned no text")


__all__ = [
    "FailureReason",
    "CompletionRequest",
    "CompletionResponse",
    "CompletionProvider",
    "RemoteCompletionError",
    "MissingCredential",
    "RemoteHttpError",
    "EmptyResult",
]
