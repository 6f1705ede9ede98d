from __future__ import annotations

from collections.abc import Callable

from kisan.lang.tags import Language
from kisan.orchestrator.events import ErrorKind, InvalidTransition, SessionSnapshot, Status
from kisan.telemetry.logging import get_logger

StateListener = Callable[[SessionSnapshot], None]

TRANSITIONS: dict[Status, frozenset[Status]] = {
    "IDLE": frozenset({"LISTENING", "PROCESSING", "ERRORED"}),
    "LISTENING": frozenset({"PROCESSING", "IDLE", "ERRORED"}),
    "PROCESSING": frozenset({"SPEAKING", "IDLE", "ERRORED"}),
    "SPEAKING": frozenset({"IDLE", "ERRORED"}),
    "ERRORED": frozenset({"IDLE"}),
}


class SessionState:
    """The single mutable record of one voice session.

    Status lives in one field, so listening, processing and speaking are
    mutually exclusive. Every reset bumps ``generation``; work started on behalf
    of an older generation passes it back to the ``*_for`` methods, which refuse
    to touch the record once it is stale. Listeners receive a snapshot after
    every mutation, in mutation order.
    """

    def __init__(self, language: Language) -> None:
        self._status: Status = "IDLE"
        self._language: Language = language
        self._transcript = ""
        self._response = ""
        self._error_text = ""
        self._error_kind: ErrorKind | None = None
        self._generation = 0
        self._listeners: list[StateListener] = []
        self._logger = get_logger(__name__)

    @property
    def status(self) -> Status:
        return self._status

    @property
    def language(self) -> Language:
        return self._language

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def transcript_text(self) -> str:
        return self._transcript

    @property
    def response_text(self) -> str:
        return self._response

    @property
    def error_kind(self) -> ErrorKind | None:
        return self._error_kind

    @property
    def busy(self) -> bool:
        return self._status in ("PROCESSING", "SPEAKING")

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            status=self._status,
            language=self._language,
            transcript_text=self._transcript,
            response_text=self._response,
            error_text=self._error_text,
            error_kind=self._error_kind,
            generation=self._generation,
        )

    def is_current(self, generation: int) -> bool:
        return generation == self._generation

    def reset(self) -> int:
        """Back to IDLE with every field cleared; invalidates in-flight work."""
        self._generation += 1
        self._status = "IDLE"
        self._clear()
        self._publish()
        return self._generation

    def begin_listening(self) -> int:
        self._require("LISTENING")
        self._generation += 1
        self._clear()
        self._move("LISTENING")
        return self._generation

    def set_language(self, language: Language) -> None:
        if language == self._language:
            return
        self._language = language
        self._publish()

    def update_transcript(self, text: str) -> None:
        if self._status != "LISTENING":
            return
        self._transcript = text
        self._publish()

    def begin_processing(self, transcript: str) -> int:
        """Start working on *transcript*; returns the generation the work belongs to."""
        self._require("PROCESSING")
        if self._status != "LISTENING":
            self._generation += 1
            self._clear()
        self._transcript = transcript
        self._move("PROCESSING")
        return self._generation

    def update_response_for(self, generation: int, text: str) -> bool:
        if not self.is_current(generation) or self._status != "PROCESSING":
            return False
        self._response = text
        self._publish()
        return True

    def begin_speaking_for(self, generation: int) -> bool:
        if not self.is_current(generation) or self._status != "PROCESSING":
            return False
        self._move("SPEAKING")
        return True

    def finish_for(self, generation: int) -> bool:
        """End the cycle in IDLE, keeping transcript and response on display."""
        if not self.is_current(generation) or self._status not in ("LISTENING", "PROCESSING", "SPEAKING"):
            return False
        self._move("IDLE")
        return True

    def report_fault_for(self, generation: int, kind: ErrorKind, message: str) -> bool:
        """End the cycle in IDLE with an error banner; the user retries by hand."""
        if not self.is_current(generation) or self._status == "ERRORED":
            return False
        self._error_kind = kind
        self._error_text = message
        if self._status == "IDLE":
            self._publish()
        else:
            self._move("IDLE")
        return True

    def fail(self, kind: ErrorKind, message: str) -> None:
        """Enter ERRORED; only reset() or begin_listening() leave it."""
        self._error_kind = kind
        self._error_text = message
        if self._status == "ERRORED":
            self._publish()
            return
        self._move("ERRORED")

    def _clear(self) -> None:
        self._transcript = ""
        self._response = ""
        self._error_text = ""
        self._error_kind = None

    def _require(self, target: Status) -> None:
        current = self._status
        if current == "ERRORED" and target == "LISTENING":
            # A new listening cycle implies the reset out of ERRORED.
            current = "IDLE"
        if target not in TRANSITIONS[current]:
            raise InvalidTransition(self._status, target)

    def _move(self, target: Status) -> None:
        self._require(target)
        current = self._status
        self._status = target
        self._logger.debug("state.transition", previous=current, state=target, generation=self._generation)
        self._publish()

    def _publish(self) -> None:
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            listener(snapshot)


__all__ = ["SessionState", "StateListener", "TRANSITIONS"]
