from __future__ import annotations

from collections.abc import AsyncIterator

import regex as re

from kisan.intents.catalog import IntentCatalog
from kisan.lang.tags import Language
from kisan.llm.types import (
    CompletionProvider,
    CompletionRequest,
    EmptyResult,
    MissingCredential,
    RemoteHttpError,
)
from kisan.orchestrator import clock
from kisan.orchestrator.clock import Sleeper
from kisan.telemetry.logging import get_logger
from kisan.telemetry.tracing import get_tracer

WORD = re.compile(r"\S+")

DEFAULT_CHUNK_DELAY_SECONDS = 0.05


def word_snapshots(text: str) -> list[str]:
    """Cumulative prefixes of *text*, one per word, keeping the original spacing."""
    return [text[: match.end()] for match in WORD.finditer(text)]


class RemoteCompletionClient:
    """Single-shot call to the remote model, replayed word by word.

    The provider answers in one response; ``stream`` re-emits it as growing
    snapshots with a fixed pause between words so the UI can reveal the text
    progressively. Consumers that stop iterating (or whose task is cancelled)
    get no further snapshots.
    """

    def __init__(
        self,
        provider: CompletionProvider | None,
        catalog: IntentCatalog,
        model: str,
        max_output_tokens: int = 256,
        chunk_delay: float = DEFAULT_CHUNK_DELAY_SECONDS,
        sleeper: Sleeper | None = None,
    ) -> None:
        self._provider = provider
        self._catalog = catalog
        self._model = model
        self._max_output_tokens = max_output_tokens
        self._chunk_delay = chunk_delay
        self._sleep = sleeper or clock.sleep
        self._logger = get_logger(__name__)
        self._tracer = get_tracer(__name__)

    @property
    def chunk_delay(self) -> float:
        return self._chunk_delay

    def build_request(self, text: str, language: Language) -> CompletionRequest:
        prompt = f"{self._catalog.prompt_prefix(language)}\n{text}"
        return CompletionRequest(
            model=self._model,
            language=language,
            prompt_text=prompt,
            max_output_tokens=self._max_output_tokens,
        )

    async def fetch(self, text: str, language: Language) -> str:
        """Return the full remote answer or raise a RemoteCompletionError."""
        provider = self._provider
        if provider is None or not provider.has_credential:
            raise MissingCredential(provider.name if provider else "remote model")

        request = self.build_request(text, language)
        with self._tracer.start_as_current_span("kisan.completion") as span:
            span.set_attribute("kisan.model", request.model)
            span.set_attribute("kisan.language", language)
            response = await provider.generate(request)
            if not response.ok:
                span.set_attribute("kisan.error_code", response.error_code or 0)
                raise RemoteHttpError(response.error_code, response.error_message or "request failed")
            result = (response.text or "").strip()
            if not result:
                raise EmptyResult()
            span.set_attribute("kisan.response_len", len(result))
        self._logger.info("completion.received", provider=provider.name, chars=len(result))
        return result

    async def stream(self, text: str, language: Language) -> AsyncIterator[str]:
        result = await self.fetch(text, language)
        for index, snapshot in enumerate(word_snapshots(result)):
            if index:
                await self._sleep(self._chunk_delay)
            yield snapshot


__all__ = ["RemoteCompletionClient", "word_snapshots", "DEFAULT_CHUNK_DELAY_SECONDS"]
