from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable, Coroutine
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from kisan.capture.base import CaptureEngine
from kisan.capture.browser import BrowserCapture
from kisan.config import AppSettings, load_settings
from kisan.intents.catalog import IntentCatalog, load_catalog
from kisan.intents.matcher import IntentMatcher
from kisan.lang.tags import DISPLAY_NAMES, LOCALES, SUPPORTED_LANGUAGES, coerce_language
from kisan.llm.completion import RemoteCompletionClient
from kisan.llm.providers.gemini import GeminiProvider
from kisan.llm.types import CompletionProvider
from kisan.orchestrator.clock import Sleeper
from kisan.orchestrator.dispatcher import ResponseDispatcher
from kisan.orchestrator.session import VoiceSession
from kisan.orchestrator.session_state import SessionState
from kisan.telemetry.logging import configure_logging, get_logger
from kisan.telemetry.tracing import configure_tracing
from kisan.tts.base import SpeechSynthesizer
from kisan.tts.browser import BrowserSynthesizer
from kisan.ui.websocket import UIBridge

settings = load_settings()
configure_logging(settings.telemetry.log_level, settings.telemetry.log_format)
configure_tracing("kisan-voice", settings.telemetry.otlp_endpoint, settings.ENVIRONMENT)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    app.state.runtime = await bootstrap_runtime()
    try:
        yield
    finally:
        runtime = app.state.runtime
        app.state.runtime = None
        if runtime:
            await runtime.shutdown()


app = FastAPI(title="Kisan Voice", lifespan=lifespan)
ui_bridge = UIBridge()

origins = {settings.ui.origin}
if "localhost" in settings.ui.origin:
    origins.add(settings.ui.origin.replace("localhost", "127.0.0.1"))
app.include_router(ui_bridge.router)
app.add_middleware(
    CORSMiddleware,
    allow_origins=list(origins),
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=True,
)


def require_runtime() -> "Runtime":
    runtime = getattr(app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="Voice runtime is not running")
    return runtime


class LanguageRequest(BaseModel):
    language: str


class TextRequest(BaseModel):
    text: str


@app.get("/voice/state")
async def voice_state() -> dict[str, Any]:
    return require_runtime().session.snapshot().to_dict()


@app.post("/voice/listen/start")
async def listen_start() -> dict[str, Any]:
    snapshot = await require_runtime().session.start_listening()
    return snapshot.to_dict()


@app.post("/voice/listen/stop")
async def listen_stop() -> dict[str, Any]:
    snapshot = await require_runtime().session.stop_listening()
    return snapshot.to_dict()


@app.post("/voice/cancel")
async def voice_cancel() -> dict[str, Any]:
    snapshot = await require_runtime().session.cancel()
    return snapshot.to_dict()


@app.post("/voice/speech/stop")
async def speech_stop() -> dict[str, Any]:
    snapshot = await require_runtime().session.stop_speaking()
    return snapshot.to_dict()


@app.post("/voice/language")
async def voice_language(req: LanguageRequest) -> dict[str, Any]:
    runtime = require_runtime()
    try:
        snapshot = await runtime.session.set_language(req.language)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return snapshot.to_dict()


@app.post("/voice/text")
async def voice_text(req: TextRequest) -> dict[str, Any]:
    snapshot = await require_runtime().session.submit_text(req.text)
    return snapshot.to_dict()


@app.get("/voice/languages")
async def voice_languages() -> dict[str, object]:
    return {
        "languages": [
            {"tag": tag, "locale": LOCALES[tag], "name": DISPLAY_NAMES[tag]} for tag in SUPPORTED_LANGUAGES
        ],
        "default": settings.voice.default_language,
    }


@app.get("/voice/quick-commands")
async def quick_commands(language: str | None = None) -> dict[str, object]:
    runtime = getattr(app.state, "runtime", None)
    catalog = runtime.catalog if runtime else load_catalog()
    tag = language or (runtime.session.state.language if runtime else settings.voice.default_language)
    try:
        resolved = coerce_language(tag)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"language": resolved, "commands": catalog.commands_for(resolved)}


class Runtime:
    """One voice session wired to the UI bridge, plus whatever needs closing at shutdown."""

    def __init__(
        self,
        session: VoiceSession,
        catalog: IntentCatalog,
        bridge: UIBridge,
        closers: list[Callable[[], Awaitable[None]]] | None = None,
    ) -> None:
        self.session = session
        self.catalog = catalog
        self._bridge = bridge
        self._closers = list(closers or [])
        self._tasks: set[asyncio.Task[Any]] = set()
        self._unsubscribe: Callable[[], None] | None = None
        self._logger = get_logger(__name__)

    async def start(self) -> None:
        self._bridge.start()
        self._bridge.set_snapshot_source(self.session.snapshot)
        self._bridge.on("command", self.handle_command)
        self._unsubscribe = self.session.state.subscribe(self._bridge.publish_snapshot)
        self._logger.info(
            "runtime.started",
            capture=self.session.capture.name,
            synthesis=self.session.synthesizer.name,
            language=self.session.state.language,
        )

    async def shutdown(self) -> None:
        self._logger.info("runtime.shutdown.start")
        await self.session.aclose()
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None
        await self._bridge.aclose()
        for closer in self._closers:
            await closer()
        self._logger.info("runtime.shutdown.complete")

    async def handle_command(self, message: dict[str, Any]) -> None:
        """Run a UI command; raises ValueError for unknown commands or bad arguments."""
        name = message.get("name")
        session = self.session
        self._logger.info("ui.command", name=name)
        if name == "start_listening":
            await session.start_listening()
        elif name == "stop_listening":
            await session.stop_listening()
        elif name == "cancel":
            await session.cancel()
        elif name == "stop_speaking":
            await session.stop_speaking()
        elif name == "set_language":
            await session.set_language(str(message.get("language") or ""))
        elif name == "submit_text":
            # speech.end for this cycle arrives on the same socket, so do not block its reader.
            self._spawn(session.submit_text(str(message.get("text") or "")))
        else:
            raise ValueError(f"Unknown command '{name}'")

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)


def build_provider(settings: AppSettings) -> GeminiProvider:
    llm = settings.llm
    return GeminiProvider(llm.gemini_api_key, base_url=llm.gemini_base_url, timeout=llm.timeout_seconds)


def build_session(
    settings: AppSettings,
    capture: CaptureEngine,
    synthesizer: SpeechSynthesizer,
    provider: CompletionProvider | None,
    catalog: IntentCatalog | None = None,
    sleeper: Sleeper | None = None,
) -> VoiceSession:
    catalog = catalog or load_catalog()
    state = SessionState(settings.voice.default_language)
    matcher = IntentMatcher(catalog)
    completion = RemoteCompletionClient(
        provider,
        catalog,
        model=settings.llm.gemini_model,
        max_output_tokens=settings.llm.max_output_tokens,
        chunk_delay=settings.llm.chunk_delay_seconds,
        sleeper=sleeper,
    )
    dispatcher = ResponseDispatcher(state, matcher, completion, synthesizer)
    return VoiceSession(state, dispatcher, capture, synthesizer)


def build_capture(settings: AppSettings, bridge: UIBridge) -> CaptureEngine:
    if settings.voice.capture_engine == "vosk":
        # PortAudio and Vosk are only needed for local capture.
        from kisan.capture.microphone import MicrophoneStream
        from kisan.capture.vosk import VoskCapture

        mic = settings.microphone

        def open_microphone() -> MicrophoneStream:
            return MicrophoneStream(
                samplerate=mic.sample_rate,
                frame_ms=mic.frame_ms,
                energy_threshold=mic.energy_threshold,
                device=mic.input_device,
            )

        return VoskCapture(
            mic.vosk_models,
            open_microphone,
            sample_rate=mic.sample_rate,
            silence_timeout=mic.silence_timeout,
        )
    return BrowserCapture(bridge)


def build_synthesizer(
    settings: AppSettings, bridge: UIBridge
) -> tuple[SpeechSynthesizer, Callable[[], Awaitable[None]] | None]:
    if settings.voice.synthesis_engine == "kokoro":
        from kisan.audio.output import AudioOutputController
        from kisan.tts.kokoro import KokoroSynthesizer

        kokoro = KokoroSynthesizer(
            settings.kokoro.base_url,
            settings.kokoro.api_key,
            audio_output=AudioOutputController(),
        )
        return kokoro, kokoro.aclose
    return BrowserSynthesizer(bridge, timeout=settings.voice.speech_timeout_seconds), None


async def bootstrap_runtime() -> Runtime:
    catalog = load_catalog()
    provider = build_provider(settings)
    if not provider.has_credential:
        logger.warning("completion.no_credential", provider=provider.name)
    capture = build_capture(settings, ui_bridge)
    synthesizer, close_synthesizer = build_synthesizer(settings, ui_bridge)
    session = build_session(settings, capture, synthesizer, provider, catalog)

    closers: list[Callable[[], Awaitable[None]]] = [provider.aclose]
    if close_synthesizer is not None:
        closers.append(close_synthesizer)
    runtime = Runtime(session, catalog, ui_bridge, closers)
    await runtime.start()
    return runtime


__all__ = [
    "app",
    "ui_bridge",
    "Runtime",
    "bootstrap_runtime",
    "build_session",
    "build_capture",
    "build_synthesizer",
    "build_provider",
]
