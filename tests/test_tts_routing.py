from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from kisan.tts.base import SynthesisError
from kisan.tts.browser import BrowserSynthesizer
from kisan.tts.kokoro import KokoroSynthesizer
from kisan.tts.voice_router import VoiceRouter, load_router
from kisan.ui.websocket import UIBridge


@pytest.fixture
def anyio_backend():
    return "asyncio"


def fresh_router() -> VoiceRouter:
    load_router.cache_clear()
    return load_router()


def test_english_voice() -> None:
    params = fresh_router().resolve("en")
    assert params["voice"] == "bf_emma"
    assert params["model"] == "kokoro"
    assert params["response_format"] == "wav"


def test_hindi_and_marathi_voices() -> None:
    router = fresh_router()
    assert router.resolve("hi")["voice"] == "hf_alpha"
    assert router.resolve("mr")["voice"] == "hf_beta"
    assert pytest.approx(router.resolve("mr")["speed"]) == 0.95


def test_kannada_uses_any_slot() -> None:
    params = fresh_router().resolve("kn")
    assert params["voice"] == "hf_alpha"
    assert pytest.approx(params["speed"]) == 0.9


def test_router_requires_voice_ids() -> None:
    with pytest.raises(ValueError):
        VoiceRouter({"languages": {"en": {"speed": 1.0}}})


class FakeSink:
    def __init__(self) -> None:
        self.played: list[tuple[bytes, str]] = []
        self.stops = 0

    async def play_bytes(self, audio: bytes, tag: str, await_completion: bool = True) -> float:
        self.played.append((audio, tag))
        return 1.0

    async def play_array(self, data, samplerate: int, tag: str, await_completion: bool = True) -> float:
        return 0.0

    async def stop(self, tag: str | None = None) -> bool:
        self.stops += 1
        return True


@pytest.mark.anyio("asyncio")
async def test_kokoro_requests_language_voice_and_plays() -> None:
    bodies: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        assert request.headers["Authorization"] == "Bearer token"
        return httpx.Response(200, content=b"RIFFwav")

    sink = FakeSink()
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    kokoro = KokoroSynthesizer("http://kokoro.test/v1/audio/speech", "token", sink, fresh_router(), client)

    await kokoro.speak("मैसूर APMC में आज टमाटर का भाव ₹45 प्रति किलो है।", "hi")
    await kokoro.aclose()

    assert bodies[0]["voice"] == "hf_alpha"
    assert bodies[0]["input"].startswith("मैसूर")
    assert sink.played == [(b"RIFFwav", "tts:1")]


@pytest.mark.anyio("asyncio")
async def test_kokoro_retries_bad_request_with_core_fields() -> None:
    bodies: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        bodies.append(body)
        if "speed" in body:
            return httpx.Response(400, json={"detail": "speed unsupported"})
        return httpx.Response(200, content=b"RIFFwav")

    sink = FakeSink()
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    kokoro = KokoroSynthesizer("http://kokoro.test/v1/audio/speech", None, sink, fresh_router(), client)

    await kokoro.speak("Hello friend", "en")

    assert len(bodies) == 2
    assert set(bodies[1]) == {"model", "voice", "input", "response_format"}
    assert len(sink.played) == 1


@pytest.mark.anyio("asyncio")
async def test_kokoro_server_error_is_synthesis_error() -> None:
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(500)))
    kokoro = KokoroSynthesizer("http://kokoro.test/v1/audio/speech", None, FakeSink(), fresh_router(), client)

    with pytest.raises(SynthesisError):
        await kokoro.speak("Hello friend", "en")


class FakeBridge:
    """Just enough of UIBridge for the browser synthesizer."""

    def __init__(self) -> None:
        self.sent: list[dict] = []
        self.handlers: dict[str, object] = {}
        self.client_count = 1

    def on(self, message_type: str, handler) -> None:
        self.handlers[message_type] = handler

    def has_capability(self, name: str) -> bool:
        return name == "synthesis"

    async def send(self, message: dict) -> None:
        self.sent.append(message)

    async def dispatch(self, message: dict) -> None:
        await self.handlers[message["type"]](message)


@pytest.mark.anyio("asyncio")
async def test_browser_synthesizer_waits_for_speech_end() -> None:
    bridge = FakeBridge()
    sent = bridge.sent
    synth = BrowserSynthesizer(bridge, timeout=1.0)  # type: ignore[arg-type]

    speaking = asyncio.create_task(synth.speak("ನಮಸ್ಕಾರ", "kn"))
    await asyncio.sleep(0)
    assert sent[0] == {"type": "speech.speak", "id": 1, "text": "ನಮಸ್ಕಾರ", "locale": "kn-IN"}
    assert not speaking.done()

    await bridge.dispatch({"type": "speech.end", "id": 1})
    await speaking


@pytest.mark.anyio("asyncio")
async def test_browser_synthesizer_cancel_releases_speaker() -> None:
    bridge = FakeBridge()
    sent = bridge.sent
    synth = BrowserSynthesizer(bridge, timeout=5.0)  # type: ignore[arg-type]

    speaking = asyncio.create_task(synth.speak("Hello friend", "en"))
    await asyncio.sleep(0)
    await synth.cancel_all()
    await speaking

    assert sent[-1] == {"type": "speech.cancel"}


@pytest.mark.anyio("asyncio")
async def test_browser_synthesizer_without_client_fails() -> None:
    synth = BrowserSynthesizer(UIBridge())
    with pytest.raises(SynthesisError):
        await synth.speak("Hello friend", "en")
