from __future__ import annotations

import asyncio

import pytest

from kisan.intents.catalog import load_catalog
from kisan.intents.matcher import IntentMatcher
from kisan.llm.completion import RemoteCompletionClient
from kisan.llm.types import CompletionRequest, CompletionResponse
from kisan.orchestrator.dispatcher import ResponseDispatcher
from kisan.orchestrator.events import SessionSnapshot
from kisan.orchestrator.session_state import SessionState
from kisan.tts.base import SynthesisError

TOMATO_EN = (
    "The tomato price in Mysore APMC today is ₹45 per kg. "
    "It has increased by 12% from last week. Good time to sell."
)


@pytest.fixture
def anyio_backend():
    return "asyncio"


class StubProvider:
    name = "stub"

    def __init__(self, text: str | None = "Hello friend", credential: bool = True, error: Exception | None = None):
        self.text = text
        self.credential = credential
        self.error = error
        self.calls: list[CompletionRequest] = []

    @property
    def has_credential(self) -> bool:
        return self.credential

    async def generate(self, request: CompletionRequest) -> CompletionResponse:
        self.calls.append(request)
        if self.error:
            raise self.error
        return CompletionResponse(text=self.text)


class FakeSynthesizer:
    name = "fake"

    def __init__(self, error: Exception | None = None) -> None:
        self.calls: list[tuple] = []
        self.error = error

    async def speak(self, text: str, language: str) -> None:
        self.calls.append(("speak", text, language))
        if self.error:
            raise self.error

    async def cancel_all(self) -> None:
        self.calls.append(("cancel_all",))


class GatedSleeper:
    """Holds every inter-chunk pause until the test opens the gate."""

    def __init__(self) -> None:
        self.gate = asyncio.Event()
        self.waiting = 0

    async def __call__(self, seconds: float) -> None:
        self.waiting += 1
        await self.gate.wait()


async def no_sleep(seconds: float) -> None:
    return None


def build(provider=None, synthesizer=None, sleeper=no_sleep, language: str = "en"):
    catalog = load_catalog()
    state = SessionState(language)
    seen: list[SessionSnapshot] = []
    state.subscribe(seen.append)
    provider = provider or StubProvider()
    synthesizer = synthesizer or FakeSynthesizer()
    completion = RemoteCompletionClient(provider, catalog, model="gemini-test", chunk_delay=0.05, sleeper=sleeper)
    dispatcher = ResponseDispatcher(state, IntentMatcher(catalog), completion, synthesizer)
    return dispatcher, state, seen, provider, synthesizer


async def settle(predicate, rounds: int = 100) -> None:
    for _ in range(rounds):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


@pytest.mark.anyio("asyncio")
async def test_tomato_price_takes_fast_path() -> None:
    dispatcher, state, seen, provider, synth = build()
    state.begin_listening()

    snapshot = await dispatcher.handle("What's the tomato price?")

    assert provider.calls == []
    assert snapshot.status == "IDLE"
    assert snapshot.response_text == TOMATO_EN
    assert [snap.status for snap in seen] == ["LISTENING", "PROCESSING", "PROCESSING", "SPEAKING", "IDLE"]
    assert synth.calls == [("cancel_all",), ("speak", TOMATO_EN, "en")]


@pytest.mark.anyio("asyncio")
async def test_unmatched_text_streams_remote_answer() -> None:
    dispatcher, state, seen, provider, synth = build()

    snapshot = await dispatcher.handle("asdkj random text")

    assert len(provider.calls) == 1
    responses = [snap.response_text for snap in seen if snap.status == "PROCESSING" and snap.response_text]
    assert responses == ["Hello", "Hello friend"]
    assert snapshot.response_text == "Hello friend"
    assert synth.calls[-1] == ("speak", "Hello friend", "en")
    assert snapshot.status == "IDLE"


@pytest.mark.anyio("asyncio")
async def test_script_picks_response_language() -> None:
    dispatcher, state, _, _, synth = build(language="en")

    snapshot = await dispatcher.handle("टमाटर का भाव क्या है")

    hindi = load_catalog().rule("market_price").commodities[0].responses["hi"]
    assert snapshot.response_text == hindi
    assert synth.calls[-1] == ("speak", hindi, "hi")
    # The selected UI language is not changed by detection.
    assert state.language == "en"


@pytest.mark.anyio("asyncio")
async def test_missing_credential_speaks_fallback() -> None:
    provider = StubProvider(credential=False)
    dispatcher, _, _, _, synth = build(provider=provider, language="mr")

    snapshot = await dispatcher.handle("asdkj random text")

    fallback = load_catalog().fallback_text("mr")
    assert provider.calls == []
    assert snapshot.response_text == fallback
    assert snapshot.error_text == ""
    assert synth.calls[-1] == ("speak", fallback, "mr")


@pytest.mark.anyio("asyncio")
async def test_empty_remote_answer_speaks_fallback() -> None:
    dispatcher, _, _, _, synth = build(provider=StubProvider(text=None))

    snapshot = await dispatcher.handle("asdkj random text")

    assert snapshot.response_text == "Sorry, I didn't understand. Please try again."
    assert synth.calls[-1][1] == snapshot.response_text


@pytest.mark.anyio("asyncio")
async def test_empty_transcript_ends_listening_silently() -> None:
    dispatcher, state, seen, provider, synth = build()
    state.begin_listening()

    snapshot = await dispatcher.handle("   ")

    assert snapshot.status == "IDLE"
    assert "PROCESSING" not in [snap.status for snap in seen]
    assert synth.calls == []
    assert provider.calls == []


@pytest.mark.anyio("asyncio")
async def test_synthesis_failure_keeps_response() -> None:
    dispatcher, _, _, _, _ = build(synthesizer=FakeSynthesizer(error=SynthesisError("no voice")))

    snapshot = await dispatcher.handle("weather forecast")

    assert snapshot.status == "IDLE"
    assert snapshot.response_text.startswith("Today is partly cloudy")
    assert snapshot.error_kind is None


@pytest.mark.anyio("asyncio")
async def test_unexpected_failure_returns_to_idle_with_error() -> None:
    dispatcher, _, _, _, synth = build(provider=StubProvider(error=RuntimeError("boom")))

    snapshot = await dispatcher.handle("asdkj random text")

    assert snapshot.status == "IDLE"
    assert snapshot.error_kind == "dispatch_failed"
    assert snapshot.error_text == "boom"
    assert synth.calls == []


@pytest.mark.anyio("asyncio")
async def test_reset_mid_stream_drops_remaining_chunks() -> None:
    sleeper = GatedSleeper()
    dispatcher, state, seen, _, synth = build(provider=StubProvider(text="one two three"), sleeper=sleeper)

    task = asyncio.create_task(dispatcher.handle("asdkj random text"))
    await settle(lambda: sleeper.waiting == 1)
    assert state.response_text == "one"

    state.reset()
    published = len(seen)
    sleeper.gate.set()
    snapshot = await task

    assert len(seen) == published
    assert snapshot.status == "IDLE"
    assert snapshot.response_text == ""
    assert synth.calls == []
