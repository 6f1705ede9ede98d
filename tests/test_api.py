from __future__ import annotations

import time
from typing import Any

import pytest
from fastapi.testclient import TestClient

from kisan import main
from kisan.capture.base import CaptureEngine, CaptureListener
from kisan.capture.browser import BrowserCapture
from kisan.config import AppSettings
from kisan.intents.catalog import load_catalog
from kisan.llm.types import CompletionRequest, CompletionResponse
from kisan.tts.browser import BrowserSynthesizer


class FakeCapture(CaptureEngine):
    name = "fake"

    def __init__(self) -> None:
        self.listener: CaptureListener | None = None
        self.starts: list[str] = []

    @property
    def available(self) -> bool:
        return True

    async def start(self, listener: CaptureListener, locale: str) -> None:
        self.starts.append(locale)
        self.listener = listener

    async def stop(self) -> None:
        listener = self.listener
        self.listener = None
        if listener is not None:
            listener.on_end()

    async def abort(self) -> None:
        self.listener = None


class RecordingSynthesizer:
    name = "recording"

    def __init__(self) -> None:
        self.spoken: list[tuple[str, str]] = []

    async def speak(self, text: str, language: str) -> None:
        self.spoken.append((text, language))

    async def cancel_all(self) -> None:
        return None


class StubProvider:
    name = "stub"
    has_credential = True

    async def generate(self, request: CompletionRequest) -> CompletionResponse:
        return CompletionResponse(text="Hello friend")

    async def aclose(self) -> None:
        return None


async def no_sleep(seconds: float) -> None:
    return None


def make_settings() -> AppSettings:
    return AppSettings(DEFAULT_LANGUAGE="en", LLM_CHUNK_DELAY_MS=0, _env_file=None)


@pytest.fixture
def fakes(monkeypatch):
    capture = FakeCapture()
    synth = RecordingSynthesizer()

    async def fake_bootstrap() -> main.Runtime:
        catalog = load_catalog()
        session = main.build_session(make_settings(), capture, synth, StubProvider(), catalog, sleeper=no_sleep)
        runtime = main.Runtime(session, catalog, main.ui_bridge)
        await runtime.start()
        return runtime

    monkeypatch.setattr(main, "bootstrap_runtime", fake_bootstrap)
    return capture, synth


@pytest.fixture
def client(fakes):
    with TestClient(main.app) as client:
        yield client


def wait_for_status(client: TestClient, status: str) -> dict[str, Any]:
    for _ in range(100):
        body = client.get("/voice/state").json()
        if body["status"] == status:
            return body
        time.sleep(0.01)
    raise AssertionError(f"session never reached {status}")


def test_state_starts_idle(client: TestClient) -> None:
    resp = client.get("/voice/state")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "IDLE"
    assert body["language"] == "en"


def test_typed_price_question_is_answered_locally(client: TestClient, fakes) -> None:
    _, synth = fakes

    resp = client.post("/voice/text", json={"text": "What is the tomato price?"})

    body = resp.json()
    assert body["status"] == "IDLE"
    assert body["response_text"].startswith("The tomato price in Mysore APMC today is ₹45 per kg.")
    assert synth.spoken[-1][1] == "en"


def test_typed_unknown_question_uses_remote_answer(client: TestClient) -> None:
    resp = client.post("/voice/text", json={"text": "asdkj random text"})
    assert resp.json()["response_text"] == "Hello friend"


def test_listen_start_and_stop(client: TestClient, fakes) -> None:
    capture, _ = fakes

    started = client.post("/voice/listen/start").json()
    assert started["status"] == "LISTENING"
    assert capture.starts == ["en-IN"]

    client.post("/voice/listen/stop")
    assert capture.listener is None
    assert wait_for_status(client, "IDLE")["transcript_text"] == ""


def test_cancel_returns_to_idle(client: TestClient) -> None:
    client.post("/voice/listen/start")
    body = client.post("/voice/cancel").json()
    assert body["status"] == "IDLE"
    assert body["transcript_text"] == ""


def test_language_switch_and_rejection(client: TestClient, fakes) -> None:
    capture, _ = fakes

    resp = client.post("/voice/language", json={"language": "kn"})
    assert resp.status_code == 200
    assert resp.json()["language"] == "kn"
    client.post("/voice/listen/start")
    assert capture.starts[-1] == "kn-IN"

    bad = client.post("/voice/language", json={"language": "fr"})
    assert bad.status_code == 400


def test_languages_listing(client: TestClient) -> None:
    body = client.get("/voice/languages").json()
    tags = [item["tag"] for item in body["languages"]]
    assert tags == ["en", "hi", "mr", "kn"]
    assert {item["locale"] for item in body["languages"]} == {"en-IN", "hi-IN", "mr-IN", "kn-IN"}


def test_quick_commands_follow_language(client: TestClient) -> None:
    english = client.get("/voice/quick-commands").json()
    assert english["language"] == "en"
    assert len(english["commands"]) == 4

    hindi = client.get("/voice/quick-commands", params={"language": "hi"}).json()
    assert hindi["language"] == "hi"
    assert hindi["commands"] == load_catalog().commands_for("hi")

    assert client.get("/voice/quick-commands", params={"language": "xx"}).status_code == 400


def test_commands_need_a_running_runtime() -> None:
    main.app.state.runtime = None
    client = TestClient(main.app)
    assert client.get("/voice/state").status_code == 503
    assert client.post("/voice/listen/start").status_code == 503


def receive_until(ws, predicate, limit: int = 20) -> dict[str, Any]:
    for _ in range(limit):
        message = ws.receive_json()
        if predicate(message):
            return message
    raise AssertionError("expected message not received")


def is_state(status: str):
    return lambda message: message["type"] == "state" and message["payload"]["status"] == status


def test_websocket_browser_cycle(monkeypatch) -> None:
    async def browser_bootstrap() -> main.Runtime:
        catalog = load_catalog()
        capture = BrowserCapture(main.ui_bridge)
        synth = BrowserSynthesizer(main.ui_bridge, timeout=5.0)
        session = main.build_session(make_settings(), capture, synth, StubProvider(), catalog, sleeper=no_sleep)
        runtime = main.Runtime(session, catalog, main.ui_bridge)
        await runtime.start()
        return runtime

    monkeypatch.setattr(main, "bootstrap_runtime", browser_bootstrap)

    with TestClient(main.app) as client, client.websocket_connect("/ws/voice") as ws:
        first = ws.receive_json()
        assert first["type"] == "state"
        assert first["payload"]["status"] == "IDLE"

        ws.send_json({"type": "hello", "capture": True, "synthesis": True})
        ws.send_json({"type": "command", "name": "start_listening"})
        receive_until(ws, is_state("LISTENING"))
        start = receive_until(ws, lambda m: m["type"] == "capture.start")
        assert start["locale"] == "en-IN"

        ws.send_json({"type": "capture.final", "text": "What is the tomato price?"})
        speak = receive_until(ws, lambda m: m["type"] == "speech.speak")
        assert speak["text"].startswith("The tomato price in Mysore APMC")
        assert speak["locale"] == "en-IN"

        ws.send_json({"type": "speech.end", "id": speak["id"]})
        done = receive_until(ws, is_state("IDLE"))
        assert done["payload"]["response_text"] == speak["text"]

        ws.send_json({"type": "command", "name": "fly"})
        error = receive_until(ws, lambda m: m["type"] == "error")
        assert "fly" in error["message"]
