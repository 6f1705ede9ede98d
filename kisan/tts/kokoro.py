from __future__ import annotations

import httpx

from kisan.lang.tags import Language
from kisan.telemetry.logging import get_logger
from kisan.tts.base import AudioSink, SynthesisError
from kisan.tts.voice_router import VoiceRouter, load_router

# Keys the speech endpoint always understands; anything else is optional.
CORE_KEYS = ("model", "voice", "input", "response_format")


class KokoroSynthesizer:
    """Kokoro speech over its OpenAI-compatible HTTP API, played on the local audio device."""

    name = "kokoro"

    def __init__(
        self,
        base_url: str,
        api_key: str | None,
        audio_output: AudioSink,
        router: VoiceRouter | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url
        self._api_key = api_key
        self._router = router or load_router()
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(15.0, connect=5.0))
        self._audio_output = audio_output
        self._utterance = 0
        self._logger = get_logger(__name__)

    def build_payload(self, text: str, language: Language) -> dict[str, object]:
        payload: dict[str, object] = {**self._router.resolve(language), "input": text}
        if "speed" in payload:
            try:
                payload["speed"] = float(payload["speed"])  # type: ignore[arg-type]
            except (TypeError, ValueError):
                self._logger.warning("kokoro.tts.invalid_speed", speed=payload["speed"])
                payload.pop("speed")
        return payload

    async def speak(self, text: str, language: Language) -> None:
        self._utterance += 1
        utterance = self._utterance
        audio = await self._fetch_audio(self.build_payload(text, language), language)
        if utterance != self._utterance:
            # cancel_all() ran while the audio was downloading.
            return
        await self._audio_output.play_bytes(audio, tag=f"tts:{utterance}")

    async def cancel_all(self) -> None:
        self._utterance += 1
        await self._audio_output.stop()

    async def _fetch_audio(self, payload: dict[str, object], language: Language, sanitized: bool = False) -> bytes:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"

        log_payload = dict(payload)
        if isinstance(log_payload.get("input"), str) and len(log_payload["input"]) > 120:
            log_payload["input"] = log_payload["input"][:120] + "…"
        self._logger.info("kokoro.tts.request", lang=language, payload=log_payload)

        try:
            async with self._client.stream("POST", self._base_url, headers=headers, json=payload) as resp:
                resp.raise_for_status()
                audio_chunks: list[bytes] = []
                async for chunk in resp.aiter_bytes():
                    audio_chunks.append(chunk)
                return b"".join(audio_chunks)
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code == 400 and not sanitized:
                self._logger.warning("kokoro.tts.fallback", reason="bad_request", status=exc.response.status_code)
                core = {key: payload[key] for key in CORE_KEYS if key in payload}
                return await self._fetch_audio(core, language, sanitized=True)
            raise SynthesisError(f"Kokoro returned HTTP {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise SynthesisError(f"Kokoro request failed: {exc}") from exc

    async def aclose(self) -> None:
        await self._client.aclose()


__all__ = ["KokoroSynthesizer"]
