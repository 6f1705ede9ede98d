from __future__ import annotations

import functools
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from kisan.lang.tags import Language


class LLMSettings(BaseModel):
    gemini_api_key: str | None = None
    gemini_model: str = "gemini-1.5-flash"
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    max_output_tokens: int = Field(256, gt=0)
    chunk_delay_seconds: float = Field(0.05, ge=0.0)
    timeout_seconds: float = 30.0


class VoiceSettings(BaseModel):
    default_language: Language = "en"
    capture_engine: Literal["browser", "vosk"] = "browser"
    synthesis_engine: Literal["browser", "kokoro"] = "browser"
    speech_timeout_seconds: float = 30.0


class MicrophoneSettings(BaseModel):
    sample_rate: int = 16_000
    frame_ms: int = 30
    energy_threshold: float = 500.0
    input_device: str | int | None = None
    silence_timeout: float = 1.2
    vosk_models: dict[str, str] = Field(default_factory=dict)


class KokoroSettings(BaseModel):
    base_url: str
    api_key: str | None = None


class TelemetrySettings(BaseModel):
    log_level: str = "INFO"
    log_format: Literal["json", "console"] = "json"
    otlp_endpoint: str | None = None


class UISettings(BaseModel):
    origin: str = "http://localhost:5173"


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=(".env", ".env.local"), env_file_encoding="utf-8", extra="ignore")

    GEMINI_API_KEY: str | None = None
    GEMINI_MODEL: str = "gemini-1.5-flash"
    GEMINI_BASE_URL: str = "https://generativelanguage.googleapis.com/v1beta"
    LLM_MAX_OUTPUT_TOKENS: int = 256
    LLM_CHUNK_DELAY_MS: int = 50
    LLM_TIMEOUT_SECONDS: float = 30.0
    DEFAULT_LANGUAGE: Language = "en"
    CAPTURE_ENGINE: Literal["browser", "vosk"] = "browser"
    SYNTHESIS_ENGINE: Literal["browser", "kokoro"] = "browser"
    SPEECH_TIMEOUT_SECONDS: float = 30.0
    AUDIO_SAMPLE_RATE: int = 16_000
    AUDIO_FRAME_MS: int = 30
    AUDIO_ENERGY_THRESHOLD: float = 500.0
    AUDIO_INPUT_DEVICE: str | int | None = None
    AUDIO_SILENCE_TIMEOUT: float = 1.2
    VOSK_MODEL_PATH_EN: str | None = None
    VOSK_MODEL_PATH_HI: str | None = None
    VOSK_MODEL_PATH_MR: str | None = None
    VOSK_MODEL_PATH_KN: str | None = None
    KOKORO_API_URL: str = "http://localhost:8880/v1/audio/speech"
    KOKORO_API_KEY: str | None = None
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: Literal["json", "console"] = "json"
    OTEL_EXPORTER_OTLP_ENDPOINT: str | None = None
    UI_ORIGIN: str = "http://localhost:5173"
    ENVIRONMENT: Literal["local", "staging", "production"] = "local"

    @staticmethod
    def _coerce_device(device: str | int | None) -> str | int | None:
        if isinstance(device, str):
            trimmed = device.strip()
            if not trimmed:
                return None
            if trimmed.isdigit():
                return int(trimmed)
            return trimmed
        return device

    @property
    def llm(self) -> LLMSettings:
        key = (self.GEMINI_API_KEY or "").strip() or None
        return LLMSettings(
            gemini_api_key=key,
            gemini_model=self.GEMINI_MODEL,
            gemini_base_url=self.GEMINI_BASE_URL,
            max_output_tokens=self.LLM_MAX_OUTPUT_TOKENS,
            chunk_delay_seconds=self.LLM_CHUNK_DELAY_MS / 1000,
            timeout_seconds=self.LLM_TIMEOUT_SECONDS,
        )

    @property
    def voice(self) -> VoiceSettings:
        return VoiceSettings(
            default_language=self.DEFAULT_LANGUAGE,
            capture_engine=self.CAPTURE_ENGINE,
            synthesis_engine=self.SYNTHESIS_ENGINE,
            speech_timeout_seconds=self.SPEECH_TIMEOUT_SECONDS,
        )

    @property
    def microphone(self) -> MicrophoneSettings:
        models = {
            "en": self.VOSK_MODEL_PATH_EN,
            "hi": self.VOSK_MODEL_PATH_HI,
            "mr": self.VOSK_MODEL_PATH_MR,
            "kn": self.VOSK_MODEL_PATH_KN,
        }
        return MicrophoneSettings(
            sample_rate=self.AUDIO_SAMPLE_RATE,
            frame_ms=self.AUDIO_FRAME_MS,
            energy_threshold=self.AUDIO_ENERGY_THRESHOLD,
            input_device=self._coerce_device(self.AUDIO_INPUT_DEVICE),
            silence_timeout=self.AUDIO_SILENCE_TIMEOUT,
            vosk_models={lang: path for lang, path in models.items() if path},
        )

    @property
    def kokoro(self) -> KokoroSettings:
        return KokoroSettings(base_url=self.KOKORO_API_URL, api_key=self.KOKORO_API_KEY)

    @property
    def telemetry(self) -> TelemetrySettings:
        return TelemetrySettings(
            log_level=self.LOG_LEVEL,
            log_format=self.LOG_FORMAT,
            otlp_endpoint=self.OTEL_EXPORTER_OTLP_ENDPOINT,
        )

    @property
    def ui(self) -> UISettings:
        return UISettings(origin=self.UI_ORIGIN)


@functools.lru_cache(maxsize=1)
def load_settings() -> AppSettings:
    return AppSettings()


def package_root() -> Path:
    return Path(__file__).resolve().parent


__all__ = ["AppSettings", "load_settings", "package_root"]
