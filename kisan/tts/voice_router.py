from __future__ import annotations

import functools
from pathlib import Path
from typing import Any

import yaml

from kisan.config import package_root
from kisan.lang.tags import Language


class VoiceRouter:
    def __init__(self, raw_config: dict[str, Any]) -> None:
        self._config = raw_config
        self._languages: dict[str, dict[str, Any]] = raw_config.get("languages", {}) or {}
        if not self._languages:
            raise ValueError("No voices configured")
        for lang, slot in self._languages.items():
            if not isinstance(slot, dict) or not slot.get("voice"):
                raise ValueError(f"Voice entry for '{lang}' needs a 'voice' id")

    def languages(self) -> list[str]:
        return list(self._languages.keys())

    def resolve(self, language: Language) -> dict[str, Any]:
        """Request parameters for *language*: the shared defaults overlaid with the language slot."""
        slot = self._languages.get(language) or self._languages.get("any")
        if not slot:
            raise ValueError(f"No voice configured for language '{language}'")
        params: dict[str, Any] = {
            "model": self._config.get("model", "kokoro"),
            "response_format": self._config.get("response_format", "wav"),
        }
        params.update(slot)
        return params


def default_voices_path() -> Path:
    return package_root() / "tts" / "voices.yml"


@functools.lru_cache(maxsize=1)
def load_router(path: str | None = None) -> VoiceRouter:
    config_path = Path(path) if path else default_voices_path()
    if not config_path.exists():
        raise FileNotFoundError(config_path)
    raw = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError("voices.yml must define a mapping")
    return VoiceRouter(raw)


__all__ = ["VoiceRouter", "default_voices_path", "load_router"]
