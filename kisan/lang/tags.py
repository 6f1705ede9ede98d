from __future__ import annotations

from typing import Literal, get_args

Language = Literal["en", "hi", "mr", "kn"]

SUPPORTED_LANGUAGES: tuple[Language, ...] = get_args(Language)

LOCALES: dict[Language, str] = {
    "en": "en-IN",
    "hi": "hi-IN",
    "mr": "mr-IN",
    "kn": "kn-IN",
}

DISPLAY_NAMES: dict[Language, str] = {
    "en": "English",
    "hi": "हिन्दी",
    "mr": "मराठी",
    "kn": "ಕನ್ನಡ",
}


def coerce_language(tag: str | None) -> Language:
    """Accept a bare tag or a locale such as 'kn-IN'; raise ValueError for anything else."""
    if not tag:
        raise ValueError("language tag is required")
    base = tag.strip().replace("_", "-").split("-", 1)[0].lower()
    if base not in SUPPORTED_LANGUAGES:
        raise ValueError(f"Unsupported language '{tag}'")
    return base  # type: ignore[return-value]


def locale_for(language: Language) -> str:
    return LOCALES[language]


__all__ = [
    "Language",
    "SUPPORTED_LANGUAGES",
    "LOCALES",
    "DISPLAY_NAMES",
    "coerce_language",
    "locale_for",
]
