from __future__ import annotations

import unicodedata

import regex as re

from kisan.lang.tags import Language
from kisan.orchestrator.events import EmptyTranscript, Transcript

# Ordered: the first script found in the text decides the language.
SCRIPT_LANGUAGES: tuple[tuple[str, Language], ...] = (
    ("Kannada", "kn"),
    ("Devanagari", "hi"),
)

# Languages written in the same script as another one; the selected language wins.
SHARED_SCRIPT_LANGUAGES: dict[str, frozenset[Language]] = {
    "Devanagari": frozenset({"hi", "mr"}),
}

_SCRIPT_PATTERNS = {script: re.compile(rf"\p{{Script={script}}}") for script, _ in SCRIPT_LANGUAGES}
ALNUM_OR_MARK = re.compile(r"[\p{L}\p{M}]+", re.UNICODE)
WHITESPACE = re.compile(r"\s+")
APOSTROPHES = str.maketrans({"’": "'", "‘": "'", "`": "'"})


def clean_text(raw: str | None) -> str:
    if not raw or not isinstance(raw, str):
        return ""
    text = unicodedata.normalize("NFC", raw).translate(APOSTROPHES)
    return WHITESPACE.sub(" ", text).strip()


def detect_script(text: str | None) -> str | None:
    """Return the name of the first script in SCRIPT_LANGUAGES present in *text*."""
    if not text:
        return None
    letters = "".join(ALNUM_OR_MARK.findall(text))
    if not letters:
        return None
    for script, _ in SCRIPT_LANGUAGES:
        if _SCRIPT_PATTERNS[script].search(letters):
            return script
    return None


def detect_script_language(text: str | None, current: Language | None = None) -> Language | None:
    script = detect_script(text)
    if script is None:
        return None
    if current is not None and current in SHARED_SCRIPT_LANGUAGES.get(script, frozenset()):
        return current
    return dict(SCRIPT_LANGUAGES)[script]


def normalize_transcript(raw: str | None, current: Language) -> Transcript | EmptyTranscript:
    text = clean_text(raw)
    if not text:
        return EmptyTranscript(raw=raw or "")
    language = detect_script_language(text, current) or current
    return Transcript(text=text, language=language)


__all__ = [
    "SCRIPT_LANGUAGES",
    "SHARED_SCRIPT_LANGUAGES",
    "clean_text",
    "detect_script",
    "detect_script_language",
    "normalize_transcript",
]
