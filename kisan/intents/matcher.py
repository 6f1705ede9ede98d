from __future__ import annotations

import unicodedata
from dataclasses import dataclass

import regex as re

from kisan.intents.catalog import COMMON_KEY, IntentCatalog, IntentRule, load_catalog
from kisan.lang.tags import SUPPORTED_LANGUAGES, Language
from kisan.orchestrator.events import NO_MATCH, IntentCategory, IntentMatch, Matched, Transcript
from kisan.telemetry.logging import get_logger


# Alternatives must start a word; suffixes stay open for inflected forms.
WORD_START = r"(?<![\p{L}\p{M}])"


def _compile(patterns: dict[str, list[str]]) -> dict[Language, re.Pattern[str]]:
    """Fold each language's alternatives together with the common ones into one pattern."""
    common = patterns.get(COMMON_KEY, [])
    compiled: dict[Language, re.Pattern[str]] = {}
    for language in SUPPORTED_LANGUAGES:
        alternatives = [*patterns.get(language, []), *common]
        if not alternatives:
            continue
        joined = "|".join(f"{WORD_START}(?:{unicodedata.normalize('NFC', alt)})" for alt in alternatives)
        compiled[language] = re.compile(joined, re.IGNORECASE)
    return compiled


@dataclass(slots=True)
class _Commodity:
    name: str
    patterns: dict[Language, re.Pattern[str]]
    responses: dict[Language, str]


@dataclass(slots=True)
class _Rule:
    name: IntentCategory
    patterns: dict[Language, re.Pattern[str]]
    responses: dict[Language, str]
    commodities: list[_Commodity]


class IntentMatcher:
    """First-match-wins keyword matcher over the intent catalog."""

    def __init__(self, catalog: IntentCatalog | None = None) -> None:
        self._catalog = catalog or load_catalog()
        self._rules = [self._build_rule(rule) for rule in self._catalog.intents]
        self._logger = get_logger(__name__)

    @property
    def catalog(self) -> IntentCatalog:
        return self._catalog

    def match(self, transcript: Transcript) -> IntentMatch:
        text = unicodedata.normalize("NFC", transcript.text).lower()
        if not text.strip():
            return NO_MATCH
        language = transcript.language
        for rule in self._rules:
            pattern = rule.patterns.get(language)
            if pattern is None or not pattern.search(text):
                continue
            if rule.commodities:
                return self._match_commodity(rule, text, language)
            self._logger.debug("intent.matched", intent=rule.name)
            return Matched(category=rule.name, response_text=rule.responses[language], language=language)
        self._logger.debug("intent.no_match", text_len=len(text))
        return NO_MATCH

    def _match_commodity(self, rule: _Rule, text: str, language: Language) -> Matched:
        for commodity in rule.commodities:
            pattern = commodity.patterns.get(language)
            if pattern is not None and pattern.search(text):
                self._logger.debug("intent.matched", intent=rule.name, commodity=commodity.name)
                return Matched(
                    category=rule.name,
                    response_text=commodity.responses[language],
                    language=language,
                    commodity=commodity.name,
                )
        self._logger.debug("intent.matched", intent=rule.name, commodity=None)
        return Matched(category=rule.name, response_text=rule.responses[language], language=language)

    @staticmethod
    def _build_rule(rule: IntentRule) -> _Rule:
        return _Rule(
            name=rule.name,
            patterns=_compile(rule.triggers),
            responses=dict(rule.responses),
            commodities=[
                _Commodity(name=entry.name, patterns=_compile(entry.keywords), responses=dict(entry.responses))
                for entry in rule.commodities
            ],
        )


__all__ = ["IntentMatcher"]
