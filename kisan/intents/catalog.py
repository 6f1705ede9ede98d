from __future__ import annotations

import functools
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from kisan.config import package_root
from kisan.lang.tags import SUPPORTED_LANGUAGES, Language
from kisan.orchestrator.events import IntentCategory

COMMON_KEY = "common"


def _check_pattern_keys(patterns: dict[str, list[str]]) -> dict[str, list[str]]:
    allowed = {*SUPPORTED_LANGUAGES, COMMON_KEY}
    unknown = set(patterns) - allowed
    if unknown:
        raise ValueError(f"Unknown pattern sets: {sorted(unknown)}")
    return patterns


def _check_complete(table: dict[str, str], owner: str) -> dict[str, str]:
    missing = [lang for lang in SUPPORTED_LANGUAGES if not table.get(lang)]
    if missing:
        raise ValueError(f"{owner} is missing text for {missing}")
    return table


class CommodityEntry(BaseModel):
    name: str
    keywords: dict[str, list[str]]
    responses: dict[Language, str]

    @field_validator("keywords")
    @classmethod
    def known_keyword_sets(cls, keywords: dict[str, list[str]]) -> dict[str, list[str]]:
        return _check_pattern_keys(keywords)

    @model_validator(mode="after")
    def every_language_answered(self) -> "CommodityEntry":
        _check_complete(self.responses, f"commodity '{self.name}'")
        return self


class IntentRule(BaseModel):
    """One entry of the ordered rule list."""

    name: IntentCategory
    triggers: dict[str, list[str]]
    responses: dict[Language, str]
    commodities: list[CommodityEntry] = Field(default_factory=list)

    @field_validator("triggers")
    @classmethod
    def known_trigger_sets(cls, triggers: dict[str, list[str]]) -> dict[str, list[str]]:
        return _check_pattern_keys(triggers)

    @model_validator(mode="after")
    def every_language_answered(self) -> "IntentRule":
        _check_complete(self.responses, f"intent '{self.name}'")
        return self


class IntentCatalog(BaseModel):
    """Static rule set and response tables behind the local matcher."""

    fallback: dict[Language, str]
    prompts: dict[Language, str]
    intents: list[IntentRule]
    quick_commands: dict[Language, list[str]] = Field(default_factory=dict)

    @model_validator(mode="after")
    def validate_tables(self) -> "IntentCatalog":
        _check_complete(self.fallback, "fallback")
        _check_complete(self.prompts, "prompts")
        names = [rule.name for rule in self.intents]
        if len(names) != len(set(names)):
            raise ValueError("Intent names must be unique")
        for rule in self.intents:
            if rule.name == "market_price" and not rule.commodities:
                raise ValueError("market_price needs at least one commodity")
        return self

    def fallback_text(self, language: Language) -> str:
        return self.fallback[language]

    def prompt_prefix(self, language: Language) -> str:
        return self.prompts[language]

    def rule(self, name: IntentCategory) -> IntentRule:
        for rule in self.intents:
            if rule.name == name:
                return rule
        raise KeyError(name)

    def commands_for(self, language: Language) -> list[str]:
        return list(self.quick_commands.get(language, []))


def default_catalog_path() -> Path:
    return package_root() / "intents" / "catalog.yml"


def parse_catalog(raw: object) -> IntentCatalog:
    if not isinstance(raw, dict):
        raise ValueError("catalog.yml must define a mapping")
    return IntentCatalog.model_validate(raw)


@functools.lru_cache(maxsize=1)
def load_catalog(path: str | None = None) -> IntentCatalog:
    config_path = Path(path) if path else default_catalog_path()
    if not config_path.exists():
        raise FileNotFoundError(config_path)
    return parse_catalog(yaml.safe_load(config_path.read_text(encoding="utf-8")))


__all__ = [
    "COMMON_KEY",
    "CommodityEntry",
    "IntentRule",
    "IntentCatalog",
    "default_catalog_path",
    "parse_catalog",
    "load_catalog",
]
