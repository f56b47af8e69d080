from __future__ import annotations

import json
from types import MappingProxyType
from typing import Any, Dict, Mapping, Tuple

from pydantic import BaseModel, ConfigDict, field_validator, model_validator


class Puzzle(BaseModel):
    """Canonical daily puzzle: a theme, its words, and one clue per word."""

    model_config = ConfigDict(frozen=True)

    theme: str
    words: Tuple[str, ...]
    clues: Mapping[str, str]

    @field_validator("theme")
    @classmethod
    def _theme_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("theme must be a non-empty string")
        return v

    @field_validator("clues")
    @classmethod
    def _clues_read_only(cls, v: Mapping[str, str]) -> Mapping[str, str]:
        return MappingProxyType(dict(v))

    @model_validator(mode="after")
    def _clues_match_words(self) -> "Puzzle":
        if len(set(self.words)) != len(self.words):
            raise ValueError("words must be unique")
        if any(w != w.upper() for w in self.words):
            raise ValueError("words must be uppercase")
        if set(self.clues) != set(self.words):
            raise ValueError("clue keys must match words exactly")
        if any(not c.strip() for c in self.clues.values()):
            raise ValueError("clues must be non-empty strings")
        return self

    def to_payload(self) -> Dict[str, Any]:
        # Clue order follows word order so serialization is stable
        return {
            "theme": self.theme,
            "words": list(self.words),
            "clues": {w: self.clues[w] for w in self.words},
        }

    def to_json(self) -> bytes:
        return json.dumps(self.to_payload(), ensure_ascii=False, separators=(",", ":")).encode("utf-8")
