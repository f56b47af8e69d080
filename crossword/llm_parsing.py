from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from crossword import validators
from crossword.errors import MalformedOutput, SchemaViolation
from crossword.puzzle import Puzzle

log = logging.getLogger(__name__)

# How much of an unparseable response goes into the log
RAW_LOG_CHARS = 2000

_FENCE_JSON_RE = re.compile(r"```json\s*([\s\S]*?)```", re.IGNORECASE)
_FENCE_ANY_RE = re.compile(r"```[a-zA-Z0-9_-]*\s*([\s\S]*?)```")
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")


def _balanced_json_slice(s: str) -> Optional[str]:
    in_str = False
    esc = False
    depth = 0
    start_idx = -1
    for i, ch in enumerate(s):
        if not in_str and ch == "{":
            if depth == 0:
                start_idx = i
            depth += 1
        elif not in_str and ch == "}":
            if depth > 0:
                depth -= 1
                if depth == 0 and start_idx != -1:
                    return s[start_idx : i + 1]
        elif ch == '"':
            if not esc:
                in_str = not in_str
            esc = False
            continue
        esc = (ch == "\\") and not esc
    return None


def strip_markup(text: str) -> str:
    """Remove code fences and surrounding prose; return the JSON candidate text.

    Order: ```json fence, any ``` fence, first balanced {...} object, then the
    stripped text itself.
    """
    t = (text or "").strip()
    m = _FENCE_JSON_RE.search(t) or _FENCE_ANY_RE.search(t)
    if m:
        return m.group(1).strip()
    sliced = _balanced_json_slice(t)
    return sliced.strip() if sliced else t


def _json_from_text(text: str) -> Any:
    """Parse the JSON payload out of model text; raise MalformedOutput on failure."""
    candidate = strip_markup(text)
    if candidate:
        try:
            return json.loads(candidate)
        except (ValueError, RecursionError):
            s = _TRAILING_COMMA_RE.sub(r"\1", candidate)
            s = s.replace("“", '"').replace("”", '"').replace("’", "'")
            try:
                return json.loads(s)
            except (ValueError, RecursionError):
                pass
    log.warning(
        "llm_parsing: unparseable model output len=%d raw=%r",
        len(text or ""),
        (text or "")[:RAW_LOG_CHARS],
    )
    raise MalformedOutput("Model output could not be parsed as JSON")


def _canonical_word(raw: Any, path: str) -> str:
    if not isinstance(raw, str):
        raise SchemaViolation(errors=[{"path": path, "message": "word must be a string"}])
    return raw.strip().upper()


def _from_entries(entries: List[Any]) -> Tuple[List[str], Dict[str, Any]]:
    """Shape A: words is a list of {word, clue} objects."""
    words: List[str] = []
    clues: Dict[str, Any] = {}
    for idx, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise SchemaViolation(errors=[{"path": f"words[{idx}]", "message": "entry must be an object with word and clue"}])
        if "word" not in entry:
            raise SchemaViolation(errors=[{"path": f"words[{idx}].word", "message": "required property 'word' is missing"}])
        word = _canonical_word(entry["word"], f"words[{idx}].word")
        if word in words:
            continue
        words.append(word)
        if "clue" in entry:
            clues[word] = entry["clue"]
    return words, clues


def _from_word_list(raw_words: List[Any], raw_clues: Any) -> Tuple[List[str], Dict[str, Any]]:
    """Shape B: words is a list of strings, clues a separate mapping."""
    if raw_clues is None:
        raw_clues = {}
    if not isinstance(raw_clues, dict):
        raise SchemaViolation(errors=[{"path": "clues", "message": "clues must be an object keyed by word"}])
    words: List[str] = []
    for idx, raw in enumerate(raw_words):
        word = _canonical_word(raw, f"words[{idx}]")
        if word not in words:
            words.append(word)
    clues: Dict[str, Any] = {}
    for key, clue in raw_clues.items():
        ukey = str(key).strip().upper()
        clues.setdefault(ukey, clue)
    return words, clues


def normalize_doc(doc: Any) -> Puzzle:
    """Turn parsed model output (shape A or B) into a canonical Puzzle or raise SchemaViolation."""
    if not isinstance(doc, dict):
        raise SchemaViolation(errors=[{"path": "(root)", "message": "puzzle must be a JSON object"}])
    raw_words = doc.get("words")
    if not isinstance(raw_words, list):
        raise SchemaViolation(errors=[{"path": "words", "message": "required property 'words' must be an array"}])

    if raw_words and all(isinstance(w, dict) for w in raw_words):
        words, clues = _from_entries(raw_words)
    elif all(isinstance(w, str) for w in raw_words):
        words, clues = _from_word_list(raw_words, doc.get("clues"))
    else:
        raise SchemaViolation(errors=[{"path": "words", "message": "words must be all strings or all {word, clue} objects"}])

    theme = doc.get("theme")
    errors = validators.collect_errors(theme, words, clues)
    if errors:
        raise SchemaViolation(errors=errors)

    warnings = validators.soft_warnings(words)
    if warnings:
        log.warning("llm_parsing: soft word constraints not met: %s", ", ".join(warnings))

    try:
        return Puzzle(theme=theme.strip(), words=tuple(words), clues={w: clues[w] for w in words})
    except ValidationError as ve:
        errs = [
            {"path": ".".join(str(p) for p in e.get("loc", ())) or "(root)", "message": e.get("msg", "invalid")}
            for e in ve.errors()
        ]
        raise SchemaViolation(errors=errs) from ve


def normalize(raw_text: str) -> Puzzle:
    """Parse untrusted model text into a Puzzle.

    Raises MalformedOutput if no JSON can be recovered and SchemaViolation if
    the JSON does not describe a puzzle whose clues match its words.
    """
    return normalize_doc(_json_from_text(raw_text))
