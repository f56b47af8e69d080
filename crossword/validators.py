from __future__ import annotations

import re
from typing import Dict, List, Mapping, Sequence

WORD_MIN_LEN = 4
WORD_MAX_LEN = 7

_ALPHA_RE = re.compile(r"^[A-Z]+$")


def collect_errors(theme: object, words: Sequence[str], clues: Mapping[str, object]) -> List[Dict[str, str]]:
    """
    Return a list of {"path": "...", "message": "..."} error dicts for a
    candidate puzzle whose words are already uppercased and de-duplicated.
    An empty list means the theme/words/clues triple can become a Puzzle.
    """
    errors: List[Dict[str, str]] = []

    if not isinstance(theme, str) or not theme.strip():
        errors.append({"path": "theme", "message": "required property 'theme' must be a non-empty string"})

    if not words:
        errors.append({"path": "words", "message": "required property 'words' must not be empty"})

    word_set = set(words)
    for idx, word in enumerate(words):
        if not word:
            errors.append({"path": f"words[{idx}]", "message": "word must be a non-empty string"})
            continue
        if word not in clues:
            errors.append({"path": f"clues.{word}", "message": f"required clue for '{word}' is missing"})
            continue
        clue = clues[word]
        if not isinstance(clue, str) or not clue.strip():
            errors.append({"path": f"clues.{word}", "message": f"clue for '{word}' must be a non-empty string"})

    for key in clues:
        if key not in word_set:
            errors.append({"path": f"clues.{key}", "message": f"clue '{key}' does not match any word"})

    return errors


def soft_warnings(words: Sequence[str]) -> List[str]:
    """Words outside the requested 4-7 letter alphabetic range. Reported, never rejected."""
    out: List[str] = []
    for word in words:
        if not _ALPHA_RE.match(word):
            out.append(f"{word}: not alphabetic")
        elif not WORD_MIN_LEN <= len(word) <= WORD_MAX_LEN:
            out.append(f"{word}: length {len(word)} outside {WORD_MIN_LEN}-{WORD_MAX_LEN}")
    return out
