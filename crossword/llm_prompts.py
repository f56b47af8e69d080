from __future__ import annotations

from typing import Dict, List

WORD_COUNT = 15

SYSTEM_PROMPT = (
    "You are an advanced crossword puzzle generator. "
    f"Generate unique themes with {WORD_COUNT} words and clues for each word, formatted strictly as JSON. "
    "Output a single JSON object only. No backticks, no markdown, no explanations."
)

_PUZZLE_SHAPE_HINT = """{
  "theme": "<unique theme>",
  "words": [
    { "word": "<word1>", "clue": "<clue1>" },
    { "word": "<word2>", "clue": "<clue2>" },
    ...
    { "word": "<word15>", "clue": "<clue15>" }
  ]
}"""


def build_user_prompt(word_count: int = WORD_COUNT) -> str:
    return (
        f"Generate a unique crossword puzzle theme with exactly {word_count} words and their corresponding clues. "
        "Every word must be a single word of 4-7 letters (A-Z only, no spaces or hyphens), "
        "all words must be different, and every word needs exactly one clue. "
        "The output should strictly follow this format:\n\n"
        f"{_PUZZLE_SHAPE_HINT}"
    )


def build_messages(word_count: int = WORD_COUNT) -> List[Dict[str, str]]:
    """The fixed two-part prompt: output contract as system, request as user."""
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": build_user_prompt(word_count)},
    ]
