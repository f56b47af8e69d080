from __future__ import annotations

from typing import Dict, List, Optional


class PuzzleError(Exception):
    """Base class for failures surfaced by the daily puzzle pipeline.

    `error` is a short label for the HTTP body, `details` is safe to show
    to clients. Raw model output never goes into either.
    """

    error = "Error generating crossword puzzle"

    def __init__(self, details: str = "", *, error: Optional[str] = None) -> None:
        super().__init__(details or self.error)
        self.details = details or self.error
        if error:
            self.error = error

    def to_payload(self) -> Dict[str, str]:
        return {"error": self.error, "details": self.details}


class GenerationUnavailable(PuzzleError):
    error = "Puzzle generation unavailable"


class MalformedOutput(PuzzleError, ValueError):
    error = "Malformed puzzle output"


class SchemaViolation(PuzzleError, ValueError):
    error = "Puzzle schema violation"

    def __init__(self, details: str = "", errors: Optional[List[Dict[str, str]]] = None) -> None:
        self.errors: List[Dict[str, str]] = list(errors or [])
        if not details and self.errors:
            details = "; ".join(f"{e['path']}: {e['message']}" for e in self.errors[:5])
        super().__init__(details)


class StoreUnavailable(PuzzleError):
    error = "Puzzle store unavailable"
