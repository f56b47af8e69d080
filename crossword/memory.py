"""Process-local memory tier and the per-key single-flight gate.

Both hold shared mutable state; their locks cover only the reference swap
or the in-flight table update, never the I/O done by callers.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Callable, Dict, Optional, TypeVar

from crossword.errors import GenerationUnavailable
from crossword.puzzle import Puzzle

log = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class CacheEntry:
    puzzle: Puzzle
    produced_for_key: str


class MemoryCache:
    """Holds at most one CacheEntry; replaced wholesale, never mutated."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entry: Optional[CacheEntry] = None

    def get(self) -> Optional[CacheEntry]:
        with self._lock:
            return self._entry

    def lookup(self, key: str) -> Optional[Puzzle]:
        entry = self.get()
        if entry is not None and entry.produced_for_key == key:
            return entry.puzzle
        return None

    def put(self, puzzle: Puzzle, key: str) -> CacheEntry:
        entry = CacheEntry(puzzle=puzzle, produced_for_key=key)
        with self._lock:
            self._entry = entry
        return entry

    def clear(self) -> None:
        with self._lock:
            self._entry = None


class SingleFlight:
    """Collapse concurrent calls for the same key into one underlying call.

    The first caller (leader) runs the function; callers arriving while it is
    in flight wait on its Future for at most `wait_timeout` seconds and get
    the same result or exception.
    """

    def __init__(self, wait_timeout: float) -> None:
        self.wait_timeout = wait_timeout
        self._lock = threading.Lock()
        self._calls: Dict[str, Future] = {}

    def in_flight(self) -> int:
        with self._lock:
            return len(self._calls)

    def do(self, key: str, fn: Callable[[], T]) -> T:
        with self._lock:
            fut = self._calls.get(key)
            leader = fut is None
            if leader:
                fut = Future()
                self._calls[key] = fut

        if not leader:
            log.debug("singleflight: joining in-flight call key=%s", key)
            try:
                return fut.result(timeout=self.wait_timeout)
            except FutureTimeout:
                raise GenerationUnavailable(
                    f"Timed out after {self.wait_timeout:.0f}s waiting for in-flight generation"
                ) from None

        try:
            result = fn()
        except BaseException as exc:
            fut.set_exception(exc)
            raise
        else:
            fut.set_result(result)
            return result
        finally:
            with self._lock:
                self._calls.pop(key, None)
