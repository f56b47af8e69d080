"""Daily puzzle orchestration across the memory tier and the durable store.

Lookup order for a day key:
    1. memory tier (no I/O)
    2. durable store (one read, no generation)
    3. generate -> normalize -> durable write -> memory update

Concurrent misses in one process share a single load-or-generate call via
SingleFlight. Across processes generation is at-least-once: two instances
missing at the same moment both generate and the last durable write wins.
"""

from __future__ import annotations

import logging
import os
import threading
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from crossword import llm_client
from crossword.daykey import day_key
from crossword.errors import GenerationUnavailable, MalformedOutput, PuzzleError, StoreUnavailable
from crossword.llm_parsing import normalize
from crossword.memory import CacheEntry, MemoryCache, SingleFlight
from crossword.puzzle import Puzzle
from crossword.store import PuzzleStore

log = logging.getLogger(__name__)

SINGLE_FLIGHT_ENABLED = os.getenv("SINGLE_FLIGHT_ENABLED", "1").lower() in {"1", "true", "yes", "on"}
# 0 = derive from the generation client's worst case plus STORE_SLACK_SECS
try:
    SINGLE_FLIGHT_WAIT_SECS = float(os.getenv("SINGLE_FLIGHT_WAIT_SECS", "0") or 0)
except Exception:
    SINGLE_FLIGHT_WAIT_SECS = 0.0
STORE_SLACK_SECS = 15.0


def default_wait_secs() -> float:
    return SINGLE_FLIGHT_WAIT_SECS or (llm_client.worst_case_secs() + STORE_SLACK_SECS)


class DailyPuzzleCache:
    def __init__(
        self,
        store: PuzzleStore,
        generator: Optional[Callable[[], str]] = None,
        memory: Optional[MemoryCache] = None,
        tz: Optional[str] = None,
        single_flight: Optional[bool] = None,
        wait_timeout: Optional[float] = None,
    ) -> None:
        """
        Args:
            store: Durable tier backend.
            generator: Returns raw model text. Defaults to llm_client.generate.
            memory: Memory tier; a fresh one is created when omitted.
            tz: Reference timezone for day keys. Defaults to PUZZLE_TIMEZONE.
            single_flight: Collapse concurrent misses. Defaults to SINGLE_FLIGHT_ENABLED.
            wait_timeout: Max seconds a follower waits for the in-flight call.
                Defaults to default_wait_secs().
        """
        self.store = store
        self.generator = generator or llm_client.generate
        self.memory = memory or MemoryCache()
        self.tz = tz
        enabled = SINGLE_FLIGHT_ENABLED if single_flight is None else single_flight
        self._flight = SingleFlight(wait_timeout or default_wait_secs()) if enabled else None
        self._stats_lock = threading.Lock()
        self._stats: Dict[str, int] = {
            "memory_hits": 0,
            "durable_hits": 0,
            "generations": 0,
            "store_write_failures": 0,
            "failures": 0,
        }

    def _bump(self, name: str) -> None:
        with self._stats_lock:
            self._stats[name] += 1

    def get_todays_puzzle(self, now: Optional[datetime] = None) -> Puzzle:
        """Return the puzzle for the day containing `now` (default: current time)."""
        key = day_key(now, self.tz)
        puzzle = self.memory.lookup(key)
        if puzzle is not None:
            self._bump("memory_hits")
            return puzzle
        try:
            if self._flight is None:
                return self._load_or_generate(key)
            return self._flight.do(key, lambda: self._load_or_generate(key))
        except PuzzleError as exc:
            self._bump("failures")
            log.warning("daily.failed key=%s error=%s details=%s", key, exc.error, exc.details)
            raise

    def _load_or_generate(self, key: str) -> Puzzle:
        # A previous gate holder may have filled the memory tier already
        puzzle = self.memory.lookup(key)
        if puzzle is not None:
            self._bump("memory_hits")
            return puzzle

        handle = self.store.exists(key)
        if handle is not None:
            return self._load_durable(key, handle)

        log.info("daily.miss: generating puzzle key=%s", key)
        try:
            raw = self.generator()
        except PuzzleError:
            raise
        except Exception as exc:
            raise GenerationUnavailable(f"Generation failed: {exc.__class__.__name__}") from exc
        if not isinstance(raw, str) or not raw.strip():
            raise GenerationUnavailable("Generation returned no content")
        puzzle = normalize(raw)

        try:
            self.store.write(key, puzzle.to_json())
        except StoreUnavailable:
            # Serve the fresh puzzle anyway; the next process will regenerate
            self._bump("store_write_failures")
            log.exception("daily.persist_failed key=%s", key)

        self.memory.put(puzzle, key)
        self._bump("generations")
        log.info("daily.generated key=%s theme=%r words=%d", key, puzzle.theme, len(puzzle.words))
        return puzzle

    def _load_durable(self, key: str, handle: str) -> Puzzle:
        raw = self.store.read(key, handle)
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedOutput(f"Stored puzzle for {key} is not UTF-8") from exc
        puzzle = normalize(text)
        self.memory.put(puzzle, key)
        self._bump("durable_hits")
        log.info("daily.durable_hit key=%s", key)
        return puzzle

    def peek(self) -> Optional[CacheEntry]:
        return self.memory.get()

    def invalidate(self) -> None:
        """Forget the memory entry; the durable store is left alone."""
        self.memory.clear()

    def prewarm(self, now: Optional[datetime] = None) -> Optional[Puzzle]:
        """Best-effort fill of today's puzzle, e.g. at startup. Never raises PuzzleError."""
        try:
            return self.get_todays_puzzle(now)
        except PuzzleError as exc:
            log.warning("daily.prewarm failed: %s", exc.details)
            return None

    def stats(self) -> Dict[str, Any]:
        with self._stats_lock:
            out: Dict[str, Any] = dict(self._stats)
        entry = self.memory.get()
        out["memory_key"] = entry.produced_for_key if entry else None
        out["single_flight"] = self._flight is not None
        return out
