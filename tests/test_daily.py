from __future__ import annotations

import json
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest

from crossword.daily import DailyPuzzleCache
from crossword.errors import GenerationUnavailable, MalformedOutput, SchemaViolation, StoreUnavailable
from crossword.llm_parsing import normalize


NOW = datetime(2025, 6, 1, 9, 0, tzinfo=timezone.utc)
TODAY = "2025-06-01"

SPACE_RAW = json.dumps(
    {
        "theme": "Space",
        "words": ["orbit", "comet"],
        "clues": {"ORBIT": "Path around a star", "COMET": "Icy body with a tail"},
    }
)
OCEAN_RAW = json.dumps(
    {"theme": "Ocean", "words": [{"word": "coral", "clue": "Reef builder"}, {"word": "squid", "clue": "Inky swimmer"}]}
)


class FakeStore:
    """In-memory PuzzleStore that records every call."""

    def __init__(self, data: Optional[Dict[str, bytes]] = None) -> None:
        self.data: Dict[str, bytes] = dict(data or {})
        self.calls: List[tuple] = []
        self.fail_read = False
        self.fail_write = False

    def exists(self, key: str) -> Optional[str]:
        self.calls.append(("exists", key))
        return f"mem://{key}" if key in self.data else None

    def read(self, key: str, handle: Optional[str] = None) -> bytes:
        self.calls.append(("read", key))
        if self.fail_read:
            raise StoreUnavailable("read failed")
        return self.data[key]

    def write(self, key: str, data: bytes) -> None:
        self.calls.append(("write", key))
        if self.fail_write:
            raise StoreUnavailable("write failed")
        self.data[key] = data

    def count(self, op: str) -> int:
        return sum(1 for c in self.calls if c[0] == op)


class FakeGenerator:
    def __init__(self, outputs: List[str], delay: float = 0.0) -> None:
        self.outputs = list(outputs)
        self.calls = 0
        self.delay = delay
        self._lock = threading.Lock()

    def __call__(self) -> str:
        with self._lock:
            self.calls += 1
            out = self.outputs[min(self.calls, len(self.outputs)) - 1]
        if self.delay:
            time.sleep(self.delay)
        return out


def _cache(store: FakeStore, gen, **kwargs) -> DailyPuzzleCache:
    kwargs.setdefault("tz", "UTC")
    return DailyPuzzleCache(store=store, generator=gen, **kwargs)


def test_miss_generates_persists_and_fills_memory():
    store = FakeStore()
    gen = FakeGenerator([SPACE_RAW])
    cache = _cache(store, gen)

    puzzle = cache.get_todays_puzzle(NOW)

    assert puzzle.words == ("ORBIT", "COMET")
    assert gen.calls == 1
    assert normalize(store.data[TODAY].decode("utf-8")) == puzzle
    entry = cache.peek()
    assert entry is not None and entry.produced_for_key == TODAY and entry.puzzle == puzzle
    assert cache.stats()["generations"] == 1


def test_durable_write_happens_before_memory_update():
    store = FakeStore()
    cache = _cache(store, FakeGenerator([SPACE_RAW]))
    seen_memory_at_write = []
    original_write = store.write

    def spying_write(key, data):
        seen_memory_at_write.append(cache.peek())
        original_write(key, data)

    store.write = spying_write  # type: ignore[assignment]
    cache.get_todays_puzzle(NOW)
    assert seen_memory_at_write == [None]
    assert cache.peek() is not None


def test_memory_hit_makes_no_external_calls():
    store = FakeStore()
    gen = FakeGenerator([SPACE_RAW])
    cache = _cache(store, gen)
    first = cache.get_todays_puzzle(NOW)
    store.calls.clear()
    gen.calls = 0

    second = cache.get_todays_puzzle(NOW + timedelta(hours=5))

    assert second is first
    assert gen.calls == 0
    assert store.calls == []


def test_durable_hit_reads_once_and_populates_memory():
    existing = normalize(OCEAN_RAW)
    store = FakeStore({TODAY: existing.to_json()})
    gen = FakeGenerator([SPACE_RAW])
    cache = _cache(store, gen)

    puzzle = cache.get_todays_puzzle(NOW)

    assert puzzle == existing
    assert gen.calls == 0
    assert store.count("read") == 1
    assert store.count("write") == 0

    store.calls.clear()
    again = cache.get_todays_puzzle(NOW)
    assert again == existing
    assert store.calls == []


def test_day_rollover_triggers_miss_path():
    store = FakeStore()
    gen = FakeGenerator([SPACE_RAW, OCEAN_RAW])
    cache = _cache(store, gen)

    day1 = cache.get_todays_puzzle(NOW)
    day2 = cache.get_todays_puzzle(NOW + timedelta(days=1))

    assert day1.theme == "Space"
    assert day2.theme == "Ocean"
    assert gen.calls == 2
    assert set(store.data) == {TODAY, "2025-06-02"}
    assert cache.peek().produced_for_key == "2025-06-02"


def test_malformed_output_leaves_both_tiers_untouched():
    store = FakeStore()
    cache = _cache(store, FakeGenerator(["not json at all"]))

    with pytest.raises(MalformedOutput):
        cache.get_todays_puzzle(NOW)

    assert cache.peek() is None
    assert store.count("write") == 0
    assert cache.stats()["failures"] == 1


def test_schema_violation_leaves_both_tiers_untouched():
    store = FakeStore()
    raw = json.dumps({"theme": "Space", "words": ["orbit"], "clues": {}})
    cache = _cache(store, FakeGenerator([raw]))

    with pytest.raises(SchemaViolation):
        cache.get_todays_puzzle(NOW)

    assert cache.peek() is None
    assert store.data == {}


def test_generation_failure_propagates_typed_error():
    def boom() -> str:
        raise GenerationUnavailable("provider down")

    store = FakeStore()
    cache = _cache(store, boom)
    with pytest.raises(GenerationUnavailable):
        cache.get_todays_puzzle(NOW)
    assert cache.peek() is None


def test_unexpected_generator_exception_becomes_generation_unavailable():
    def boom() -> str:
        raise RuntimeError("socket closed")

    cache = _cache(FakeStore(), boom)
    with pytest.raises(GenerationUnavailable):
        cache.get_todays_puzzle(NOW)


def test_empty_generation_is_generation_unavailable():
    cache = _cache(FakeStore(), FakeGenerator(["   "]))
    with pytest.raises(GenerationUnavailable):
        cache.get_todays_puzzle(NOW)


def test_store_read_failure_does_not_regenerate():
    store = FakeStore({TODAY: normalize(SPACE_RAW).to_json()})
    store.fail_read = True
    gen = FakeGenerator([OCEAN_RAW])
    cache = _cache(store, gen)

    with pytest.raises(StoreUnavailable):
        cache.get_todays_puzzle(NOW)
    assert gen.calls == 0
    assert cache.peek() is None


def test_store_write_failure_still_returns_fresh_puzzle():
    store = FakeStore()
    store.fail_write = True
    gen = FakeGenerator([SPACE_RAW])
    cache = _cache(store, gen)

    puzzle = cache.get_todays_puzzle(NOW)

    assert puzzle.theme == "Space"
    assert cache.peek().puzzle == puzzle
    assert cache.stats()["store_write_failures"] == 1
    # Served from memory afterwards, no second generation
    cache.get_todays_puzzle(NOW)
    assert gen.calls == 1


def test_corrupt_durable_record_surfaces_instead_of_regenerating():
    store = FakeStore({TODAY: b"\xff\xfe garbage"})
    gen = FakeGenerator([SPACE_RAW])
    cache = _cache(store, gen)
    with pytest.raises(MalformedOutput):
        cache.get_todays_puzzle(NOW)
    assert gen.calls == 0


def test_concurrent_misses_share_one_generation():
    store = FakeStore()
    gen = FakeGenerator([SPACE_RAW], delay=0.2)
    cache = _cache(store, gen, single_flight=True, wait_timeout=5)
    results = []
    errors = []

    def worker():
        try:
            results.append(cache.get_todays_puzzle(NOW))
        except Exception as exc:  # pragma: no cover - surfaced by assertion below
            errors.append(exc)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    assert errors == []
    assert len(results) == 8
    assert gen.calls == 1
    assert store.count("write") == 1
    assert all(p == results[0] for p in results)


def test_without_single_flight_concurrent_misses_may_duplicate():
    store = FakeStore()
    gen = FakeGenerator([SPACE_RAW], delay=0.2)
    cache = _cache(store, gen, single_flight=False)
    barrier = threading.Barrier(3)
    results = []

    def worker():
        barrier.wait()
        results.append(cache.get_todays_puzzle(NOW))

    threads = [threading.Thread(target=worker) for _ in range(3)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    assert len(results) == 3
    assert 1 <= gen.calls <= 3
    assert store.count("write") == gen.calls


def test_single_flight_follower_times_out():
    store = FakeStore()
    gen = FakeGenerator([SPACE_RAW], delay=1.0)
    cache = _cache(store, gen, single_flight=True, wait_timeout=0.1)
    leader_result = []
    leader = threading.Thread(target=lambda: leader_result.append(cache.get_todays_puzzle(NOW)))
    leader.start()
    time.sleep(0.2)

    with pytest.raises(GenerationUnavailable):
        cache.get_todays_puzzle(NOW)

    leader.join(timeout=5)
    assert leader_result and leader_result[0].theme == "Space"


def test_invalidate_and_prewarm():
    store = FakeStore()
    gen = FakeGenerator([SPACE_RAW])
    cache = _cache(store, gen)
    assert cache.prewarm(NOW).theme == "Space"
    cache.invalidate()
    assert cache.peek() is None
    # Durable copy is still there: no second generation
    assert cache.get_todays_puzzle(NOW).theme == "Space"
    assert gen.calls == 1
    stats = cache.stats()
    assert stats["generations"] == 1
    assert stats["durable_hits"] == 1
    assert stats["memory_key"] == TODAY


def test_prewarm_swallows_pipeline_errors():
    cache = _cache(FakeStore(), FakeGenerator(["not json at all"]))
    assert cache.prewarm(NOW) is None


def test_default_follower_wait_covers_every_provider_attempt(monkeypatch):
    from crossword import daily, llm_client

    monkeypatch.setattr(daily, "SINGLE_FLIGHT_WAIT_SECS", 0.0)
    monkeypatch.setattr(llm_client, "LLM_TIMEOUT_SECS", 10.0)
    monkeypatch.setattr(llm_client, "OPENAI_API_KEY", "sk-test")
    monkeypatch.setattr(llm_client, "OPENROUTER_API_KEY", "or-test")
    monkeypatch.setattr(llm_client, "GROQ_API_KEY", "gsk-test")

    # 3 providers x (request + JSON-mode retry) x 10s, plus store slack
    assert daily.default_wait_secs() == 3 * 2 * 10.0 + daily.STORE_SLACK_SECS
    cache = DailyPuzzleCache(store=FakeStore(), generator=FakeGenerator([SPACE_RAW]), single_flight=True)
    assert cache._flight.wait_timeout == daily.default_wait_secs()


def test_configured_follower_wait_wins(monkeypatch):
    from crossword import daily

    monkeypatch.setattr(daily, "SINGLE_FLIGHT_WAIT_SECS", 7.0)
    assert daily.default_wait_secs() == 7.0
