import os
from typing import Any, Optional

import redis

from crossword.errors import StoreUnavailable

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
PUZZLE_TTL_SECONDS = int(os.getenv("PUZZLE_TTL_SECONDS", "0") or 0)  # 0 = never expire
try:
    REDIS_TIMEOUT = float(os.getenv("REDIS_TIMEOUT", "2.0") or 2.0)
except Exception:
    REDIS_TIMEOUT = 2.0


class RedisPuzzleStore:
    """
    Durable tier backed by Redis: one string value per day key.
    """

    def __init__(
        self,
        client: Optional[Any] = None,
        redis_url: Optional[str] = None,
        ttl_seconds: Optional[int] = None,
    ) -> None:
        # Connection is lazy; this does not hit the network until first command.
        self._client = client or redis.from_url(
            (redis_url or REDIS_URL).strip() or REDIS_URL,
            socket_timeout=REDIS_TIMEOUT,
            socket_connect_timeout=REDIS_TIMEOUT,
        )
        self.ttl_seconds = PUZZLE_TTL_SECONDS if ttl_seconds is None else int(ttl_seconds)

    @staticmethod
    def _key(key: str) -> str:
        return f"puzzle:{key}"

    def exists(self, key: str) -> Optional[str]:
        k = self._key(key)
        try:
            found = self._client.exists(k)
        except redis.RedisError as exc:
            raise StoreUnavailable(f"Redis lookup failed for {key}") from exc
        return k if found else None

    def read(self, key: str, handle: Optional[str] = None) -> bytes:
        try:
            raw = self._client.get(handle or self._key(key))
        except redis.RedisError as exc:
            raise StoreUnavailable(f"Redis read failed for {key}") from exc
        if raw is None:
            raise StoreUnavailable(f"No stored puzzle for {key}")
        return raw.encode("utf-8") if isinstance(raw, str) else bytes(raw)

    def write(self, key: str, data: bytes) -> None:
        k = self._key(key)
        try:
            if self.ttl_seconds > 0:
                self._client.setex(k, self.ttl_seconds, data)
            else:
                self._client.set(k, data)
        except redis.RedisError as exc:
            raise StoreUnavailable(f"Redis write failed for {key}") from exc
