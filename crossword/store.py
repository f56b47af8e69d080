from __future__ import annotations

import logging
import os
import uuid
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

import requests
from requests.exceptions import RequestException

from crossword.errors import StoreUnavailable

log = logging.getLogger(__name__)

PUZZLE_STORE = os.getenv("PUZZLE_STORE", "file").strip().lower() or "file"
PUZZLE_STORE_DIR = Path(os.getenv("PUZZLE_STORE_DIR", "cache"))
OBJECT_PREFIX = "puzzles/"

BLOB_API_URL = os.getenv("BLOB_API_URL", "https://blob.vercel-storage.com").rstrip("/")
BLOB_READ_WRITE_TOKEN = os.getenv("BLOB_READ_WRITE_TOKEN", "").strip()
BLOB_API_VERSION = os.getenv("BLOB_API_VERSION", "7").strip()
try:
    STORE_TIMEOUT_SECS = float(os.getenv("STORE_TIMEOUT_SECS", "10"))
except Exception:
    STORE_TIMEOUT_SECS = 10.0


def object_path(key: str) -> str:
    """Storage path for a day key, e.g. puzzles/2025-01-31.json."""
    return f"{OBJECT_PREFIX}{key}.json"


class PuzzleStore(Protocol):
    """Durable tier: one canonical puzzle document per day key.

    `exists` returns an opaque handle (path, URL, key) or None; pass it back
    to `read` to avoid a second lookup. Writes are last-writer-wins.
    """

    def exists(self, key: str) -> Optional[str]: ...

    def read(self, key: str, handle: Optional[str] = None) -> bytes: ...

    def write(self, key: str, data: bytes) -> None: ...


class FilePuzzleStore:
    """Puzzles as JSON files on local disk; suits a single host or a shared volume."""

    def __init__(self, root: Optional[Path] = None) -> None:
        self.root = Path(root) if root is not None else PUZZLE_STORE_DIR

    def _path(self, key: str) -> Path:
        return self.root / object_path(key)

    def exists(self, key: str) -> Optional[str]:
        path = self._path(key)
        return str(path) if path.is_file() else None

    def read(self, key: str, handle: Optional[str] = None) -> bytes:
        path = Path(handle) if handle else self._path(key)
        try:
            return path.read_bytes()
        except OSError as exc:
            raise StoreUnavailable(f"Failed to read puzzle for {key}") from exc

    def write(self, key: str, data: bytes) -> None:
        path = self._path(key)
        # Unique temp name so concurrent writers never share a partial file
        tmp = path.with_name(f"{path.name}.{uuid.uuid4().hex[:8]}.tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_bytes(data)
            tmp.replace(path)
        except OSError as exc:
            tmp.unlink(missing_ok=True)
            raise StoreUnavailable(f"Failed to write puzzle for {key}") from exc


class BlobPuzzleStore:
    """
    HTTP object store with a Vercel Blob style REST API:
      GET  {api}?prefix=...  -> {"blobs": [{"pathname", "url"}, ...]}
      GET  {url}             -> object bytes (public)
      PUT  {api}/{pathname}  -> stores the body under pathname
    """

    def __init__(
        self,
        token: Optional[str] = None,
        api_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.token = (token if token is not None else BLOB_READ_WRITE_TOKEN).strip()
        self.api_url = (api_url or BLOB_API_URL).rstrip("/")
        self.timeout = timeout or STORE_TIMEOUT_SECS

    def _headers(self) -> Dict[str, str]:
        if not self.token:
            raise StoreUnavailable("BLOB_READ_WRITE_TOKEN is not set")
        return {
            "authorization": f"Bearer {self.token}",
            "x-api-version": BLOB_API_VERSION,
        }

    def exists(self, key: str) -> Optional[str]:
        pathname = object_path(key)
        try:
            resp = requests.get(
                self.api_url,
                headers=self._headers(),
                params={"prefix": pathname, "limit": "10"},
                timeout=self.timeout,
            )
        except RequestException as exc:
            raise StoreUnavailable(f"Failed to list puzzles for {key}") from exc
        if resp.status_code != 200:
            log.warning("store.blob list HTTP %s: %s", resp.status_code, (resp.text or "")[:200])
            raise StoreUnavailable(f"Failed to list puzzles for {key} (HTTP {resp.status_code})")
        try:
            blobs = resp.json().get("blobs") or []
        except (ValueError, AttributeError) as exc:
            raise StoreUnavailable(f"Unreadable listing for {key}") from exc
        for blob in blobs:
            if isinstance(blob, dict) and blob.get("pathname") == pathname and blob.get("url"):
                return str(blob["url"])
        return None

    def read(self, key: str, handle: Optional[str] = None) -> bytes:
        url = handle or self.exists(key)
        if not url:
            raise StoreUnavailable(f"No stored puzzle for {key}")
        try:
            resp = requests.get(url, timeout=self.timeout)
        except RequestException as exc:
            raise StoreUnavailable(f"Failed to fetch puzzle for {key}") from exc
        if resp.status_code != 200:
            raise StoreUnavailable(f"Failed to fetch puzzle for {key} (HTTP {resp.status_code})")
        return resp.content

    def write(self, key: str, data: bytes) -> None:
        pathname = object_path(key)
        headers = self._headers()
        headers.update(
            {
                "x-content-type": "application/json",
                "x-add-random-suffix": "0",
                "x-allow-overwrite": "1",
            }
        )
        try:
            resp = requests.put(f"{self.api_url}/{pathname}", headers=headers, data=data, timeout=self.timeout)
        except RequestException as exc:
            raise StoreUnavailable(f"Failed to upload puzzle for {key}") from exc
        if resp.status_code not in (200, 201):
            log.warning("store.blob put HTTP %s: %s", resp.status_code, (resp.text or "")[:200])
            raise StoreUnavailable(f"Failed to upload puzzle for {key} (HTTP {resp.status_code})")


def get_store(kind: Optional[str] = None, **kwargs: Any) -> PuzzleStore:
    """Build the durable backend named by `kind` or PUZZLE_STORE (file, blob, redis)."""
    kind = (kind or PUZZLE_STORE).strip().lower()
    if kind == "file":
        return FilePuzzleStore(**kwargs)
    if kind == "blob":
        return BlobPuzzleStore(**kwargs)
    if kind == "redis":
        from crossword.redis_store import RedisPuzzleStore

        return RedisPuzzleStore(**kwargs)
    raise ValueError(f"unknown PUZZLE_STORE backend: {kind!r}")
