from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
import hashlib
import json
import logging
import threading
import time
from typing import Protocol

from pydantic import ValidationError
import redis
from redis.exceptions import RedisError

from sitecounts.schemas.items import CacheEntry, ItemId, SelectionResult

logger = logging.getLogger(__name__)


class CacheBackendError(Exception):
    """Raised when the cache backend cannot be read or written."""


class CacheBackend(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str, ttl_seconds: float) -> None: ...

    def delete(self, key: str) -> None: ...


class InMemoryCacheBackend:
    """Process-local string store with per-key expiry."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[str, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: str, ttl_seconds: float) -> None:
        with self._lock:
            now = self._clock()
            # Expired entries are dropped on every write, read or not.
            expired = [stale for stale, (_, expires_at) in self._entries.items() if now >= expires_at]
            for stale in expired:
                del self._entries[stale]
            self._entries[key] = (value, now + ttl_seconds)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)


class NullCacheBackend:
    def get(self, key: str) -> str | None:
        return None

    def set(self, key: str, value: str, ttl_seconds: float) -> None:
        return None

    def delete(self, key: str) -> None:
        return None


class RedisCacheBackend:
    def __init__(self, client: redis.Redis) -> None:
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> RedisCacheBackend:
        return cls(redis.Redis.from_url(url))

    def get(self, key: str) -> str | None:
        try:
            raw = self.client.get(key)
        except RedisError as exc:
            raise CacheBackendError(f"redis get failed: {exc}") from exc
        if raw is None:
            return None
        if isinstance(raw, bytes):
            try:
                return raw.decode("utf-8")
            except UnicodeDecodeError as exc:
                raise CacheBackendError(f"redis value for {key} is not utf-8: {exc}") from exc
        return str(raw)

    def set(self, key: str, value: str, ttl_seconds: float) -> None:
        try:
            self.client.set(key, value, px=max(1, int(ttl_seconds * 1000)))
        except RedisError as exc:
            raise CacheBackendError(f"redis set failed: {exc}") from exc

    def delete(self, key: str) -> None:
        try:
            self.client.delete(key)
        except RedisError as exc:
            raise CacheBackendError(f"redis delete failed: {exc}") from exc


def selection_cache_key(
    anchor_id: ItemId | None,
    category: str,
    meta_value: str,
    *,
    prefix: str = "sitecounts",
) -> str:
    """Key over anchor, category and metadata value only.

    Target size and attempt budget are not part of the key: calls that differ
    only in those share an entry, and whichever call populated it decides the
    size of the cached result until it expires.
    """
    payload = json.dumps(
        [type(anchor_id).__name__, anchor_id, category, meta_value],
        separators=(",", ":"),
        ensure_ascii=False,
    )
    digest = hashlib.sha256(payload.encode("utf-8")).hexdigest()
    return f"{prefix}:related:{digest}"


@dataclass(slots=True)
class _KeyLock:
    lock: threading.Lock = field(default_factory=threading.Lock)
    holders: int = 0


class ResultCache:
    """Freshness-window memoization of selection results.

    At most one computation runs per key at a time; callers for the same key
    wait and then read the stored result. Different keys never block each
    other. Backend failures degrade to a miss and are never raised.
    """

    def __init__(self, backend: CacheBackend) -> None:
        self.backend = backend
        self._locks: dict[str, _KeyLock] = {}
        self._locks_guard = threading.Lock()

    def get_or_compute(
        self,
        key: str,
        compute: Callable[[], SelectionResult],
        ttl_seconds: float,
        *,
        now: datetime | None = None,
    ) -> SelectionResult:
        if ttl_seconds < 0:
            raise ValueError(f"ttl_seconds must be >= 0, got {ttl_seconds}")

        cached = self._read(key, ttl_seconds, now=now)
        if cached is not None:
            logger.debug("selection cache hit key=%s", key)
            return cached

        with self._key_lock(key):
            cached = self._read(key, ttl_seconds, now=now)
            if cached is not None:
                logger.debug("selection cache hit after wait key=%s", key)
                return cached

            logger.debug("selection cache miss key=%s", key)
            result = compute()
            self._write(key, result, ttl_seconds, created_at=now or datetime.now(timezone.utc))
            return result

    def invalidate(self, key: str) -> None:
        try:
            self.backend.delete(key)
        except CacheBackendError as exc:
            logger.warning("selection cache invalidate failed key=%s: %s", key, exc)

    def _read(self, key: str, ttl_seconds: float, *, now: datetime | None) -> SelectionResult | None:
        try:
            raw = self.backend.get(key)
        except CacheBackendError as exc:
            logger.warning("selection cache read failed key=%s: %s", key, exc)
            return None
        if raw is None:
            return None

        try:
            entry = CacheEntry.model_validate_json(raw)
        except ValidationError:
            logger.warning("discarding undecodable selection cache entry key=%s", key)
            return None

        if not entry.is_fresh(now or datetime.now(timezone.utc), ttl_seconds):
            return None
        return entry.to_result()

    def _write(self, key: str, result: SelectionResult, ttl_seconds: float, *, created_at: datetime) -> None:
        if ttl_seconds <= 0:
            return
        entry = CacheEntry(items=list(result.values()), created_at=created_at, ttl_seconds=ttl_seconds)
        try:
            self.backend.set(key, entry.model_dump_json(), ttl_seconds)
        except CacheBackendError as exc:
            logger.warning("selection cache write failed key=%s: %s", key, exc)

    @contextmanager
    def _key_lock(self, key: str) -> Iterator[None]:
        with self._locks_guard:
            slot = self._locks.get(key)
            if slot is None:
                slot = self._locks[key] = _KeyLock()
            slot.holders += 1
        try:
            with slot.lock:
                yield
        finally:
            with self._locks_guard:
                slot.holders -= 1
                if slot.holders == 0:
                    del self._locks[key]
