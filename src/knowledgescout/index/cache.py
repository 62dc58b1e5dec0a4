"""Short-lived cache of computed answers.

Keys follow ``query:<base64(normalized query)>[:doc:<document id>]`` and are
matched with glob patterns on invalidation. Backend failures never reach the
caller: reads degrade to misses and writes to no-ops.
"""

from __future__ import annotations

import base64
import fnmatch
import json
import logging
import threading
import time
from typing import Any, Callable, Dict, List, Protocol, Sequence, Tuple

import redis

from knowledgescout.errors import CacheUnavailable
from knowledgescout.utils.text import normalize_query

LOGGER = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 60
KEY_PREFIX = "query:"
SCOPE_MARKER = ":doc:"


class CacheBackend(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    def keys(self, pattern: str) -> List[str]: ...

    def delete(self, keys: Sequence[str]) -> int: ...


class MemoryCacheBackend:
    """In-process backend with lazy expiry. ``clock`` is injectable for tests."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: Dict[str, Tuple[str, float]] = {}
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

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._lock:
            self._entries[key] = (value, self._clock() + ttl_seconds)

    def keys(self, pattern: str) -> List[str]:
        with self._lock:
            now = self._clock()
            expired = [key for key, (_, exp) in self._entries.items() if exp <= now]
            for key in expired:
                del self._entries[key]
            return [key for key in self._entries if fnmatch.fnmatchcase(key, pattern)]

    def delete(self, keys: Sequence[str]) -> int:
        removed = 0
        with self._lock:
            for key in keys:
                if self._entries.pop(key, None) is not None:
                    removed += 1
        return removed

    def __len__(self) -> int:
        return len(self._entries)


class RedisCacheBackend:
    """Redis backend: SETEX for expiry, SCAN + DEL for pattern invalidation."""

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        *,
        socket_timeout: float = 2.0,
        client: redis.Redis | None = None,
    ) -> None:
        self._client = client or redis.Redis.from_url(
            url,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
            decode_responses=True,
        )

    def get(self, key: str) -> str | None:
        try:
            return self._client.get(key)
        except redis.RedisError as exc:
            raise CacheUnavailable(str(exc)) from exc

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            self._client.setex(key, ttl_seconds, value)
        except redis.RedisError as exc:
            raise CacheUnavailable(str(exc)) from exc

    def keys(self, pattern: str) -> List[str]:
        try:
            return list(self._client.scan_iter(match=pattern, count=500))
        except redis.RedisError as exc:
            raise CacheUnavailable(str(exc)) from exc

    def delete(self, keys: Sequence[str]) -> int:
        if not keys:
            return 0
        try:
            return int(self._client.delete(*keys))
        except redis.RedisError as exc:
            raise CacheUnavailable(str(exc)) from exc


class QueryCache:
    """Answer cache keyed by query fingerprint.

    Every invalidation bumps ``generation``. A writer that read the generation
    before computing its value passes it to ``set``; the write is dropped when an
    invalidation happened in between.
    """

    def __init__(self, backend: CacheBackend, *, default_ttl: int = DEFAULT_TTL_SECONDS) -> None:
        if default_ttl <= 0:
            raise ValueError("default_ttl must be positive")
        self.backend = backend
        self.default_ttl = default_ttl
        self._generation = 0
        self._generation_lock = threading.Lock()

    @property
    def generation(self) -> int:
        with self._generation_lock:
            return self._generation

    def _bump(self) -> None:
        with self._generation_lock:
            self._generation += 1

    @staticmethod
    def fingerprint(query: str, document_id: str | None = None) -> str:
        encoded = base64.b64encode(normalize_query(query).encode("utf-8")).decode("ascii")
        key = f"{KEY_PREFIX}{encoded}"
        if document_id:
            key = f"{key}{SCOPE_MARKER}{document_id}"
        return key

    def get(self, key: str) -> Dict[str, Any] | None:
        try:
            raw = self.backend.get(key)
        except CacheUnavailable as exc:
            LOGGER.warning("Cache unavailable, treating %s as a miss: %s", key, exc)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            LOGGER.warning("Discarding undecodable cache entry %s", key)
            return None

    def set(
        self,
        key: str,
        value: Dict[str, Any],
        ttl_seconds: int | None = None,
        *,
        generation: int | None = None,
    ) -> bool:
        ttl = self.default_ttl if ttl_seconds is None else ttl_seconds
        if ttl <= 0:
            raise ValueError("ttl_seconds must be positive")
        payload = json.dumps(value, ensure_ascii=True)
        # check and write atomically with respect to _bump()
        with self._generation_lock:
            if generation is not None and generation != self._generation:
                LOGGER.debug("Skipping stale cache write for %s", key)
                return False
            try:
                self.backend.set(key, payload, ttl)
            except CacheUnavailable as exc:
                LOGGER.warning("Cache unavailable, skipping set for %s: %s", key, exc)
                return False
        return True

    def _delete(self, keys: Sequence[str], label: str) -> int:
        try:
            removed = self.backend.delete(keys)
        except CacheUnavailable as exc:
            LOGGER.warning("Cache unavailable, could not invalidate %s: %s", label, exc)
            return 0
        if removed:
            LOGGER.info(f"Invalidated {removed} cache entries for {label}")
        return removed

    def invalidate(self, pattern: str) -> int:
        """Remove every entry whose key matches the glob ``pattern``."""
        self._bump()
        try:
            keys = self.backend.keys(pattern)
        except CacheUnavailable as exc:
            LOGGER.warning("Cache unavailable, could not invalidate %s: %s", pattern, exc)
            return 0
        return self._delete(keys, f"pattern: {pattern}")

    def clear(self) -> int:
        return self.invalidate("*")

    def invalidate_document(self, document_id: str) -> int:
        """Drop answers scoped to the document plus every unscoped answer.

        Unscoped answers may cite any document, so they go too.
        """
        self._bump()
        try:
            keys = self.backend.keys(f"{KEY_PREFIX}*")
        except CacheUnavailable as exc:
            LOGGER.warning("Cache unavailable, could not invalidate document %s: %s", document_id, exc)
            return 0
        suffix = f"{SCOPE_MARKER}{document_id}"
        stale = [key for key in keys if SCOPE_MARKER not in key or key.endswith(suffix)]
        return self._delete(stale, f"document: {document_id}")
