"""
Response cache coordinator.
"""

import json
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, TYPE_CHECKING

from shared.logging import get_logger
from .exceptions import CacheEntryNotFound, CacheError, CacheWriteError, MalformedCacheEntry
from .file_store import FileCacheStore
from .freshness import DEFAULT_TTL, is_fresh
from .keys import DEFAULT_BYPASS_PARAM, normalize_cache_key

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


@dataclass(frozen=True)
class CacheEntry:
    """A stored response: headers, body and the time it was saved."""

    key: str
    headers: Dict[str, str]
    payload: bytes
    saved_at: datetime


class FileCache:
    """Read-through/write-through cache of rendered responses backed by a FileCacheStore."""

    def __init__(
        self,
        backend: FileCacheStore,
        ttl: timedelta = DEFAULT_TTL,
        *,
        bypass_param: str = DEFAULT_BYPASS_PARAM,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.backend = backend
        self.ttl = ttl
        self.bypass_param = bypass_param
        self.metrics = metrics
        self.logger = get_logger("render_cache.file_cache")

    def make_key(self, raw_key: str) -> str:
        """Normalize a request target into a storage key."""
        return normalize_cache_key(raw_key, self.bypass_param)

    async def lookup(self, raw_key: str, bypass: bool = False) -> Optional[CacheEntry]:
        """Return a fresh entry for raw_key, or None.

        Missing, stale, unreadable and malformed entries all come back as None.
        """
        if bypass:
            self._record_lookup("bypass")
            return None

        key = self.make_key(raw_key)
        try:
            entry = await self._load_fresh(key)
        except CacheEntryNotFound:
            self._record_lookup("miss")
            return None
        except CacheError as exc:
            self.logger.warning(
                "Cache read failed, falling back to render",
                key=key,
                code=exc.code,
                error=str(exc),
                details=exc.details,
            )
            self._record_lookup("error")
            return None

        if entry is None:
            self._record_lookup("stale")
            return None

        self._record_lookup("hit")
        return entry

    async def store(self, raw_key: str, headers: Dict[str, str], payload: bytes) -> bool:
        """Write an entry through to storage. Failures are logged, never raised."""
        key = self.make_key(raw_key)
        try:
            if self.metrics:
                with self.metrics.time_operation("cache_operation_duration_seconds", operation="store"):
                    await self.backend.write(key, headers, payload)
            else:
                await self.backend.write(key, headers, payload)
        except CacheWriteError as exc:
            self.logger.error("Cache write failed", key=key, error=str(exc), details=exc.details)
            self._record_store("error")
            return False

        self.logger.debug("Cached response", key=key, size=len(payload))
        self._record_store("ok")
        return True

    async def clear_all(self) -> int:
        """Remove every entry. Returns the number of files deleted."""
        return await self.backend.clear()

    async def stats(self) -> Dict[str, Any]:
        """Describe the cache directory, TTL and number of stored entries."""
        return {
            "directory": str(self.backend.root),
            "ttl_seconds": int(self.ttl.total_seconds()),
            "entries": await self.backend.entry_count(),
        }

    async def _load_fresh(self, key: str) -> Optional[CacheEntry]:
        if not await self.backend.exists(key):
            raise CacheEntryNotFound(key)

        age = await self.backend.age_of(key)
        if not is_fresh(age, self.ttl):
            self.logger.debug("Cache entry stale", key=key, age_seconds=age.total_seconds())
            return None

        saved_at = await self.backend.saved_at(key)
        header_text, payload = await self.backend.read(key)
        return CacheEntry(
            key=key,
            headers=self._parse_headers(key, header_text),
            payload=payload,
            saved_at=saved_at,
        )

    @staticmethod
    def _parse_headers(key: str, header_text: str) -> Dict[str, str]:
        try:
            headers = json.loads(header_text)
        except ValueError as exc:
            raise MalformedCacheEntry(key, f"invalid JSON: {exc}") from exc

        if not isinstance(headers, dict):
            raise MalformedCacheEntry(key, "headers are not an object")
        if not all(isinstance(name, str) and isinstance(value, str) for name, value in headers.items()):
            raise MalformedCacheEntry(key, "header names and values must be strings")
        for name, value in headers.items():
            if not name or any(char in text for text in (name, value) for char in "\r\n\0"):
                raise MalformedCacheEntry(key, f"header {name!r} is not a valid HTTP header")
            try:
                # Same encoding the response layer applies when emitting headers
                name.encode("latin-1")
                value.encode("latin-1")
            except UnicodeEncodeError as exc:
                raise MalformedCacheEntry(key, f"header {name!r} is not latin-1 encodable") from exc
        return headers

    def _record_lookup(self, result: str) -> None:
        if self.metrics:
            self.metrics.record_cache_lookup(result)

    def _record_store(self, result: str) -> None:
        if self.metrics:
            self.metrics.record_cache_store(result)
