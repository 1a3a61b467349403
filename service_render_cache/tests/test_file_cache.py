"""
Unit tests for the response cache coordinator.
"""

import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from service_render_cache.app.caching.exceptions import CacheReadError, CacheWriteError
from service_render_cache.app.caching.file_cache import FileCache
from service_render_cache.app.caching.file_store import HEADER_SUFFIX, PAYLOAD_SUFFIX, FileCacheStore
from service_render_cache.app.caching.freshness import DEFAULT_TTL, is_fresh
from shared.metrics import MetricsCollector

SAVED_AT = 1_700_000_000.0
TTL = timedelta(minutes=5)


class FakeClock:
    """Settable replacement for time.time."""

    def __init__(self, now: float):
        self.now = now

    def __call__(self) -> float:
        return self.now


def failing_stat(suffix: str, failing_call: int = 1):
    """Path.stat replacement raising PermissionError on the Nth stat of a part."""
    real_stat = Path.stat
    calls = {"count": 0}

    def _stat(path, *args, **kwargs):
        if path.name.endswith(suffix):
            calls["count"] += 1
            if calls["count"] >= failing_call:
                raise PermissionError(13, "Permission denied", str(path))
        return real_stat(path, *args, **kwargs)

    return _stat


class TestFreshness:
    """Test cases for is_fresh."""

    def test_default_ttl_is_five_minutes(self):
        assert DEFAULT_TTL == timedelta(minutes=5)

    def test_younger_than_ttl_is_fresh(self):
        assert is_fresh(timedelta(seconds=299), TTL) is True

    def test_exactly_ttl_is_stale(self):
        assert is_fresh(TTL, TTL) is False

    def test_older_than_ttl_is_stale(self):
        assert is_fresh(timedelta(minutes=6), TTL) is False


class TestFileCache:
    """Test cases for FileCache."""

    @pytest.fixture
    def clock(self):
        return FakeClock(SAVED_AT)

    @pytest.fixture
    def metrics(self):
        return MetricsCollector("render_cache_test")

    @pytest.fixture
    def cache(self, tmp_path, clock, metrics):
        """Create FileCache over a temporary store with a fake clock."""
        store = FileCacheStore(tmp_path / "cache", clock=clock)
        return FileCache(store, ttl=TTL, metrics=metrics)

    async def _store_at(self, cache, raw_key, headers, payload, saved_at=SAVED_AT):
        """Store an entry and pin its save time."""
        assert await cache.store(raw_key, headers, payload) is True
        key = cache.make_key(raw_key)
        os.utime(cache.backend.payload_path(key), (saved_at, saved_at))

    @pytest.mark.asyncio
    async def test_round_trip(self, cache, clock):
        """store() then lookup() within the TTL returns the same headers and payload."""
        headers = {"content-type": "text/html", "x-custom": "1"}
        await self._store_at(cache, "/page?x=1", headers, b"hello")
        clock.now = SAVED_AT + 10

        entry = await cache.lookup("/page?x=1")

        assert entry is not None
        assert entry.headers == headers
        assert entry.payload == b"hello"
        assert entry.saved_at == datetime.fromtimestamp(SAVED_AT, tz=timezone.utc)

    @pytest.mark.asyncio
    async def test_lookup_ignores_bypass_param_in_key(self, cache, clock):
        """An entry stored with the bypass flag is found without it."""
        await self._store_at(cache, "/page?x=1&refreshCache=true", {}, b"hello")

        entry = await cache.lookup("/page?x=1")

        assert entry is not None
        assert entry.payload == b"hello"

    @pytest.mark.asyncio
    async def test_expiry_boundary(self, cache, clock):
        """Fresh just before the TTL, stale at and after it."""
        await self._store_at(cache, "/page", {}, b"hello")
        ttl_seconds = TTL.total_seconds()

        clock.now = SAVED_AT + ttl_seconds - 0.01
        assert await cache.lookup("/page") is not None

        clock.now = SAVED_AT + ttl_seconds
        assert await cache.lookup("/page") is None

        clock.now = SAVED_AT + ttl_seconds + 0.01
        assert await cache.lookup("/page") is None

    @pytest.mark.asyncio
    async def test_bypass_always_misses(self, cache, clock, metrics):
        """lookup(bypass=True) returns None even right after a store."""
        await self._store_at(cache, "/page", {}, b"hello")

        assert await cache.lookup("/page", bypass=True) is None
        assert metrics.registry.get_sample_value("cache_lookups_total", {"result": "bypass"}) == 1.0

    @pytest.mark.asyncio
    async def test_missing_entry(self, cache, metrics):
        assert await cache.lookup("/never-stored") is None
        assert metrics.registry.get_sample_value("cache_lookups_total", {"result": "miss"}) == 1.0

    @pytest.mark.asyncio
    async def test_lookup_records_hit_and_stale(self, cache, clock, metrics):
        await self._store_at(cache, "/page", {}, b"hello")

        await cache.lookup("/page")
        clock.now = SAVED_AT + 3600
        await cache.lookup("/page")

        assert metrics.registry.get_sample_value("cache_lookups_total", {"result": "hit"}) == 1.0
        assert metrics.registry.get_sample_value("cache_lookups_total", {"result": "stale"}) == 1.0

    @pytest.mark.asyncio
    async def test_read_fault_is_a_miss(self, cache, metrics):
        """Storage read failures degrade to a miss instead of raising."""
        await self._store_at(cache, "/page", {}, b"hello")

        with patch.object(cache.backend, 'read', new_callable=AsyncMock) as mock_read:
            mock_read.side_effect = CacheReadError("key", "permission denied")

            assert await cache.lookup("/page") is None

        assert metrics.registry.get_sample_value("cache_lookups_total", {"result": "error"}) == 1.0

    @pytest.mark.asyncio
    async def test_unreadable_header_is_a_miss(self, cache):
        """A header part that cannot be read yields a miss."""
        await self._store_at(cache, "/page", {}, b"hello")
        key = cache.make_key("/page")
        header_path = cache.backend.header_path(key)
        header_path.write_bytes(b"\xff\xfe\x00invalid utf-8")

        assert await cache.lookup("/page") is None

    @pytest.mark.asyncio
    async def test_header_stat_permission_error_is_a_miss(self, cache, metrics):
        """A permission error while checking the header part yields a miss."""
        await self._store_at(cache, "/page", {}, b"hello")

        with patch.object(Path, "stat", autospec=True, side_effect=failing_stat(HEADER_SUFFIX)):
            assert await cache.lookup("/page") is None

        assert metrics.registry.get_sample_value("cache_lookups_total", {"result": "error"}) == 1.0

    # exists() stats the payload once; age_of() and saved_at() stat it again
    @pytest.mark.parametrize("failing_call", [1, 2, 3])
    @pytest.mark.asyncio
    async def test_payload_stat_fault_is_a_miss(self, cache, metrics, failing_call):
        """Faults in exists(), age_of() or saved_at() all yield a miss."""
        await self._store_at(cache, "/page", {}, b"hello")

        with patch.object(Path, "stat", autospec=True, side_effect=failing_stat(PAYLOAD_SUFFIX, failing_call)):
            assert await cache.lookup("/page") is None

        assert metrics.registry.get_sample_value("cache_lookups_total", {"result": "error"}) == 1.0

    @pytest.mark.parametrize("header_text", [
        "not json",
        "[1, 2, 3]",
        '{"content-type": 5}',
        '{"x-title": "\\u4e00"}',
        '{"x-title": "a\\r\\nset-cookie: injected=1"}',
        '{"": "empty name"}',
    ])
    @pytest.mark.asyncio
    async def test_malformed_headers_are_a_miss(self, cache, header_text):
        """Headers the response layer cannot emit yield a miss."""
        await self._store_at(cache, "/page", {}, b"hello")
        cache.backend.header_path(cache.make_key("/page")).write_text(header_text)

        assert await cache.lookup("/page") is None

    @pytest.mark.asyncio
    async def test_store_failure_is_swallowed(self, cache, metrics):
        """A failed write is logged and reported, never raised."""
        with patch.object(cache.backend, 'write', new_callable=AsyncMock) as mock_write:
            mock_write.side_effect = CacheWriteError("key", "disk full")

            result = await cache.store("/page", {}, b"hello")

        assert result is False
        assert metrics.registry.get_sample_value("cache_stores_total", {"result": "error"}) == 1.0

    @pytest.mark.asyncio
    async def test_store_writes_normalized_key(self, cache):
        with patch.object(cache.backend, 'write', new_callable=AsyncMock) as mock_write:
            await cache.store("/page?x=1&refreshCache=false", {"a": "b"}, b"hello")

        mock_write.assert_called_once_with(cache.make_key("/page?x=1"), {"a": "b"}, b"hello")

    @pytest.mark.asyncio
    async def test_clear_all(self, cache):
        """clear_all() removes every entry."""
        await self._store_at(cache, "/a", {}, b"1")
        await self._store_at(cache, "/b", {}, b"2")

        removed = await cache.clear_all()

        assert removed == 4
        assert await cache.lookup("/a") is None
        assert await cache.lookup("/b") is None

    @pytest.mark.asyncio
    async def test_stats(self, cache, tmp_path):
        await self._store_at(cache, "/a", {}, b"1")

        stats = await cache.stats()

        assert stats == {
            "directory": str(tmp_path / "cache"),
            "ttl_seconds": 300,
            "entries": 1,
        }

    @pytest.mark.asyncio
    async def test_works_without_metrics(self, tmp_path):
        cache = FileCache(FileCacheStore(tmp_path))

        assert await cache.store("/a", {}, b"1") is True
        assert (await cache.lookup("/a")).payload == b"1"
