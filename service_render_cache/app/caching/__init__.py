"""
Response caching package.

Stores rendered responses on disk as header/payload file pairs and serves
them back while they are younger than the TTL. Every storage fault degrades
to a cache miss.
"""

from .file_cache import CacheEntry, FileCache
from .file_store import FileCacheStore
from .freshness import DEFAULT_TTL, is_fresh
from .keys import is_bypass_requested, normalize_cache_key
from .middleware import ResponseCacheMiddleware

__all__ = [
    "CacheEntry",
    "FileCache",
    "FileCacheStore",
    "DEFAULT_TTL",
    "is_fresh",
    "is_bypass_requested",
    "normalize_cache_key",
    "ResponseCacheMiddleware",
]
