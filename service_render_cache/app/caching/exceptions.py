"""
Error types raised by the response cache storage layer.

None of these ever reach a client: the coordinator turns every one of them
into a cache miss (reads) or a dropped write (stores).
"""

from typing import Any, Dict, Optional

from shared.errors import AccessLayerException


class CacheError(AccessLayerException):
    """Base class for response cache faults."""

    status_code = 500

    def __init__(self, code: str, key: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.key = key
        super().__init__(code, message, {"key": key, **(details or {})})


class CacheEntryNotFound(CacheError):
    """One or both parts of an entry are missing."""

    status_code = 404

    def __init__(self, key: str, missing: str = "entry"):
        super().__init__("CACHE_ENTRY_NOT_FOUND", key, f"Cache {missing} not found", {"missing": missing})


class CacheReadError(CacheError):
    """An entry exists but could not be read."""

    def __init__(self, key: str, reason: str):
        super().__init__("CACHE_READ_ERROR", key, "Cache entry could not be read", {"reason": reason})


class CacheWriteError(CacheError):
    """An entry (or the cache directory) could not be written."""

    def __init__(self, key: str, reason: str):
        super().__init__("CACHE_WRITE_ERROR", key, "Cache entry could not be written", {"reason": reason})


class MalformedCacheEntry(CacheError):
    """Stored headers are not a JSON object of strings."""

    def __init__(self, key: str, reason: str):
        super().__init__("CACHE_MALFORMED_ENTRY", key, "Cache entry headers are malformed", {"reason": reason})
