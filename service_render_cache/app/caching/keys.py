"""
Cache key derivation for rendered responses.
"""

import base64
import hashlib
from typing import Optional

DEFAULT_BYPASS_PARAM = "refreshCache"

# Longest encoded key used verbatim as a file name stem (filesystems cap names at 255 bytes)
MAX_KEY_LENGTH = 200

HASHED_KEY_PREFIX = "sha256~"

_BYPASS_TRUE_VALUES = {"", "1", "true", "yes", "on"}


def strip_bypass_param(raw_key: str, bypass_param: str = DEFAULT_BYPASS_PARAM) -> str:
    """Remove every occurrence of the bypass query parameter from a request target.

    The parameter name is matched case-insensitively and with any value, so
    ``/a?x=1&refreshCache=true``, ``/a?x=1&refreshCache=false`` and ``/a?x=1``
    all reduce to ``/a?x=1``. A trailing bare ``?`` is trimmed.
    """
    path, sep, query = raw_key.partition("?")
    if not sep:
        return raw_key

    target = bypass_param.lower()
    kept = [
        part for part in query.split("&")
        if part.partition("=")[0].lower() != target
    ]
    query = "&".join(kept)

    if not query:
        return path
    return f"{path}?{query}"


def normalize_cache_key(raw_key: str, bypass_param: str = DEFAULT_BYPASS_PARAM) -> str:
    """Derive a stable, filesystem-safe cache key from a request target."""
    stripped = strip_bypass_param(raw_key, bypass_param)
    raw_bytes = stripped.encode("utf-8")

    encoded = base64.urlsafe_b64encode(raw_bytes).decode("ascii")
    if len(encoded) <= MAX_KEY_LENGTH:
        return encoded

    return HASHED_KEY_PREFIX + hashlib.sha256(raw_bytes).hexdigest()


def is_bypass_requested(value: Optional[str]) -> bool:
    """Return True when a bypass flag value asks for a fresh render.

    ``None`` means the flag was absent. A bare flag (``?refreshCache``) and the
    usual truthy spellings count as a request; ``false``/``0``/``no``/``off`` do not.
    """
    if value is None:
        return False
    # Stricter than plain presence: ?refreshCache=false must not bypass, so
    # only a bare flag or an explicit truthy spelling does.
    return value.strip().lower() in _BYPASS_TRUE_VALUES
