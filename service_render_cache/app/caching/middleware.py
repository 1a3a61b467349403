"""
HTTP middleware serving rendered pages from the response cache.
"""

import asyncio
from email.utils import format_datetime
from typing import Dict, Iterable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from shared.logging import get_logger
from .file_cache import CacheEntry, FileCache
from .keys import is_bypass_requested

DEFAULT_MARKER_HEADER = "x-render-cached"
DEFAULT_EXCLUDE_PATHS = ("/health", "/metrics", "/cache")

# Recomputed by the server for each response
_UNSTORED_HEADERS = {"content-length", "connection", "keep-alive", "transfer-encoding"}


def request_target(request: Request) -> str:
    """Path plus query string, as sent by the client."""
    query = request.url.query
    if query:
        return f"{request.url.path}?{query}"
    return request.url.path


class ResponseCacheMiddleware(BaseHTTPMiddleware):
    """Serve fresh cached responses; store successful GET responses on a miss."""

    def __init__(
        self,
        app,
        cache: FileCache,
        marker_header: str = DEFAULT_MARKER_HEADER,
        exclude_paths: Optional[Iterable[str]] = None,
    ):
        super().__init__(app)
        self.cache = cache
        self.marker_header = marker_header
        self.exclude_paths = tuple(DEFAULT_EXCLUDE_PATHS if exclude_paths is None else exclude_paths)
        self.logger = get_logger("render_cache.middleware")

    async def dispatch(self, request: Request, call_next):
        if request.method != "GET" or self._is_excluded(request.url.path):
            return await call_next(request)

        raw_key = request_target(request)
        bypass = is_bypass_requested(request.query_params.get(self.cache.bypass_param))

        entry = await self.cache.lookup(raw_key, bypass=bypass)
        if entry is not None:
            return self._cached_response(entry)

        response = await call_next(request)
        if response.status_code != 200:
            return response

        body = b""
        async for chunk in response.body_iterator:
            body += chunk if isinstance(chunk, bytes) else chunk.encode(response.charset)

        fresh = Response(
            content=body,
            status_code=response.status_code,
            background=response.background,
        )
        fresh.raw_headers = list(response.raw_headers)

        # A started write finishes even if the client goes away
        await asyncio.shield(self.cache.store(raw_key, self._storable_headers(response), body))
        return fresh

    def _cached_response(self, entry: CacheEntry) -> Response:
        response = Response(content=entry.payload, status_code=200, headers=entry.headers)
        response.headers[self.marker_header] = format_datetime(entry.saved_at, usegmt=True)
        self.logger.debug("Served from cache", key=entry.key, saved_at=entry.saved_at.isoformat())
        return response

    def _storable_headers(self, response: Response) -> Dict[str, str]:
        return {
            name: value
            for name, value in response.headers.items()
            if name not in _UNSTORED_HEADERS and name != self.marker_header.lower()
        }

    def _is_excluded(self, path: str) -> bool:
        return any(path == prefix or path.startswith(prefix.rstrip("/") + "/") for prefix in self.exclude_paths)
