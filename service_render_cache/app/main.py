"""
Render Cache service: a disk-backed response cache in front of the page renderer.
"""

from datetime import timedelta
from typing import Dict, Optional

from fastapi import Request, Response

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config
from .adapters.renderer_client import RendererClient
from .caching.file_cache import FileCache
from .caching.file_store import FileCacheStore
from .caching.keys import strip_bypass_param
from .caching.middleware import ResponseCacheMiddleware, request_target

SERVICE_NAME = "render_cache"
DEFAULT_PORT = 8090


class RenderCacheService(BaseService):
    """Render proxy whose responses are cached on disk."""

    def __init__(self, config: Optional[ServiceConfig] = None, renderer: Optional[RendererClient] = None):
        config = config or get_config(SERVICE_NAME, DEFAULT_PORT)

        self.cache_store = FileCacheStore(config.cache_dir)
        self.renderer = renderer or RendererClient(config.renderer_url, timeout=config.renderer_timeout)
        self.cache: Optional[FileCache] = None

        super().__init__(SERVICE_NAME, config.port, config=config)

    def _setup_middleware(self):
        """Install the response cache innermost, under timing and CORS."""
        self.cache = FileCache(
            self.cache_store,
            ttl=timedelta(seconds=self.config.cache_ttl_seconds),
            bypass_param=self.config.cache_bypass_param,
            metrics=self.metrics,
        )
        self.app.add_middleware(
            ResponseCacheMiddleware,
            cache=self.cache,
            marker_header=self.config.cache_marker_header,
        )
        super()._setup_middleware()

    def _setup_routes(self):
        super()._setup_routes()

        @self.app.get("/")
        async def root():
            """Service description."""
            return {
                "service": self.service_name,
                "message": "Render Cache - cached page rendering",
                "bypass_param": self.config.cache_bypass_param,
            }

        @self.app.get("/cache/stats")
        async def cache_stats():
            """Cache directory, TTL and entry count."""
            return await self.cache.stats()

        @self.app.delete("/cache")
        async def clear_cache():
            """Remove every cached entry."""
            removed = await self.cache.clear_all()
            self.logger.info("Cache cleared via API", removed=removed)
            return {"removed": removed}

        @self.app.get("/render/{target:path}")
        async def render(target: str, request: Request):
            """Render a page through the downstream renderer."""
            stripped = strip_bypass_param(request_target(request), self.config.cache_bypass_param)
            _, _, query = stripped.partition("?")
            result = await self.renderer.render(target, query)
            return Response(content=result.body, status_code=result.status_code, headers=result.headers)

    async def _check_dependencies(self) -> Dict[str, str]:
        """Report whether the cache directory is usable."""
        return {"cache_dir": "ok" if self.cache_store.root.is_dir() else "missing"}


def create_app():
    """Create FastAPI application."""
    service = RenderCacheService()
    return service.app


if __name__ == "__main__":
    service = RenderCacheService()
    service.run()
