"""
Client for the downstream page renderer.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional

import httpx

from shared.logging import get_logger
from shared.errors import ExternalServiceError

# Forwarded from the renderer's response to the caller
PASSTHROUGH_HEADERS = ("content-type", "cache-control", "etag", "last-modified")


@dataclass
class RenderResult:
    """Status, selected headers and body of a render."""

    status_code: int
    body: bytes
    headers: Dict[str, str] = field(default_factory=dict)


class RendererClient:
    """Client for communicating with the renderer service."""

    def __init__(self, renderer_url: str, timeout: float = 30.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.renderer_url = renderer_url.rstrip('/')
        self.logger = get_logger("render_cache.renderer.client")
        self.timeout = timeout
        self._transport = transport

    async def render(self, target: str, query: str = "") -> RenderResult:
        """Render a page through the downstream service."""
        url = f"{self.renderer_url}/render/{target.lstrip('/')}"
        if query:
            url = f"{url}?{query}"

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(url)
        except httpx.TimeoutException:
            self.logger.error("Renderer timeout", target=target)
            raise ExternalServiceError("renderer", "Renderer timeout", {"target": target})
        except httpx.RequestError as e:
            self.logger.error("Renderer request error", target=target, error=str(e))
            raise ExternalServiceError("renderer", "Renderer unavailable", {"target": target})

        if response.status_code != 200:
            self.logger.warning(
                "Render failed",
                target=target,
                status_code=response.status_code,
            )

        headers = {
            name: response.headers[name]
            for name in PASSTHROUGH_HEADERS
            if name in response.headers
        }
        return RenderResult(status_code=response.status_code, body=response.content, headers=headers)
