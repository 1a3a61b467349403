"""
FastAPI scaffold shared by the Render Cache service: request logging,
health and metrics endpoints, and JSON error responses.
"""

import time
from typing import Dict, List, Optional

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST

from shared.config import ServiceConfig, get_config
from shared.errors import AccessLayerException
from shared.logging import clear_context, configure_logging, get_logger, set_request_id
from shared.metrics import get_metrics_collector

REQUEST_ID_HEADER = "X-Request-ID"


class BaseService:
    """Owns the FastAPI app, its config, logger and metrics collector."""

    def __init__(self, service_name: str, port: int, config: Optional[ServiceConfig] = None):
        self.service_name = service_name
        self.config = config or get_config(service_name, port)
        configure_logging(service_name, self.config.log_level)
        self.logger = get_logger(service_name)
        self.metrics = get_metrics_collector(service_name)

        self.app = FastAPI(title=f"{service_name.replace('_', ' ').title()} Service", version="1.0.0")
        self._setup_middleware()
        self._setup_routes()

    def _cors_origins(self) -> List[str]:
        if self.config.env == "local":
            return ["*"]
        if not self.config.cors_origins:
            return []
        return [origin.strip() for origin in self.config.cors_origins.split(",") if origin.strip()]

    def _setup_middleware(self):
        """CORS plus per-request id, timing log and HTTP metrics."""
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=self._cors_origins(),
            allow_methods=["GET", "DELETE"],
            allow_headers=["*"],
        )

        @self.app.middleware("http")
        async def log_request(request: Request, call_next):
            request_id = set_request_id(request.headers.get(REQUEST_ID_HEADER))
            started = time.perf_counter()
            try:
                response = await call_next(request)
            finally:
                clear_context()
            duration = time.perf_counter() - started

            self.metrics.record_http_request(request.method, request.url.path, response.status_code, duration)
            self.logger.info(
                "HTTP request",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round(duration * 1000, 2),
                request_id=request_id,
            )
            response.headers[REQUEST_ID_HEADER] = request_id
            return response

    def _setup_routes(self):
        """Register /health, /metrics and the error handlers."""

        @self.app.get("/health")
        async def health_check():
            dependencies = await self._check_dependencies()
            status = "ok" if all(state == "ok" for state in dependencies.values()) else "degraded"
            self.metrics.record_health_check(status)
            if status != "ok":
                self.logger.warning("Health check degraded", dependencies=dependencies)

            return JSONResponse(
                status_code=200 if status == "ok" else 503,
                content={"service": self.service_name, "status": status, "dependencies": dependencies},
            )

        @self.app.get("/metrics")
        async def metrics_endpoint():
            return Response(content=self.metrics.render(), media_type=CONTENT_TYPE_LATEST)

        @self.app.exception_handler(AccessLayerException)
        async def access_layer_exception_handler(request: Request, exc: AccessLayerException):
            self.logger.error("Request failed", path=request.url.path, code=exc.code, message=exc.message, details=exc.details)
            self.metrics.record_error(exc.code)
            return JSONResponse(status_code=exc.status_code, content=exc.to_response().model_dump())

        @self.app.exception_handler(Exception)
        async def general_exception_handler(request: Request, exc: Exception):
            self.logger.error("Unhandled exception", path=request.url.path, error=str(exc), exc_info=True)
            self.metrics.record_error("INTERNAL_ERROR")
            return JSONResponse(
                status_code=500,
                content={"code": "INTERNAL_ERROR", "message": "Internal server error", "details": {}},
            )

    async def _check_dependencies(self) -> Dict[str, str]:
        """Map of dependency name to "ok" or a failure state. Override in subclasses."""
        return {}

    def run(self):
        """Serve the app with uvicorn."""
        import uvicorn

        uvicorn.run(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level.lower(),
        )
