"""
Base service class for Switchboard services.

A service owns one FastAPI app. ``BaseService`` wires what every service
shares (request correlation, Prometheus, health, error rendering) and runs
the subclass ``start``/``stop`` hooks inside the app lifespan.
"""

import os
import time
from contextlib import asynccontextmanager
from typing import Dict

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from shared.config import SERVICE_VERSION, ServiceConfig
from shared.errors import ErrorResponse, SwitchboardException
from shared.logging import clear_context, configure_logging, get_logger, set_request_id
from shared.metrics import get_metrics_collector

REQUEST_ID_HEADER = "X-Request-ID"

# Polled constantly; logged at debug only
_QUIET_PATHS = frozenset({"/health", "/metrics"})


class BaseService:
    """Base service class with common functionality."""

    def __init__(self, config: ServiceConfig):
        self.config = config
        self.service_name = config.service_name
        self.port = config.port

        configure_logging(self.service_name, config.log_level)
        self.logger = get_logger(f"{self.service_name}.service")
        self.metrics = get_metrics_collector(self.service_name)
        self._start_time = time.time()

        self.app = self._create_app()
        self._setup_middleware()
        self._setup_routes()
        self._setup_exception_handlers()

    def _create_app(self) -> FastAPI:
        """Create FastAPI application."""

        @asynccontextmanager
        async def lifespan(app: FastAPI):
            await self.start()
            try:
                yield
            finally:
                await self.stop()

        local = self.config.env == "local"
        return FastAPI(
            title=f"{self.service_name.title()} Service",
            description=f"Switchboard - {self.service_name.title()} Service",
            version=SERVICE_VERSION,
            docs_url="/docs" if local else None,
            redoc_url="/redoc" if local else None,
            lifespan=lifespan,
        )

    def _setup_middleware(self):
        """Set up CORS and request correlation."""
        # CORS middleware
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"] if self.config.env == "local" else [],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        @self.app.middleware("http")
        async def correlate_request(request: Request, call_next):
            clear_context()
            request_id = set_request_id(request.headers.get(REQUEST_ID_HEADER))
            started = time.perf_counter()

            response = await call_next(request)

            elapsed = time.perf_counter() - started

            # Record metrics against the route template, not the raw path
            route = request.scope.get("route")
            self.metrics.record_http_request(
                method=request.method,
                endpoint=getattr(route, "path", request.url.path),
                status_code=response.status_code,
                duration=elapsed
            )
            # Log request
            log = self.logger.debug if request.url.path in _QUIET_PATHS else self.logger.info
            log(
                "HTTP request",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round(elapsed * 1000, 2)
            )

            response.headers[REQUEST_ID_HEADER] = request_id
            return response

    def _setup_routes(self):
        """Set up health and metrics routes."""

        @self.app.get("/health")
        async def health_check():
            try:
                dependencies = await self._check_dependencies()
            except Exception as e:
                self.logger.error("Health check failed", error=str(e))
                self.metrics.record_health_check("error")
                return JSONResponse(
                    status_code=503,
                    content={"service": self.service_name, "status": "error", "error": str(e)}
                )

            self.metrics.record_health_check("ok")
            # Health response
            return {
                "service": self.service_name,
                "status": "ok",
                "version": SERVICE_VERSION,
                "commit": os.getenv("GIT_COMMIT", "unknown"),
                "uptime_seconds": round(time.time() - self._start_time, 3),
                "dependencies": dependencies,
            }

        @self.app.get("/metrics")
        async def metrics_endpoint():
            return Response(generate_latest(self.metrics.registry), media_type=CONTENT_TYPE_LATEST)

    def _setup_exception_handlers(self):
        """Render every failure as an ``ErrorResponse``."""

        @self.app.exception_handler(SwitchboardException)
        async def switchboard_error(request: Request, exc: SwitchboardException):
            log = self.logger.warning if exc.status_code < 500 else self.logger.error
            log("Request failed", code=exc.code, message=exc.message, details=exc.details,
                status_code=exc.status_code)
            self.metrics.record_error(exc.code)
            return JSONResponse(status_code=exc.status_code, content=exc.to_response().model_dump())

        @self.app.exception_handler(Exception)
        async def unhandled_error(request: Request, exc: Exception):
            self.logger.error("Unhandled exception", error=str(exc), exc_info=exc)
            self.metrics.record_error("INTERNAL_ERROR")
            body = ErrorResponse(code="INTERNAL_ERROR", message="Internal server error")
            return JSONResponse(status_code=500, content=body.model_dump())

    async def start(self):
        """Start service resources. Override in subclasses."""

    async def stop(self):
        """Stop service resources. Override in subclasses."""

    async def _check_dependencies(self) -> Dict[str, str]:
        """Report dependency status. Override in subclasses."""
        return {}

    def run(self):
        """Serve the app with uvicorn; requests are already logged by the middleware."""
        uvicorn.run(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level.lower(),
            access_log=False
        )
