"""
Base service class for Incidents services.
"""

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from typing import Dict, Optional
import time
import os

from prometheus_client import CONTENT_TYPE_LATEST

from shared.config import ServiceConfig, get_config
from shared.logging import configure_logging, get_logger, set_request_id, clear_context
from shared.metrics import get_metrics_collector
from shared.errors import ServiceException, ValidationError, InternalError


# Metric label for requests that matched no route.
UNMATCHED_ENDPOINT = "unmatched"


class BaseService:
    """Base service class with common functionality."""

    def __init__(self, service_name: str, port: int, config: Optional[ServiceConfig] = None):
        self.service_name = service_name
        self.port = port
        self.config = config or get_config(service_name, port)
        self.logger = get_logger(f"{service_name}.service")
        self.metrics = get_metrics_collector(service_name)
        self._start_time = time.time()

        configure_logging(service_name, self.config.log_level)

        self.app = self._create_app()
        self._setup_middleware()
        self._setup_routes()

    def _create_app(self) -> FastAPI:
        """Create FastAPI application."""

        @asynccontextmanager
        async def lifespan(app: FastAPI):
            await self.start()
            try:
                yield
            finally:
                await self.stop()

        return FastAPI(
            title=f"{self.service_name.title()} Service",
            description=f"{self.service_name.title()} Service",
            version="1.0.0",
            docs_url="/docs" if self.config.env == "local" else None,
            redoc_url="/redoc" if self.config.env == "local" else None,
            lifespan=lifespan,
        )

    def _setup_middleware(self):
        """Set up middleware."""

        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=self.config.cors_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
            allow_headers=["Origin", "X-Requested-With", "Content-Type", "Accept", "Authorization"],
        )

        @self.app.middleware("http")
        async def add_request_context(request: Request, call_next):
            start_time = time.time()
            request_id = set_request_id(request.headers.get("X-Request-ID"))
            request.state.request_id = request_id

            try:
                response = await call_next(request)
            except Exception:
                # Rendered as 500 by the outermost error handler.
                self._observe_request(request, 500, start_time)
                raise
            finally:
                clear_context()

            self._observe_request(request, response.status_code, start_time)
            response.headers["X-Request-ID"] = request_id
            return response

    def _observe_request(self, request: Request, status_code: int, start_time: float):
        """Record and log one request, labelled by route template."""
        route = request.scope.get("route")
        endpoint = getattr(route, "path", None) or UNMATCHED_ENDPOINT
        duration = time.time() - start_time

        self.metrics.record_http_request(
            method=request.method,
            endpoint=endpoint,
            status_code=status_code,
            duration=duration
        )
        self.logger.info(
            "HTTP request",
            method=request.method,
            path=request.url.path,
            endpoint=endpoint,
            status_code=status_code,
            duration_ms=round(duration * 1000, 2),
            request_id=getattr(request.state, "request_id", None)
        )

    def _setup_routes(self):
        """Set up common routes."""

        @self.app.get("/health")
        async def health_check():
            """Health check endpoint."""
            dependencies = await self._check_dependencies()
            status = "ok" if all(v == "ok" for v in dependencies.values()) else "degraded"
            self.metrics.record_health_check(status)

            return {
                "service": self.service_name,
                "status": status,
                "uptime_seconds": self._get_uptime(),
                "dependencies": dependencies,
                "version": "1.0.0",
                "commit": os.getenv("GIT_COMMIT", "unknown")
            }

        @self.app.get("/metrics")
        async def metrics_endpoint():
            """Prometheus metrics endpoint."""
            return Response(
                content=self.metrics.generate(),
                media_type=CONTENT_TYPE_LATEST
            )

        @self.app.exception_handler(ServiceException)
        async def service_exception_handler(request: Request, exc: ServiceException):
            """Render a ServiceException with its own status code."""
            if exc.is_fault:
                self.logger.error(
                    "Service error",
                    code=exc.code,
                    message=exc.message,
                    details=exc.details,
                    path=request.url.path
                )
                self.metrics.record_error(exc.code)
            else:
                self.logger.info(
                    "Request rejected",
                    code=exc.code,
                    status_code=exc.status_code,
                    path=request.url.path
                )

            return JSONResponse(
                status_code=exc.status_code,
                content=exc.to_response().model_dump()
            )

        @self.app.exception_handler(RequestValidationError)
        async def request_validation_handler(request: Request, exc: RequestValidationError):
            """Render request body/path validation failures as 400."""
            error = ValidationError(
                "Request validation failed",
                details={"errors": [
                    {"loc": list(e.get("loc", ())), "msg": e.get("msg")}
                    for e in exc.errors()
                ]}
            )
            return JSONResponse(
                status_code=error.status_code,
                content=error.to_response().model_dump()
            )

        @self.app.exception_handler(Exception)
        async def general_exception_handler(request: Request, exc: Exception):
            """Handle general exceptions.

            Runs outside the request middleware, so the request id comes from
            ``request.state`` rather than the logging context.
            """
            request_id = getattr(request.state, "request_id", None)
            self.logger.error("Unhandled exception", error=str(exc), request_id=request_id, exc_info=True)
            self.metrics.record_error(type(exc).__name__)

            body = InternalError().to_response()
            body.request_id = request_id
            return JSONResponse(
                status_code=500,
                content=body.model_dump(),
                headers={"X-Request-ID": request_id} if request_id else None
            )

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check service dependencies. Override in subclasses."""
        return {}

    async def start(self):
        """Start service components. Override in subclasses."""

    async def stop(self):
        """Stop service components. Override in subclasses."""

    def _get_uptime(self) -> float:
        """Get service uptime in seconds."""
        return time.time() - self._start_time

    def run(self):
        """Run the service."""
        import uvicorn
        uvicorn.run(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level.lower()
        )
