"""Observability helpers: structured logging, request context and CloudWatch Embedded Metrics.

Call `init_observability` once at process start and add
`RequestContextMiddleware` to the app.
"""
from __future__ import annotations

import logging
import os
import re
import time
import uuid

import structlog
from aws_embedded_metrics import metric_scope
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from structlog.contextvars import bind_contextvars, clear_contextvars

__all__ = [
    "init_observability",
    "RequestContextMiddleware",
    "metric_scope",  # re-export for convenience
]

_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9_-]{8,64}$")


def _setup_logging() -> None:
    """Configure structlog for structured logging (JSON or console)."""

    log_format = os.getenv("LOG_FORMAT", "json").lower()
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        final_processor = structlog.processors.JSONRenderer()
    else:
        final_processor = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=shared_processors + [final_processor],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    if not root_logger.handlers:
        root_logger.addHandler(logging.StreamHandler())
    root_logger.setLevel(log_level)

    # Silence noisy loggers
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def init_observability() -> None:
    """Setup logging. Call once at process start."""

    _setup_logging()
    structlog.get_logger(__name__).info("Observability initialized")


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind a request_id (plus method and path) into structlog contextvars.

    An inbound X-Request-ID is reused when it looks like an id; otherwise a
    uuid4 hex is generated. The id is echoed back in the response header and
    one log line is written per request.
    """

    def __init__(self, app, header_name: str = "X-Request-ID") -> None:  # type: ignore[override]
        super().__init__(app)
        self.header_name = header_name
        self.logger = structlog.get_logger("request")

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:  # type: ignore[override]
        inbound = request.headers.get(self.header_name, "")
        request_id = inbound if _REQUEST_ID_RE.match(inbound) else uuid.uuid4().hex
        request.state.request_id = request_id
        bind_contextvars(request_id=request_id, method=request.method, path=request.url.path)

        started = time.perf_counter()
        try:
            response: Response = await call_next(request)
            self.logger.info(
                "Request finished",
                status_code=response.status_code,
                duration_ms=round((time.perf_counter() - started) * 1000, 1),
            )
        finally:
            clear_contextvars()

        response.headers[self.header_name] = request_id
        return response
