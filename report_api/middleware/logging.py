"""Request logging middleware using structlog."""

import logging
import time
import uuid

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from report_api.config.settings import settings

logger = structlog.get_logger()


def configure_logging(level: str | None = None) -> None:
    """Configure structlog for structured JSON logging.

    Args:
        level: Log level name, defaults to settings.LOG_LEVEL
    """
    level_no = logging.getLevelName((level or settings.LOG_LEVEL).upper())
    if not isinstance(level_no, int):
        level_no = logging.INFO

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level_no),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


class LoggingMiddleware(BaseHTTPMiddleware):
    """Logs every request with a request ID bound to the structlog context.

    Downloads of generated PDFs are served as static files and only logged
    at debug level.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())[:8]
        request.state.request_id = request_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        path = request.url.path
        is_download = path.startswith(settings.REPORT_PUBLIC_URL)
        start_time = time.perf_counter()

        if not is_download:
            logger.info(
                "Request started",
                method=request.method,
                path=path,
                query=str(request.query_params),
                client=request.client.host if request.client else None,
            )

        response = await call_next(request)
        duration_ms = round((time.perf_counter() - start_time) * 1000, 2)

        if is_download:
            log_method = logger.debug
        else:
            log_method = logger.info if response.status_code < 400 else logger.warning
        log_method(
            "Request completed",
            method=request.method,
            path=path,
            status_code=response.status_code,
            duration_ms=duration_ms,
            user_id=getattr(request.state, "user_id", None),
        )

        response.headers["X-Request-ID"] = request_id
        return response
