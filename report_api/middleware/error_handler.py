"""Global exception handlers for the API."""

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from report_api.utils.report_errors import ReportError

logger = structlog.get_logger()


class APIError(Exception):
    """Base exception for request-level API errors."""

    def __init__(
        self,
        message: str,
        code: str = "API_ERROR",
        status_code: int = 400,
        details: dict = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class ValidationAPIError(APIError):
    """Validation error."""

    def __init__(self, message: str, field: str = None):
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            status_code=422,
            details={"field": field} if field else {},
        )


def error_body(code: str, message: str, details=None, category: str = None) -> dict:
    error = {"code": code, "message": message, "details": details if details is not None else {}}
    if category:
        error["category"] = category
    return {"error": error}


def setup_exception_handlers(app: FastAPI) -> None:
    """Register global exception handlers."""

    @app.exception_handler(ReportError)
    async def report_error_handler(request: Request, exc: ReportError) -> JSONResponse:
        """Handle report pipeline errors with their mapped status."""
        log_method = logger.warning if exc.status_code < 500 else logger.error
        log_method(
            "Report error",
            code=exc.code.value,
            category=exc.category.value,
            message=exc.message,
            path=request.url.path,
        )
        return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})

    @app.exception_handler(APIError)
    async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
        """Handle custom API errors."""
        logger.warning(
            "API error",
            code=exc.code,
            message=exc.message,
            path=request.url.path,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(exc.code, exc.message, exc.details),
        )

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
        """Handle Pydantic validation errors raised outside request parsing."""
        errors = exc.errors(include_url=False)
        first_error = errors[0] if errors else {}
        field = ".".join(str(loc) for loc in first_error.get("loc", []))
        message = first_error.get("msg", "Validation error")

        logger.warning("Validation error", field=field, message=message, path=request.url.path)
        return JSONResponse(
            status_code=422,
            content=error_body("VALIDATION_ERROR", message, {"field": field}),
        )

    @app.exception_handler(SQLAlchemyError)
    async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        """Handle database errors."""
        logger.error("Database error", error=str(exc), path=request.url.path)
        return JSONResponse(
            status_code=500,
            content=error_body("DATABASE_ERROR", "A database error occurred"),
        )

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected errors."""
        logger.exception(
            "Unexpected error",
            error=str(exc),
            error_type=type(exc).__name__,
            path=request.url.path,
        )
        return JSONResponse(
            status_code=500,
            content=error_body("INTERNAL_ERROR", "An unexpected error occurred"),
        )
