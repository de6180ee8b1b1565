"""Middleware for the report API."""

from .auth import AuthMiddleware
from .error_handler import APIError, ValidationAPIError, setup_exception_handlers
from .logging import LoggingMiddleware, configure_logging

__all__ = [
    "AuthMiddleware",
    "APIError",
    "ValidationAPIError",
    "setup_exception_handlers",
    "LoggingMiddleware",
    "configure_logging",
]
