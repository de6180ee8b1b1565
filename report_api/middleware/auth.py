"""Authentication middleware for JWT validation."""

import re
from typing import Optional

import structlog
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from report_api.config.settings import settings
from report_api.services.token import decode_token, create_token, should_refresh_token

logger = structlog.get_logger()

# Paths that don't require authentication
SKIP_AUTH_PATHS = [
    r"^/api/v1/health",
    r"^/health",
    r"^/$",
    r"^/api/docs",
    r"^/api/openapi\.json",
    r"^/api/redoc",
    rf"^{re.escape(settings.REPORT_PUBLIC_URL.rstrip('/'))}/",
]

SKIP_AUTH_PATTERNS = [re.compile(p) for p in SKIP_AUTH_PATHS]


def should_skip_auth(path: str) -> bool:
    """Check if path should skip authentication."""
    return any(pattern.match(path) for pattern in SKIP_AUTH_PATTERNS)


def get_token_from_request(request: Request) -> Optional[str]:
    """Extract JWT token from request (cookie or Authorization header)."""
    token = request.cookies.get(settings.COOKIE_NAME)
    if token:
        return token

    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header[7:]

    return None


def unauthorized(message: str) -> JSONResponse:
    # Exceptions raised inside BaseHTTPMiddleware bypass the app's handlers
    return JSONResponse(
        status_code=401,
        content={"error": {"code": "UNAUTHORIZED", "message": message, "details": {}}},
    )


class AuthMiddleware(BaseHTTPMiddleware):
    """Middleware that validates JWT tokens on protected routes."""

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.method == "OPTIONS" or should_skip_auth(request.url.path):
            return await call_next(request)

        token = get_token_from_request(request)
        if not token:
            return unauthorized("Not authenticated")

        try:
            payload = decode_token(token)
        except Exception as e:
            logger.info("Rejected token", path=request.url.path, error=str(e))
            return unauthorized(str(e))

        request.state.user = payload
        request.state.user_id = payload.get("sub")
        request.state.user_roles = payload.get("roles", [])

        response = await call_next(request)

        # Rolling token refresh
        if should_refresh_token(payload):
            response.set_cookie(
                key=settings.COOKIE_NAME,
                value=create_token(payload),
                httponly=True,
                secure=settings.COOKIE_SECURE,
                samesite=settings.COOKIE_SAMESITE,
                domain=settings.COOKIE_DOMAIN,
                max_age=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
            )

        return response
