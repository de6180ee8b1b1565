"""Role-based access control for API endpoints."""

from typing import Any, Callable

from fastapi import HTTPException, Request
import structlog

from report_api.config.settings import settings

logger = structlog.get_logger()


def has_role(user_roles: list[str], allowed_roles: list[str]) -> bool:
    """
    Check whether the user holds one of the allowed roles.

    The super-admin role passes every check.
    """
    if settings.SUPER_ADMIN_ROLE in user_roles:
        return True
    return any(role in user_roles for role in allowed_roles)


def get_current_user(request: Request) -> dict[str, Any]:
    """
    Get current user claims from request state.

    Usage:
        @router.get("/me")
        def get_me(user: dict = Depends(get_current_user)):
            return user
    """
    if not hasattr(request.state, "user"):
        raise HTTPException(status_code=401, detail="Not authenticated")
    return request.state.user


def require_role(allowed_roles: list[str]) -> Callable:
    """
    Dependency that requires user to have one of the specified roles.

    Usage:
        @router.post("/landlord-only")
        def endpoint(user: dict = Depends(require_role(["CHU_NHA"]))):
            ...
    """
    def check_role(request: Request) -> dict[str, Any]:
        user = get_current_user(request)
        user_roles = user.get("roles", [])

        if has_role(user_roles, allowed_roles):
            logger.debug("Role check passed", user=user.get("sub"), required=allowed_roles)
            return user

        logger.warning(
            "Role check failed",
            user=user.get("sub"),
            required=allowed_roles,
            user_roles=user_roles,
        )
        raise HTTPException(
            status_code=403,
            detail="You don't have permission to access this resource",
        )

    return check_role


def require_super_admin(request: Request) -> dict[str, Any]:
    """
    Dependency that requires the super-admin role.

    Usage:
        @router.post("/procedures")
        def create(user: dict = Depends(require_super_admin)):
            ...
    """
    return require_role([settings.SUPER_ADMIN_ROLE])(request)
