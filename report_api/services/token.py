"""HS256 JWT tokens shared with the boarding-house web app."""

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from jose import jwt, JWTError

from report_api.config.settings import settings


def create_token(data: dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Create an HS256-signed JWT token.

    Args:
        data: Claims; "sub" is the user id and "roles" the user's role names
        expires_delta: Optional custom lifetime

    Returns:
        Encoded JWT token string
    """
    now = datetime.now(timezone.utc)
    to_encode = {k: v for k, v in data.items() if k not in ("exp", "iat")}
    to_encode.update({
        "exp": now + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)),
        "iat": now,
    })
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def create_user_token(user_id: str, username: str, role: str) -> str:
    """Token for a landlord or administrator account."""
    return create_token({"sub": user_id, "username": username, "roles": [role]})


def decode_token(token: str) -> dict[str, Any]:
    """
    Decode and validate an HS256-signed JWT token.

    Raises:
        JWTError: If token is invalid or expired
    """
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise JWTError("Token has expired")
    except jwt.JWTClaimsError as e:
        raise JWTError(f"Invalid token claims: {e}")
    except JWTError as e:
        raise JWTError(f"Invalid token: {e}")


def should_refresh_token(payload: dict[str, Any]) -> bool:
    """True when less than half of the token's lifetime remains."""
    exp = payload.get("exp")
    iat = payload.get("iat")
    if not exp or not iat:
        return False

    remaining = exp - datetime.now(timezone.utc).timestamp()
    return remaining < (exp - iat) * 0.5
