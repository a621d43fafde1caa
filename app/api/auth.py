"""
Owner Authentication

Session tokens are issued by the account service; this module only verifies
them. Format: "Authorization: Bearer <jwt>" with the user id in `sub`.
"""

from typing import Optional

from fastapi import Header
from jose import JWTError, jwt

from app.config import get_settings
from app.errors import AuthenticationError, ConfigurationError


async def get_current_user_id(authorization: Optional[str] = Header(None)) -> str:
    """
    Verify the bearer session token and return the caller's user id.

    Raises:
        AuthenticationError: If the header is missing, malformed or invalid
        ConfigurationError: If JWT_SECRET is not set
    """
    settings = get_settings()

    if not authorization:
        raise AuthenticationError("Authentication token is required", code="MISSING_TOKEN")

    if not authorization.startswith("Bearer "):
        raise AuthenticationError("Authorization must be 'Bearer <token>'", code="INVALID_TOKEN")

    if not settings.JWT_SECRET:
        raise ConfigurationError("JWT_SECRET is not configured")

    token = authorization.split(" ", 1)[1]

    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        raise AuthenticationError("Invalid or malformed token", code="INVALID_TOKEN")

    user_id = payload.get("sub") or payload.get("id")
    if not user_id:
        raise AuthenticationError("Invalid or malformed token", code="INVALID_TOKEN")

    return str(user_id)
