"""FastAPI dependencies for database, authentication and collaborators."""

from functools import lru_cache
from typing import Optional

import jwt
from fastapi import Depends, Header
from jwt import PyJWTError

from ..gateways import GatewayRegistry
from ..services.notification_service import LoggingNotifier, Notifier
from .config import settings
from .database import get_db
from .exceptions import AuthenticationError, AuthorizationError

__all__ = [
    "get_current_user",
    "get_db",
    "get_gateway_registry",
    "get_notifier",
    "require_staff",
]


async def get_current_user(
    authorization: Optional[str] = Header(None, alias="Authorization")
) -> dict:
    """
    Authentication dependency that validates Bearer tokens.

    Returns:
        dict: ``user_id`` (the token subject) and ``roles``

    Raises:
        AuthenticationError: If the token is missing, malformed or invalid
    """
    if not authorization:
        raise AuthenticationError(detail="Authorization header missing")

    try:
        scheme, token = authorization.split()
    except ValueError:
        raise AuthenticationError(detail="Invalid authorization header format")
    if scheme.lower() != "bearer":
        raise AuthenticationError(detail="Invalid authentication scheme")

    try:
        payload = jwt.decode(token, settings.bearer_token_secret, algorithms=["HS256"])
    except PyJWTError as e:
        raise AuthenticationError(detail=f"Token validation failed: {e}")

    user_id = payload.get("sub")
    if not user_id:
        raise AuthenticationError(detail="Invalid token payload")

    return {
        "user_id": str(user_id),
        "roles": list(payload.get("roles", [])),
    }


def is_staff(user: dict) -> bool:
    return any(role in settings.staff_roles for role in user.get("roles", []))


async def require_staff(current_user: dict = Depends(get_current_user)) -> dict:
    """Authorization dependency for staff-only operations."""
    if not is_staff(current_user):
        raise AuthorizationError(detail="Staff role required")
    return current_user


@lru_cache
def get_gateway_registry() -> GatewayRegistry:
    return GatewayRegistry.from_settings(settings)


def get_notifier() -> Notifier:
    return LoggingNotifier()
