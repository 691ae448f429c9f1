"""FastAPI dependencies resolving the caller from the Authorization header."""
from typing import Optional

from fastapi import Depends, Header

from taskhub.config import get_config
from taskhub.errors import AuthenticationError, ForbiddenError
from taskhub.services import get_services
from taskhub.users import UserRecord

from .tokens import decode_access_token


def _bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise AuthenticationError("No token provided")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError("No token provided")
    return token.strip()


async def get_current_user(authorization: Optional[str] = Header(None)) -> UserRecord:
    """Resolve the bearer token to a known user.

    Raises:
        AuthenticationError: Missing/invalid token, or the subject is unknown.
    """
    user_id = decode_access_token(_bearer_token(authorization))
    user = get_services().users.get(user_id)
    if user is None:
        raise AuthenticationError("Unknown user")
    return user


async def require_messaging_user(user: UserRecord = Depends(get_current_user)) -> UserRecord:
    """Like get_current_user, but rejects roles that are excluded from messaging."""
    if user.role in get_config().messaging.restricted_roles:
        raise ForbiddenError("Your role cannot access messages")
    return user
