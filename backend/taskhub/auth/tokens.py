"""JWT helpers.

``decode_access_token`` is what the API uses. ``create_access_token`` exists
for tooling and tests; production tokens are minted by the account service
with the same secret.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

from taskhub.config import get_config
from taskhub.errors import AuthenticationError


def create_access_token(subject: str, expires_minutes: int = 60, extra: Optional[dict] = None) -> str:
    secrets = get_config().secrets.jwt
    now = datetime.now(timezone.utc)
    payload = {
        "sub": subject,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=expires_minutes)).timestamp()),
    }
    if extra:
        payload.update(extra)
    return jwt.encode(payload, secrets.secret_key, algorithm=secrets.algorithm)


def decode_access_token(token: str) -> str:
    """Verify a token and return its subject (the user id).

    Raises:
        AuthenticationError: If the token is malformed, expired or has no subject.
    """
    secrets = get_config().secrets.jwt
    try:
        payload = jwt.decode(token, secrets.secret_key, algorithms=[secrets.algorithm])
    except JWTError as exc:
        raise AuthenticationError("Invalid or expired token") from exc

    subject = payload.get("sub")
    if not subject:
        raise AuthenticationError("Invalid or expired token")
    return str(subject)
