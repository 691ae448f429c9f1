"""Error taxonomy shared by the REST layer, the services and the client.

Every service-level failure is one of these classes. The FastAPI exception
handlers in ``taskhub.main`` turn them into the uniform
``{"success": false, "error": "..."}`` envelope with the mapped HTTP status,
and ``taskhub.client.api`` maps non-2xx responses back onto them.
"""
from typing import Dict, Type


class AppError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code: int = 500

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message or self.__class__.__name__


class ValidationError(AppError):
    """Missing or malformed input."""
    status_code = 400


class AuthenticationError(AppError):
    """Missing or invalid credential."""
    status_code = 401


class ForbiddenError(AppError):
    """Authenticated, but the policy disallows the operation."""
    status_code = 403


class NotFoundError(AppError):
    """Referenced entity does not exist (or is invisible to the caller)."""
    status_code = 404


class ConflictError(AppError):
    """Duplicate or illegal state transition."""
    status_code = 409


class InternalError(AppError):
    """Unexpected failure, usually in persistence."""
    status_code = 500


_BY_STATUS: Dict[int, Type[AppError]] = {
    cls.status_code: cls
    for cls in (
        ValidationError,
        AuthenticationError,
        ForbiddenError,
        NotFoundError,
        ConflictError,
        InternalError,
    )
}


def error_for_status(status_code: int, message: str) -> AppError:
    """Build the AppError subclass matching an HTTP status code."""
    cls = _BY_STATUS.get(status_code)
    if cls is None:
        cls = ValidationError if 400 <= status_code < 500 else InternalError
    return cls(message)
