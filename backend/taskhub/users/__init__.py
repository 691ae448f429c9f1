"""User directory (collaborator): who exists and which role they hold."""

from .schemas import UserRecord
from .store import UserDirectory

__all__ = ["UserRecord", "UserDirectory"]
