"""Pydantic schemas for the user directory."""
from typing import Optional

from pydantic import BaseModel, Field


class UserRecord(BaseModel):
    """A user as seen by the messaging core.

    Attributes:
        id: Unique user identifier.
        name: Display name.
        email: Contact email.
        role: Application role (``admin`` / ``manager`` / ``user``).
        department: Optional department label.
        avatar: Optional avatar URL.
    """
    id: str = Field(..., min_length=1)
    name: str
    email: str
    role: str = "user"
    department: Optional[str] = None
    avatar: Optional[str] = None
