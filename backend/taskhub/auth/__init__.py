"""Authentication boundary.

Token issuance belongs to the account service; this package only verifies
bearer tokens and resolves them to a known user.
"""

from .tokens import create_access_token, decode_access_token
from .dependencies import get_current_user, require_messaging_user

__all__ = [
    "create_access_token",
    "decode_access_token",
    "get_current_user",
    "require_messaging_user",
]
