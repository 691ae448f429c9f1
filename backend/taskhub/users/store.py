"""DuckDB-backed user directory.

Account management itself lives outside the messaging core; this store only
answers "does this user exist, and what is their role" for the messaging and
group services.
"""
import logging
from typing import List, Optional, Sequence

from taskhub.db import Database

from .schemas import UserRecord

logger = logging.getLogger(__name__)

_COLUMNS = ["id", "name", "email", "role", "department", "avatar"]


class UserDirectory:
    """Read-mostly access to the ``users`` table."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def add(self, user: UserRecord) -> UserRecord:
        """Insert or replace a user."""
        self._db.execute("DELETE FROM users WHERE id = ?", [user.id])
        self._db.execute(
            """
            INSERT INTO users (id, name, email, role, department, avatar)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            [user.id, user.name, user.email, user.role, user.department, user.avatar],
        )
        logger.debug("[Users] Stored user %s (role=%s)", user.id, user.role)
        return user

    def get(self, user_id: str) -> Optional[UserRecord]:
        row = self._db.fetchone("SELECT * FROM users WHERE id = ?", [user_id])
        return self._row_to_user(row) if row else None

    def get_many(self, user_ids: Sequence[str]) -> List[UserRecord]:
        if not user_ids:
            return []
        placeholders = ", ".join("?" for _ in user_ids)
        rows = self._db.fetchall(
            f"SELECT * FROM users WHERE id IN ({placeholders})", list(user_ids)
        )
        return [self._row_to_user(r) for r in rows]

    def list_messageable(self, exclude_user_id: str, restricted_roles: Sequence[str]) -> List[UserRecord]:
        """All users except the caller and restricted roles, sorted by name."""
        rows = self._db.fetchall(
            "SELECT * FROM users WHERE id <> ? ORDER BY name ASC", [exclude_user_id]
        )
        users = [self._row_to_user(r) for r in rows]
        return [u for u in users if u.role not in restricted_roles]

    @staticmethod
    def _row_to_user(row) -> UserRecord:
        return UserRecord(**dict(zip(_COLUMNS, row)))
