"""DuckDB persistence for chat groups and their membership."""
import logging
from typing import List, Optional

from taskhub.db import Database

from .schemas import GroupRecord

logger = logging.getLogger(__name__)


class GroupStore:
    def __init__(self, db: Database) -> None:
        self._db = db

    def create(self, record: GroupRecord) -> GroupRecord:
        self._db.execute(
            """
            INSERT INTO chat_groups (id, name, description, avatar, created_by, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            [record.id, record.name, record.description, record.avatar,
             record.created_by, record.created_at, record.updated_at],
        )
        for user_id in record.member_ids:
            self._db.execute(
                "INSERT INTO group_members (group_id, user_id, is_admin, joined_at) VALUES (?, ?, ?, ?)",
                [record.id, user_id, user_id in record.admin_ids, record.created_at],
            )
        return record

    def get(self, group_id: str) -> Optional[GroupRecord]:
        row = self._db.fetchone(
            "SELECT id, name, description, avatar, created_by, created_at, updated_at "
            "FROM chat_groups WHERE id = ?",
            [group_id],
        )
        if row is None:
            return None
        members = self._db.fetchall(
            "SELECT user_id, is_admin FROM group_members WHERE group_id = ? "
            "ORDER BY joined_at ASC, rowid ASC",
            [group_id],
        )
        gid, name, description, avatar, created_by, created_at, updated_at = row
        return GroupRecord(
            id=gid,
            name=name,
            description=description,
            avatar=avatar,
            created_by=created_by,
            created_at=created_at,
            updated_at=updated_at,
            member_ids=[m[0] for m in members],
            admin_ids=[m[0] for m in members if m[1]],
        )

    def group_ids_for_user(self, user_id: str) -> List[str]:
        rows = self._db.fetchall(
            """
            SELECT g.id FROM chat_groups g
            JOIN group_members gm ON gm.group_id = g.id
            WHERE gm.user_id = ?
            ORDER BY g.updated_at DESC
            """,
            [user_id],
        )
        return [r[0] for r in rows]

    def list_for_user(self, user_id: str) -> List[GroupRecord]:
        """Groups the user belongs to, most recently active first."""
        groups = [self.get(gid) for gid in self.group_ids_for_user(user_id)]
        return [g for g in groups if g is not None]

    def is_member(self, group_id: str, user_id: str) -> bool:
        row = self._db.fetchone(
            "SELECT 1 FROM group_members WHERE group_id = ? AND user_id = ?",
            [group_id, user_id],
        )
        return row is not None

    def remove_member(self, group_id: str, user_id: str) -> bool:
        rows = self._db.fetchall(
            "DELETE FROM group_members WHERE group_id = ? AND user_id = ? RETURNING user_id",
            [group_id, user_id],
        )
        return bool(rows)

    def set_admin(self, group_id: str, user_id: str) -> None:
        self._db.execute(
            "UPDATE group_members SET is_admin = TRUE WHERE group_id = ? AND user_id = ?",
            [group_id, user_id],
        )

    def touch(self, group_id: str, at: float) -> None:
        self._db.execute("UPDATE chat_groups SET updated_at = ? WHERE id = ?", [at, group_id])

    def delete(self, group_id: str) -> None:
        self._db.execute("DELETE FROM group_members WHERE group_id = ?", [group_id])
        self._db.execute("DELETE FROM chat_groups WHERE id = ?", [group_id])
        logger.info(f"[Groups] Deleted group {group_id}")
