"""DuckDB persistence for messages and their per-user side tables.

Reactions, seen entries and per-user deletions live in their own tables so
each keeps at most one row per (message, user). Every listing query takes a
``visible_to`` user and filters out messages that user soft-deleted.
"""
import json
import logging
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from taskhub.db import Database

from .schemas import (
    Attachment,
    DirectTarget,
    GroupTarget,
    MessageRecord,
    MessageStatus,
    Reaction,
    SeenEntry,
)

logger = logging.getLogger(__name__)

_SELECT = """
    SELECT id, sender_id, receiver_id, group_id, content, attachments,
           reply_to, is_read, status, created_at
    FROM messages m
"""

_NOT_DELETED_BY = (
    "NOT EXISTS (SELECT 1 FROM message_deletions d "
    "WHERE d.message_id = m.id AND d.user_id = ?)"
)

_ORDER = " ORDER BY m.created_at ASC, m.seq ASC"


def _placeholders(values: Sequence) -> str:
    return ", ".join("?" for _ in values)


class MessageStore:
    def __init__(self, db: Database) -> None:
        self._db = db

    # =========================================================================
    # Messages
    # =========================================================================

    def insert(self, record: MessageRecord) -> MessageRecord:
        self._db.execute(
            """
            INSERT INTO messages (id, sender_id, receiver_id, group_id, content,
                                  attachments, reply_to, is_read, status, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                record.id,
                record.sender_id,
                record.recipient_id,
                record.group_id,
                record.content,
                json.dumps([a.model_dump() for a in record.attachments]),
                record.reply_to,
                record.is_read,
                record.status.value,
                record.created_at,
            ],
        )
        return record

    def get(self, message_id: str) -> Optional[MessageRecord]:
        rows = self._db.fetchall(_SELECT + " WHERE m.id = ?", [message_id])
        records = self._hydrate(rows)
        return records[0] if records else None

    def list_direct(self, user_a: str, user_b: str, visible_to: str) -> List[MessageRecord]:
        """All messages between two users, oldest first."""
        rows = self._db.fetchall(
            _SELECT
            + """
            WHERE m.group_id IS NULL
              AND ((m.sender_id = ? AND m.receiver_id = ?)
                OR (m.sender_id = ? AND m.receiver_id = ?))
              AND """
            + _NOT_DELETED_BY
            + _ORDER,
            [user_a, user_b, user_b, user_a, visible_to],
        )
        return self._hydrate(rows)

    def list_direct_for_user(self, user_id: str) -> List[MessageRecord]:
        """Every direct message the user sent or received and did not delete."""
        rows = self._db.fetchall(
            _SELECT
            + " WHERE m.group_id IS NULL AND (m.sender_id = ? OR m.receiver_id = ?) AND "
            + _NOT_DELETED_BY
            + _ORDER,
            [user_id, user_id, user_id],
        )
        return self._hydrate(rows)

    def list_group(self, group_id: str, visible_to: str) -> List[MessageRecord]:
        rows = self._db.fetchall(
            _SELECT + " WHERE m.group_id = ? AND " + _NOT_DELETED_BY + _ORDER,
            [group_id, visible_to],
        )
        return self._hydrate(rows)

    def list_groups(self, group_ids: Sequence[str], visible_to: str) -> List[MessageRecord]:
        if not group_ids:
            return []
        rows = self._db.fetchall(
            _SELECT
            + f" WHERE m.group_id IN ({_placeholders(group_ids)}) AND "
            + _NOT_DELETED_BY
            + _ORDER,
            [*group_ids, visible_to],
        )
        return self._hydrate(rows)

    def mark_read(self, sender_id: str, receiver_id: str) -> int:
        """Flag every unread direct message from sender to receiver as read."""
        rows = self._db.fetchall(
            """
            UPDATE messages SET is_read = TRUE
            WHERE group_id IS NULL AND sender_id = ? AND receiver_id = ? AND NOT is_read
            RETURNING id
            """,
            [sender_id, receiver_id],
        )
        return len(rows)

    def set_status(self, message_id: str, status: MessageStatus) -> None:
        self._db.execute(
            "UPDATE messages SET status = ? WHERE id = ?", [status.value, message_id]
        )

    def hard_delete(self, message_ids: Iterable[str]) -> int:
        ids = list(message_ids)
        if not ids:
            return 0
        marks = _placeholders(ids)
        for table in ("message_reactions", "message_seen", "message_deletions"):
            self._db.execute(f"DELETE FROM {table} WHERE message_id IN ({marks})", ids)
        deleted = self._db.fetchall(f"DELETE FROM messages WHERE id IN ({marks}) RETURNING id", ids)
        logger.info(f"[Messages] Hard-deleted {len(deleted)} message(s)")
        return len(deleted)

    # =========================================================================
    # Side tables
    # =========================================================================

    def upsert_reaction(self, message_id: str, user_id: str, reaction_type: str, at: float) -> None:
        """Set the user's reaction; an existing one keeps its place in the list."""
        updated = self._db.fetchall(
            "UPDATE message_reactions SET type = ?, created_at = ? "
            "WHERE message_id = ? AND user_id = ? RETURNING user_id",
            [reaction_type, at, message_id, user_id],
        )
        if updated:
            return
        self._db.execute(
            "INSERT INTO message_reactions (message_id, user_id, type, created_at) VALUES (?, ?, ?, ?)",
            [message_id, user_id, reaction_type, at],
        )

    def remove_reaction(self, message_id: str, user_id: str) -> bool:
        rows = self._db.fetchall(
            "DELETE FROM message_reactions WHERE message_id = ? AND user_id = ? RETURNING user_id",
            [message_id, user_id],
        )
        return bool(rows)

    def add_seen(self, message_id: str, user_id: str, at: float) -> bool:
        """Record a seen entry; False if the user had already seen it."""
        exists = self._db.fetchone(
            "SELECT 1 FROM message_seen WHERE message_id = ? AND user_id = ?",
            [message_id, user_id],
        )
        if exists:
            return False
        self._db.execute(
            "INSERT INTO message_seen (message_id, user_id, seen_at) VALUES (?, ?, ?)",
            [message_id, user_id, at],
        )
        return True

    def add_deletion(self, message_id: str, user_id: str, at: float) -> bool:
        """Record a per-user deletion; False if already present."""
        exists = self._db.fetchone(
            "SELECT 1 FROM message_deletions WHERE message_id = ? AND user_id = ?",
            [message_id, user_id],
        )
        if exists:
            return False
        self._db.execute(
            "INSERT INTO message_deletions (message_id, user_id, deleted_at) VALUES (?, ?, ?)",
            [message_id, user_id, at],
        )
        return True

    def add_deletions(self, message_ids: Sequence[str], user_id: str, at: float) -> int:
        """Bulk variant of add_deletion; returns how many rows were new."""
        if not message_ids:
            return 0
        already = {
            row[0]
            for row in self._db.fetchall(
                f"SELECT message_id FROM message_deletions "
                f"WHERE user_id = ? AND message_id IN ({_placeholders(message_ids)})",
                [user_id, *message_ids],
            )
        }
        fresh = [mid for mid in message_ids if mid not in already]
        for mid in fresh:
            self._db.execute(
                "INSERT INTO message_deletions (message_id, user_id, deleted_at) VALUES (?, ?, ?)",
                [mid, user_id, at],
            )
        return len(fresh)

    # =========================================================================
    # Unread aggregation
    # =========================================================================

    def unread_direct_by_sender(self, user_id: str) -> List[Tuple[str, int]]:
        return self._db.fetchall(
            """
            SELECT m.sender_id, COUNT(*) FROM messages m
            WHERE m.group_id IS NULL AND m.receiver_id = ? AND NOT m.is_read AND """
            + _NOT_DELETED_BY
            + " GROUP BY m.sender_id",
            [user_id, user_id],
        )

    def unread_group_by_group(self, user_id: str, group_ids: Sequence[str]) -> List[Tuple[str, int]]:
        """Group messages from others that the user has neither seen nor deleted."""
        if not group_ids:
            return []
        return self._db.fetchall(
            f"""
            SELECT m.group_id, COUNT(*) FROM messages m
            WHERE m.group_id IN ({_placeholders(group_ids)})
              AND m.sender_id <> ?
              AND NOT EXISTS (SELECT 1 FROM message_seen s
                              WHERE s.message_id = m.id AND s.user_id = ?)
              AND """
            + _NOT_DELETED_BY
            + " GROUP BY m.group_id",
            [*group_ids, user_id, user_id, user_id],
        )

    # =========================================================================
    # Row mapping
    # =========================================================================

    def _hydrate(self, rows: List[tuple]) -> List[MessageRecord]:
        if not rows:
            return []
        ids = [row[0] for row in rows]
        marks = _placeholders(ids)

        reactions: Dict[str, List[Reaction]] = {}
        for mid, uid, rtype, created_at in self._db.fetchall(
            f"SELECT message_id, user_id, type, created_at FROM message_reactions "
            f"WHERE message_id IN ({marks}) ORDER BY seq ASC",
            ids,
        ):
            reactions.setdefault(mid, []).append(Reaction(userId=uid, type=rtype, createdAt=created_at))

        seen: Dict[str, List[SeenEntry]] = {}
        for mid, uid, seen_at in self._db.fetchall(
            f"SELECT message_id, user_id, seen_at FROM message_seen "
            f"WHERE message_id IN ({marks}) ORDER BY seen_at ASC, rowid ASC",
            ids,
        ):
            seen.setdefault(mid, []).append(SeenEntry(userId=uid, seenAt=seen_at))

        deleted: Dict[str, List[str]] = {}
        for mid, uid in self._db.fetchall(
            f"SELECT message_id, user_id FROM message_deletions WHERE message_id IN ({marks})",
            ids,
        ):
            deleted.setdefault(mid, []).append(uid)

        return [
            self._row_to_record(row, reactions.get(row[0], []), seen.get(row[0], []), deleted.get(row[0], []))
            for row in rows
        ]

    @staticmethod
    def _row_to_record(row, reactions, seen, deleted) -> MessageRecord:
        (mid, sender_id, receiver_id, group_id, content, attachments,
         reply_to, is_read, status, created_at) = row
        target = GroupTarget(group_id=group_id) if group_id else DirectTarget(recipient_id=receiver_id)
        return MessageRecord(
            id=mid,
            sender_id=sender_id,
            target=target,
            content=content,
            attachments=[Attachment(**a) for a in json.loads(attachments or "[]")],
            reply_to=reply_to,
            is_read=bool(is_read),
            status=MessageStatus(status),
            created_at=created_at,
            reactions=reactions,
            seen_by=seen,
            deleted_by=deleted,
        )
