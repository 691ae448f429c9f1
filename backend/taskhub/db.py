"""DuckDB connection shared by all TaskHub stores.

The service implements the singleton pattern so users, groups and messages
live in one embedded database file (or ``:memory:`` in tests).

Thread Safety:
    The DuckDB connection is NOT thread-safe. All stores are used from the
    event loop thread only; every endpoint touching them is ``async def``.

Usage:
    db = Database.get_instance()
    rows = db.execute("SELECT * FROM users").fetchall()
"""
import logging
from typing import Any, List, Optional, Sequence

import duckdb

logger = logging.getLogger(__name__)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS users (
        id         VARCHAR PRIMARY KEY,
        name       VARCHAR NOT NULL,
        email      VARCHAR NOT NULL,
        role       VARCHAR NOT NULL DEFAULT 'user',
        department VARCHAR,
        avatar     VARCHAR
    )
    """,
    "CREATE SEQUENCE IF NOT EXISTS messages_seq START 1",
    """
    CREATE TABLE IF NOT EXISTS messages (
        id          VARCHAR PRIMARY KEY,
        seq         BIGINT DEFAULT nextval('messages_seq'),
        sender_id   VARCHAR NOT NULL,
        receiver_id VARCHAR,
        group_id    VARCHAR,
        content     VARCHAR NOT NULL,
        attachments VARCHAR NOT NULL DEFAULT '[]',
        reply_to    VARCHAR,
        is_read     BOOLEAN NOT NULL DEFAULT FALSE,
        status      VARCHAR NOT NULL DEFAULT 'sent',
        created_at  DOUBLE NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_messages_pair ON messages(sender_id, receiver_id)",
    "CREATE INDEX IF NOT EXISTS idx_messages_group ON messages(group_id)",
    "CREATE SEQUENCE IF NOT EXISTS reactions_seq START 1",
    """
    CREATE TABLE IF NOT EXISTS message_reactions (
        seq        BIGINT DEFAULT nextval('reactions_seq'),
        message_id VARCHAR NOT NULL,
        user_id    VARCHAR NOT NULL,
        type       VARCHAR NOT NULL,
        created_at DOUBLE NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS message_seen (
        message_id VARCHAR NOT NULL,
        user_id    VARCHAR NOT NULL,
        seen_at    DOUBLE NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS message_deletions (
        message_id VARCHAR NOT NULL,
        user_id    VARCHAR NOT NULL,
        deleted_at DOUBLE NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS chat_groups (
        id          VARCHAR PRIMARY KEY,
        name        VARCHAR NOT NULL,
        description VARCHAR NOT NULL DEFAULT '',
        avatar      VARCHAR NOT NULL DEFAULT '',
        created_by  VARCHAR NOT NULL,
        created_at  DOUBLE NOT NULL,
        updated_at  DOUBLE NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS group_members (
        group_id  VARCHAR NOT NULL,
        user_id   VARCHAR NOT NULL,
        is_admin  BOOLEAN NOT NULL DEFAULT FALSE,
        joined_at DOUBLE NOT NULL
    )
    """,
)


class Database:
    """Singleton owner of the DuckDB connection and schema.

    Attributes:
        _instance: Singleton instance.
        _db_path: Path to the DuckDB database file.
    """

    _instance: Optional["Database"] = None
    _db_path: str = "taskhub.duckdb"

    def __init__(self, db_path: Optional[str] = None) -> None:
        if db_path:
            self._db_path = db_path
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._initialize_db()
        logger.info("[Database] Initialized with db=%s", self._db_path)

    @classmethod
    def get_instance(cls, db_path: Optional[str] = None) -> "Database":
        """Get or create the singleton instance.

        Args:
            db_path: Optional database path (only used on first call).
        """
        if cls._instance is None:
            cls._instance = cls(db_path)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Close the connection and forget the singleton (tests)."""
        if cls._instance is not None:
            cls._instance.close()
            cls._instance = None

    @property
    def path(self) -> str:
        return self._db_path

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        if self._connection is None:
            self._connection = duckdb.connect(self._db_path)
        return self._connection

    def _initialize_db(self) -> None:
        """Create tables and indexes. Safe to call multiple times."""
        conn = self._get_connection()
        for statement in _SCHEMA:
            conn.execute(statement)

    def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> duckdb.DuckDBPyConnection:
        conn = self._get_connection()
        if params is None:
            return conn.execute(sql)
        return conn.execute(sql, list(params))

    def fetchall(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[tuple]:
        return self.execute(sql, params).fetchall()

    def fetchone(self, sql: str, params: Optional[Sequence[Any]] = None) -> Optional[tuple]:
        return self.execute(sql, params).fetchone()

    def close(self) -> None:
        """Close the database connection."""
        if self._connection is not None:
            self._connection.close()
            self._connection = None
