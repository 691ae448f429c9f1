"""WebSocket connection manager and room registry.

This module tracks live WebSocket connections and the rooms they joined, and
implements the Broadcaster interface used by the messaging, group, presence
and signal components.

Key features:
    - One Connection per WebSocket, identified by a backend-generated id
    - Personal rooms (``user:{id}``), joined once per connection after ``join``
    - Group rooms (``group:{id}``), joined/left as the client opens/closes a group
    - Concurrent fan-out with asyncio.gather()
    - Automatic dead connection cleanup

Thread Safety:
    This implementation is designed for async/await usage with a single event loop.
    It is NOT thread-safe for concurrent access from multiple threads.

Room membership is not durable: a reconnecting client gets a new Connection
and must send ``join`` (and ``joinGroup`` for an open group) again.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from fastapi import WebSocket

from .events import ServerEvent, build_event, group_room, user_room

logger = logging.getLogger(__name__)


@dataclass
class Connection:
    """One live transport session.

    Attributes:
        id: Backend-generated connection id.
        websocket: The underlying WebSocket.
        user_id: Set by the ``join`` handshake; None until then.
        groups: Group ids whose rooms this connection currently joined.
    """
    id: str
    websocket: Any
    user_id: Optional[str] = None
    groups: Set[str] = field(default_factory=set)


class ConnectionManager:
    """Registry of connections and rooms; the process-wide Broadcaster.

    Note:
        Group room joins are NOT checked against group membership. Membership
        is enforced by the REST layer before any persisted group data is
        returned, so a connection that joins an arbitrary group room only ever
        sees that room's live events.
    """

    def __init__(self) -> None:
        """Initialize empty connection manager."""
        # connection_id -> Connection
        self.connections: Dict[str, Connection] = {}

        # room name -> set of connection ids
        self.rooms: Dict[str, Set[str]] = {}

    async def connect(self, websocket: WebSocket) -> Connection:
        """Accept a WebSocket and register it (no rooms yet)."""
        await websocket.accept()
        connection = Connection(id=str(uuid.uuid4()), websocket=websocket)
        self.connections[connection.id] = connection
        logger.info(f"[Manager] Connection {connection.id} accepted ({len(self.connections)} open)")
        return connection

    def get(self, connection_id: str) -> Optional[Connection]:
        return self.connections.get(connection_id)

    # =========================================================================
    # Rooms
    # =========================================================================

    def _join(self, connection_id: str, room: str) -> None:
        self.rooms.setdefault(room, set()).add(connection_id)

    def _leave(self, connection_id: str, room: str) -> None:
        members = self.rooms.get(room)
        if members is None:
            return
        members.discard(connection_id)
        if not members:
            del self.rooms[room]

    def join_personal_room(self, connection_id: str, user_id: str) -> bool:
        """Bind a connection to a user and join ``user:{user_id}``.

        Idempotent for the same user. A connection re-joining as another user
        leaves the previous personal room first.

        Returns:
            True if the connection exists, False otherwise.
        """
        connection = self.connections.get(connection_id)
        if connection is None:
            return False
        if connection.user_id and connection.user_id != user_id:
            self._leave(connection_id, user_room(connection.user_id))
        connection.user_id = user_id
        self._join(connection_id, user_room(user_id))
        return True

    def join_group_room(self, connection_id: str, group_id: str) -> bool:
        connection = self.connections.get(connection_id)
        if connection is None:
            return False
        connection.groups.add(group_id)
        self._join(connection_id, group_room(group_id))
        return True

    def leave_group_room(self, connection_id: str, group_id: str) -> bool:
        connection = self.connections.get(connection_id)
        if connection is None:
            return False
        connection.groups.discard(group_id)
        self._leave(connection_id, group_room(group_id))
        return True

    def disconnect(self, connection_id: str) -> Optional[Connection]:
        """Remove a connection from the registry and from every room.

        Returns:
            The removed Connection, or None if it was unknown.
        """
        connection = self.connections.pop(connection_id, None)
        if connection is None:
            return None
        if connection.user_id:
            self._leave(connection_id, user_room(connection.user_id))
        for group_id in list(connection.groups):
            self._leave(connection_id, group_room(group_id))
        logger.info(f"[Manager] Connection {connection_id} removed ({len(self.connections)} open)")
        return connection

    def room_members(self, room: str) -> List[Connection]:
        return [
            self.connections[cid]
            for cid in self.rooms.get(room, set())
            if cid in self.connections
        ]

    def user_connection_count(self, user_id: str) -> int:
        return len(self.rooms.get(user_room(user_id), set()))

    def get_room_size(self, room: str) -> int:
        """Get the number of active connections in a room."""
        return len(self.rooms.get(room, set()))

    def clear(self) -> None:
        """Forget every connection and room (tests)."""
        self.connections.clear()
        self.rooms.clear()

    # =========================================================================
    # Broadcasting
    # =========================================================================

    async def publish(
        self,
        room: str,
        event: ServerEvent,
        payload: Dict[str, Any],
        *,
        exclude_user: Optional[str] = None,
    ) -> int:
        """Broadcast an event to all connections in a room concurrently.

        Args:
            room: Room name (``user:{id}`` or ``group:{id}``).
            event: Server event type.
            payload: JSON-serializable event body.
            exclude_user: Skip every connection bound to this user id.

        Returns:
            Number of connections the event was delivered to.
        """
        targets = [
            conn for conn in self.room_members(room)
            if exclude_user is None or conn.user_id != exclude_user
        ]
        return await self._send_many(targets, build_event(event, payload))

    async def publish_all(self, event: ServerEvent, payload: Dict[str, Any]) -> int:
        """Broadcast an event to every open connection."""
        return await self._send_many(list(self.connections.values()), build_event(event, payload))

    async def send_to(self, connection_id: str, message: Dict[str, Any]) -> bool:
        """Send directly to one connection (handshake replies, in-band errors)."""
        connection = self.connections.get(connection_id)
        if connection is None:
            return False
        ok = await self._safe_send(connection.websocket, message)
        if not ok:
            self._cleanup_connections([connection])
        return ok

    async def _send_many(self, targets: List[Connection], message: Dict[str, Any]) -> int:
        if not targets:
            return 0

        # Send to all connections concurrently
        results = await asyncio.gather(
            *[self._safe_send(conn.websocket, message) for conn in targets],
            return_exceptions=True
        )

        # Remove failed connections
        failed_connections = [
            conn for conn, success in zip(targets, results)
            if success is not True
        ]
        self._cleanup_connections(failed_connections)
        return len(targets) - len(failed_connections)

    async def _safe_send(self, websocket: Any, message: Dict[str, Any]) -> bool:
        """Send a message to a WebSocket connection with error handling.

        Returns:
            True if successful, False if connection failed.
        """
        try:
            await websocket.send_json(message)
            return True
        except Exception as e:
            logger.debug(f"Failed to send to connection: {e}")
            return False

    def _cleanup_connections(self, failed_connections: List[Connection]) -> None:
        for conn in failed_connections:
            if self.disconnect(conn.id) is not None:
                logger.debug(f"Removed dead connection {conn.id}")
