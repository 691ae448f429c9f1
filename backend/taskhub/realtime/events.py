"""Realtime event names, room naming and the Broadcaster interface.

Every server push is a JSON object ``{"type": <event>, **payload}``, the same
envelope the chat protocol has always used. Rooms are plain strings:

    user:{userId}    every connection of that user (joined on ``join``)
    group:{groupId}  connections currently displaying that group
"""
from enum import Enum
from typing import Any, Dict, Optional, Protocol


class ClientEvent(str, Enum):
    """Events a client may send over the WebSocket."""
    JOIN = "join"
    JOIN_GROUP = "joinGroup"
    LEAVE_GROUP = "leaveGroup"
    TYPING = "typing"
    STOP_TYPING = "stopTyping"
    MESSAGE_DELIVERED = "messageDelivered"


class ServerEvent(str, Enum):
    """Events pushed by the server."""
    CONNECTED = "connected"
    ERROR = "error"
    NEW_MESSAGE = "newMessage"
    NEW_GROUP_MESSAGE = "newGroupMessage"
    MESSAGE_REACTION = "messageReaction"
    MESSAGE_SEEN = "messageSeen"
    MESSAGE_DELIVERED_CONFIRM = "messageDeliveredConfirm"
    USER_TYPING = "userTyping"
    USER_STOPPED_TYPING = "userStoppedTyping"
    GROUP_CREATED = "groupCreated"
    USER_ONLINE = "userOnline"
    USER_OFFLINE = "userOffline"


def user_room(user_id: str) -> str:
    return f"user:{user_id}"


def group_room(group_id: str) -> str:
    return f"group:{group_id}"


def conversation_room(conversation_id: str, is_group: bool) -> str:
    """Room a conversation-scoped signal goes to.

    For a direct conversation ``conversation_id`` is the counterpart's user id.
    """
    return group_room(conversation_id) if is_group else user_room(conversation_id)


def build_event(event: ServerEvent, payload: Dict[str, Any]) -> Dict[str, Any]:
    return {"type": event.value, **payload}


class Broadcaster(Protocol):
    """Fan-out of push events to rooms.

    Constructed once at startup and handed to every component that pushes.
    Delivery is best-effort: implementations drop dead connections instead of
    raising, and callers must still treat any exception as non-fatal.
    """

    async def publish(
        self,
        room: str,
        event: ServerEvent,
        payload: Dict[str, Any],
        *,
        exclude_user: Optional[str] = None,
    ) -> int:
        """Send to every connection in ``room``; returns the delivered count."""
        ...

    async def publish_all(self, event: ServerEvent, payload: Dict[str, Any]) -> int:
        """Send to every open connection."""
        ...
