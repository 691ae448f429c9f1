from .events import Broadcaster, ClientEvent, ServerEvent, group_room, user_room
from .manager import Connection, ConnectionManager
from .presence import PresenceRegistry, PresenceStatus
from .signals import SignalChannel

__all__ = [
    "Broadcaster",
    "ClientEvent",
    "Connection",
    "ConnectionManager",
    "PresenceRegistry",
    "PresenceStatus",
    "ServerEvent",
    "SignalChannel",
    "group_room",
    "user_room",
]
