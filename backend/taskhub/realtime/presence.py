"""In-memory online/offline registry.

Presence is last-connection-wins: closing any connection of a user marks the
user offline, even while another tab is still connected. A later ``join``
from the remaining tab marks them online again.
"""
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from pydantic import BaseModel

from .events import Broadcaster, ServerEvent

logger = logging.getLogger(__name__)


class PresenceStatus(BaseModel):
    userId: str
    online: bool
    lastSeen: Optional[float] = None


@dataclass
class _PresenceRecord:
    online: bool
    last_seen: float
    connection_id: Optional[str] = None


class PresenceRegistry:
    def __init__(self, broadcaster: Broadcaster, clock: Callable[[], float] = time.time) -> None:
        self._broadcaster = broadcaster
        self._clock = clock
        self._records: Dict[str, _PresenceRecord] = {}

    async def mark_online(self, user_id: str, connection_id: Optional[str] = None) -> None:
        """Record the user as online via ``connection_id``, replacing any earlier record."""
        self._records[user_id] = _PresenceRecord(
            online=True, last_seen=self._clock(), connection_id=connection_id
        )
        logger.info(f"[Presence] {user_id} online (connection={connection_id})")
        await self._announce(ServerEvent.USER_ONLINE, {"userId": user_id, "status": "online"})

    async def mark_offline(self, user_id: str) -> None:
        now = self._clock()
        self._records[user_id] = _PresenceRecord(online=False, last_seen=now)
        logger.info(f"[Presence] {user_id} offline")
        await self._announce(
            ServerEvent.USER_OFFLINE,
            {"userId": user_id, "status": "offline", "lastSeen": now},
        )

    def get_status(self, user_id: str) -> PresenceStatus:
        """Unknown users are offline with no last-seen time."""
        record = self._records.get(user_id)
        if record is None:
            return PresenceStatus(userId=user_id, online=False)
        return PresenceStatus(userId=user_id, online=record.online, lastSeen=record.last_seen)

    def online_user_ids(self) -> list:
        return [uid for uid, record in self._records.items() if record.online]

    async def _announce(self, event: ServerEvent, payload: dict) -> None:
        try:
            await self._broadcaster.publish_all(event, payload)
        except Exception as e:
            logger.warning(f"[Presence] Failed to broadcast {event.value}: {e}")
