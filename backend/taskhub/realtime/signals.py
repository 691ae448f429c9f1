"""Ephemeral, fire-and-forget signals (typing, reactions, seen, delivered).

None of these are persisted or acknowledged. A direct conversation's room
is the counterpart's personal room; a group conversation's room is the group
room. Typing signals skip every connection of the sender, while reaction and
seen signals reach the whole room including the actor's other tabs.
"""
import logging
from typing import Any, Dict, List, Optional

from .events import Broadcaster, ServerEvent, conversation_room, user_room

logger = logging.getLogger(__name__)


class SignalChannel:
    def __init__(self, broadcaster: Broadcaster) -> None:
        self._broadcaster = broadcaster

    async def emit_typing(self, user_id: str, conversation_id: str, is_group: bool) -> None:
        await self._emit(
            conversation_room(conversation_id, is_group),
            ServerEvent.USER_TYPING,
            {"userId": user_id, "conversationId": conversation_id, "isGroup": is_group},
            exclude_user=user_id,
        )

    async def emit_stop_typing(self, user_id: str, conversation_id: str, is_group: bool) -> None:
        await self._emit(
            conversation_room(conversation_id, is_group),
            ServerEvent.USER_STOPPED_TYPING,
            {"userId": user_id, "conversationId": conversation_id, "isGroup": is_group},
            exclude_user=user_id,
        )

    async def emit_reaction_changed(
        self,
        message_id: str,
        reactions: List[Dict[str, Any]],
        *,
        actor_id: str,
        reaction_type: Optional[str],
        conversation_id: str,
        is_group: bool,
    ) -> None:
        """Push the full reaction list; ``reaction_type`` is None on removal."""
        payload = {
            "messageId": message_id,
            "reactions": reactions,
            "userId": actor_id,
            "reactionType": reaction_type,
        }
        await self._emit_conversation(ServerEvent.MESSAGE_REACTION, payload, actor_id, conversation_id, is_group)

    async def emit_seen(
        self,
        message_id: str,
        seen_by: List[Dict[str, Any]],
        status: str,
        *,
        actor_id: str,
        conversation_id: str,
        is_group: bool,
    ) -> None:
        payload = {"messageId": message_id, "seenBy": seen_by, "status": status, "userId": actor_id}
        await self._emit_conversation(ServerEvent.MESSAGE_SEEN, payload, actor_id, conversation_id, is_group)

    async def emit_delivered(self, message_id: str, sender_id: str) -> None:
        await self._emit(
            user_room(sender_id),
            ServerEvent.MESSAGE_DELIVERED_CONFIRM,
            {"messageId": message_id},
        )

    async def _emit_conversation(
        self,
        event: ServerEvent,
        payload: Dict[str, Any],
        actor_id: str,
        conversation_id: str,
        is_group: bool,
    ) -> None:
        await self._emit(conversation_room(conversation_id, is_group), event, payload)
        if not is_group:
            # actor's own tabs live in a different personal room
            await self._emit(user_room(actor_id), event, payload)

    async def _emit(self, room: str, event: ServerEvent, payload: Dict[str, Any], **kwargs: Any) -> None:
        try:
            await self._broadcaster.publish(room, event, payload, **kwargs)
        except Exception as e:
            logger.warning(f"[Signals] Failed to emit {event.value} to {room}: {e}")
