"""Client-side view state: conversation list, open thread, typing indicators.

These classes hold no I/O. They merge REST snapshots, pushed events and the
user's own confirmed actions into one view; the session decides when to call
them.
"""
import time
from typing import Callable, Dict, List, Optional

from taskhub.messaging.schemas import (
    ConversationSummaryView,
    MessageDetailView,
    MessageStatus,
    Reaction,
    SeenEntry,
)


def conversation_id_for(message: MessageDetailView, my_id: str) -> str:
    """Conversation a message belongs to, from ``my_id``'s point of view."""
    if message.isGroupMessage:
        return message.groupId
    return message.recipientId if message.senderId == my_id else message.senderId


class ConversationListState:
    """Summaries keyed by conversation id, newest activity first."""

    def __init__(self) -> None:
        self._items: Dict[str, ConversationSummaryView] = {}

    def replace(self, summaries: List[ConversationSummaryView]) -> None:
        self._items = {s.conversationId: s.model_copy() for s in summaries}

    def items(self) -> List[ConversationSummaryView]:
        return sorted(
            self._items.values(),
            key=lambda s: s.lastMessageTime or 0.0,
            reverse=True,
        )

    def get(self, conversation_id: str) -> Optional[ConversationSummaryView]:
        return self._items.get(conversation_id)

    def __contains__(self, conversation_id: str) -> bool:
        return conversation_id in self._items

    def zero_unread(self, conversation_id: str) -> None:
        summary = self._items.get(conversation_id)
        if summary is not None:
            summary.unreadCount = 0

    def remove(self, conversation_id: str) -> None:
        self._items.pop(conversation_id, None)

    def apply_message(self, message: MessageDetailView, my_id: str, count_unread: bool) -> bool:
        """Fold a new message into its summary.

        Returns:
            False if the conversation is not in the list yet (caller refetches).
        """
        summary = self._items.get(conversation_id_for(message, my_id))
        if summary is None:
            return False
        if summary.lastMessageTime is None or message.createdAt >= summary.lastMessageTime:
            summary.lastMessage = message.content
            summary.lastMessageTime = message.createdAt
            summary.lastMessageSenderId = message.senderId
            summary.isLastMessageFromMe = message.senderId == my_id
        if count_unread and message.senderId != my_id:
            summary.unreadCount += 1
        return True

    def total_unread(self) -> int:
        return sum(s.unreadCount for s in self._items.values())


class ThreadState:
    """Messages of the open conversation, de-duplicated by id.

    Ordered by the server's ``createdAt``, never by arrival order.
    """

    def __init__(self, conversation_id: str, is_group: bool) -> None:
        self.conversation_id = conversation_id
        self.is_group = is_group
        self._messages: Dict[str, MessageDetailView] = {}

    def load(self, messages: List[MessageDetailView]) -> None:
        """Merge a history snapshot into the thread.

        Snapshot copies replace local ones with the same id; messages that
        only exist locally (pushed while the snapshot was in flight) stay.
        """
        for message in messages:
            self._messages[message.id] = message

    def belongs(self, message: MessageDetailView, my_id: str) -> bool:
        return (
            message.isGroupMessage == self.is_group
            and conversation_id_for(message, my_id) == self.conversation_id
        )

    def merge(self, message: MessageDetailView) -> bool:
        """Insert or replace by id; returns True if the id was new."""
        is_new = message.id not in self._messages
        self._messages[message.id] = message
        return is_new

    def apply_reactions(self, message_id: str, reactions: List[Reaction]) -> bool:
        message = self._messages.get(message_id)
        if message is None:
            return False
        message.reactions = list(reactions)
        return True

    def apply_seen(self, message_id: str, seen_by: List[SeenEntry], status: MessageStatus) -> bool:
        message = self._messages.get(message_id)
        if message is None:
            return False
        message.seenBy = list(seen_by)
        message.status = status
        return True

    def remove(self, message_id: str) -> None:
        self._messages.pop(message_id, None)

    def messages(self) -> List[MessageDetailView]:
        return sorted(self._messages.values(), key=lambda m: m.createdAt)

    def __len__(self) -> int:
        return len(self._messages)


class TypingTracker:
    """Who is typing where, with automatic expiry.

    A typing signal holds for ``timeout_seconds`` unless renewed; a stop
    signal clears it immediately.
    """

    def __init__(self, timeout_seconds: float = 4.0, clock: Callable[[], float] = time.monotonic) -> None:
        self._timeout = timeout_seconds
        self._clock = clock
        # conversation id -> {user id: deadline}
        self._typing: Dict[str, Dict[str, float]] = {}

    def start(self, conversation_id: str, user_id: str) -> None:
        self._typing.setdefault(conversation_id, {})[user_id] = self._clock() + self._timeout

    def stop(self, conversation_id: str, user_id: str) -> None:
        users = self._typing.get(conversation_id)
        if users is None:
            return
        users.pop(user_id, None)
        if not users:
            del self._typing[conversation_id]

    def typing_users(self, conversation_id: str) -> List[str]:
        users = self._typing.get(conversation_id, {})
        now = self._clock()
        for user_id in [u for u, deadline in users.items() if deadline <= now]:
            self.stop(conversation_id, user_id)
        return sorted(self._typing.get(conversation_id, {}))

    def clear(self) -> None:
        self._typing.clear()
