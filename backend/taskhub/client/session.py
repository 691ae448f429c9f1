"""Chat session: keeps one user's conversation list and open thread consistent.

Three unordered sources feed the view: REST snapshots, realtime pushes and
the user's own confirmed actions. Rules:

    * The conversation list is cached for a short TTL and invalidated on any
      send/receive activity or on demand (``conversations(force=True)``).
    * Selecting a conversation zeroes its unread count immediately. The
      history fetch marks it read/seen on the server; if that fetch fails the
      zero stays.
    * Sending is not optimistic: the message joins the thread only once the
      server returns it.
    * Conversations deleted "for me" stay hidden until new activity arrives.
    * The unread badge is recomputed at most once per debounce window.
    * A poll every ``poll_interval_seconds`` re-fetches the badge, the
      conversation list and the open thread, so missed pushes heal.
"""
import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

from taskhub.cache import TTLCache
from taskhub.config import ClientSettings
from taskhub.errors import AppError, ValidationError
from taskhub.messaging.schemas import (
    Attachment,
    ConversationSummaryView,
    MessageDetailView,
    MessageStatus,
    Reaction,
    SeenEntry,
    UnreadCounts,
)
from taskhub.realtime.events import ServerEvent

from .api import MessagingApiClient
from .debounce import Debouncer
from .realtime import ConnectionState, RealtimeClient
from .state import ConversationListState, ThreadState, TypingTracker, conversation_id_for
from .suppression import DeletedConversations

logger = logging.getLogger(__name__)


class ChatSession:
    def __init__(
        self,
        user_id: str,
        api: MessagingApiClient,
        realtime: RealtimeClient,
        suppressed: DeletedConversations,
        settings: Optional[ClientSettings] = None,
        typing_timeout_seconds: float = 4.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        settings = settings or ClientSettings()
        self.user_id = user_id
        self._api = api
        self._realtime = realtime
        self._suppressed = suppressed
        self._cache: TTLCache[str, List[ConversationSummaryView]] = TTLCache(
            settings.conversation_cache_ttl_seconds, clock=clock
        )
        self._badge_debouncer = Debouncer(settings.badge_debounce_seconds, self.refresh_badge)
        self._poll_interval = settings.poll_interval_seconds
        self._poll_task: Optional[asyncio.Task] = None

        self.conversation_list = ConversationListState()
        self.thread: Optional[ThreadState] = None
        self.typing = TypingTracker(typing_timeout_seconds, clock=clock)
        self.badge = UnreadCounts()
        self.online: Dict[str, bool] = {}
        self.badge_listeners: List[Callable[[UnreadCounts], None]] = []

        self._register_handlers()

    @property
    def connection_state(self) -> ConnectionState:
        return self._realtime.state

    def start(self) -> None:
        self._realtime.start()
        if self._poll_interval > 0 and (self._poll_task is None or self._poll_task.done()):
            self._poll_task = asyncio.ensure_future(self._poll_loop())

    async def close(self) -> None:
        self._badge_debouncer.cancel()
        if self._poll_task is not None:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None
        await self._realtime.stop()
        await self._api.close()

    # =========================================================================
    # Conversation list
    # =========================================================================

    async def conversations(self, force: bool = False) -> List[ConversationSummaryView]:
        """Conversation list, served from the short-TTL cache unless forced."""
        cached = None if force else self._cache.get(self.user_id)
        if cached is None:
            fetched = await self._api.list_conversations()
            cached = [c for c in fetched if c.conversationId not in self._suppressed]
            self._cache.set(self.user_id, cached)
            self.conversation_list.replace(cached)
        return self.conversation_list.items()

    def invalidate_conversations(self) -> None:
        self._cache.invalidate(self.user_id)

    async def delete_conversation(self, conversation_id: str, is_group: bool) -> None:
        """Delete a conversation for this user and hide it locally."""
        if is_group:
            await self._api.delete_group_messages(conversation_id)
        else:
            await self._api.delete_conversation(conversation_id)
        self._suppressed.add(conversation_id)
        self.conversation_list.remove(conversation_id)
        self.invalidate_conversations()
        if self.thread is not None and self.thread.conversation_id == conversation_id:
            await self.close_conversation()
        self._badge_debouncer.trigger()

    # =========================================================================
    # Thread
    # =========================================================================

    async def select_conversation(self, conversation_id: str, is_group: bool) -> ThreadState:
        """Open a conversation.

        Raises:
            AppError: The history fetch failed. The thread is left empty and
                the optimistic unread reset is kept.
        """
        self.conversation_list.zero_unread(conversation_id)
        if self.thread is not None and self.thread.is_group and self.thread.conversation_id != conversation_id:
            await self._realtime.leave_group(self.thread.conversation_id)

        self.thread = ThreadState(conversation_id, is_group)
        if is_group:
            await self._realtime.join_group(conversation_id)

        try:
            messages = await self._fetch_history(conversation_id, is_group)
        except AppError as e:
            logger.warning(f"[Client] Could not load {conversation_id}: {e.message}")
            raise
        finally:
            self._badge_debouncer.trigger()

        if self.thread is not None and self.thread.conversation_id == conversation_id:
            self.thread.load(messages)
        return self.thread

    async def _fetch_history(self, conversation_id: str, is_group: bool) -> List[MessageDetailView]:
        if is_group:
            return await self._api.get_group_messages(conversation_id)
        return await self._api.get_conversation(conversation_id)

    async def close_conversation(self) -> None:
        if self.thread is not None and self.thread.is_group:
            await self._realtime.leave_group(self.thread.conversation_id)
        self.thread = None

    async def send(
        self,
        content: str,
        attachments: Sequence[Attachment] = (),
        reply_to: Optional[str] = None,
    ) -> MessageDetailView:
        """Send to the open conversation and append the server's copy."""
        thread = self.thread
        if thread is None:
            raise ValidationError("No conversation is open")
        message = await self._api.send_message(
            content,
            recipient_id=None if thread.is_group else thread.conversation_id,
            group_id=thread.conversation_id if thread.is_group else None,
            attachments=attachments,
            reply_to=reply_to,
        )
        await self._realtime.stop_typing(thread.conversation_id, thread.is_group)
        thread.merge(message)
        self._suppressed.evict(thread.conversation_id)
        self.conversation_list.apply_message(message, self.user_id, count_unread=False)
        self.invalidate_conversations()
        return message

    async def react(self, message_id: str, reaction_type: str) -> List[Reaction]:
        reactions = await self._api.react(message_id, reaction_type)
        if self.thread is not None:
            self.thread.apply_reactions(message_id, reactions)
        return reactions

    async def unreact(self, message_id: str) -> List[Reaction]:
        reactions = await self._api.unreact(message_id)
        if self.thread is not None:
            self.thread.apply_reactions(message_id, reactions)
        return reactions

    async def delete_message(self, message_id: str) -> None:
        await self._api.delete_message(message_id)
        if self.thread is not None:
            self.thread.remove(message_id)
        self.invalidate_conversations()

    async def notify_typing(self, active: bool = True) -> None:
        if self.thread is None:
            return
        if active:
            await self._realtime.typing(self.thread.conversation_id, self.thread.is_group)
        else:
            await self._realtime.stop_typing(self.thread.conversation_id, self.thread.is_group)

    # =========================================================================
    # Badge
    # =========================================================================

    async def refresh_badge(self, force: bool = False) -> UnreadCounts:
        self.badge = await self._api.unread_counts(refresh=force)
        for listener in self.badge_listeners:
            listener(self.badge)
        return self.badge

    def schedule_badge_refresh(self) -> None:
        self._badge_debouncer.trigger()

    async def flush_badge(self) -> None:
        await self._badge_debouncer.flush()

    # =========================================================================
    # Polling backstop
    # =========================================================================

    async def poll(self) -> None:
        """One consistency pass: open thread, conversation list, badge.

        The thread goes first so its read side effect is reflected in the
        list and the badge. Failures are logged; the next tick tries again.
        """
        try:
            thread = self.thread
            if thread is not None:
                messages = await self._fetch_history(thread.conversation_id, thread.is_group)
                if self.thread is thread:
                    thread.load(messages)
            await self.conversations(force=True)
            await self.refresh_badge()
        except AppError as e:
            logger.warning(f"[Client] Poll failed: {e.message}")

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self._poll_interval)
            await self.poll()

    # =========================================================================
    # Realtime events
    # =========================================================================

    def _register_handlers(self) -> None:
        self._realtime.on(ServerEvent.NEW_MESSAGE, self._on_new_message)
        self._realtime.on(ServerEvent.NEW_GROUP_MESSAGE, self._on_new_message)
        self._realtime.on(ServerEvent.MESSAGE_REACTION, self._on_reaction)
        self._realtime.on(ServerEvent.MESSAGE_SEEN, self._on_seen)
        self._realtime.on(ServerEvent.USER_TYPING, self._on_typing)
        self._realtime.on(ServerEvent.USER_STOPPED_TYPING, self._on_stop_typing)
        self._realtime.on(ServerEvent.GROUP_CREATED, self._on_group_created)
        self._realtime.on(ServerEvent.USER_ONLINE, self._on_presence)
        self._realtime.on(ServerEvent.USER_OFFLINE, self._on_presence)

    async def _on_new_message(self, payload: Dict[str, Any]) -> None:
        message = MessageDetailView(**payload["message"])
        sender_id = payload.get("senderId", message.senderId)
        conversation_id = conversation_id_for(message, self.user_id)
        from_me = sender_id == self.user_id

        # new activity un-hides a conversation deleted for me
        self._suppressed.evict(conversation_id)

        if not from_me and not message.isGroupMessage:
            await self._realtime.delivered(message.id, sender_id)

        viewing = self.thread is not None and self.thread.belongs(message, self.user_id)
        if viewing:
            self.thread.merge(message)
            if not from_me:
                await self._mark_viewed(message)
        self.conversation_list.apply_message(message, self.user_id, count_unread=not viewing)
        self.invalidate_conversations()
        self._badge_debouncer.trigger()

    async def _mark_viewed(self, message: MessageDetailView) -> None:
        try:
            if message.isGroupMessage:
                await self._api.mark_seen(message.id)
            else:
                await self._api.mark_read(message.senderId)
        except AppError as e:
            logger.debug(f"[Client] Read receipt for {message.id} failed: {e.message}")

    def _on_reaction(self, payload: Dict[str, Any]) -> None:
        if self.thread is not None:
            self.thread.apply_reactions(
                payload["messageId"], [Reaction(**r) for r in payload.get("reactions", [])]
            )

    def _on_seen(self, payload: Dict[str, Any]) -> None:
        if self.thread is not None:
            self.thread.apply_seen(
                payload["messageId"],
                [SeenEntry(**s) for s in payload.get("seenBy", [])],
                MessageStatus(payload.get("status", MessageStatus.SEEN.value)),
            )

    def _typing_key(self, payload: Dict[str, Any]) -> str:
        # a direct typing signal names me as the conversation; key it by the typer
        return payload["conversationId"] if payload.get("isGroup") else payload["userId"]

    def _on_typing(self, payload: Dict[str, Any]) -> None:
        self.typing.start(self._typing_key(payload), payload["userId"])

    def _on_stop_typing(self, payload: Dict[str, Any]) -> None:
        self.typing.stop(self._typing_key(payload), payload["userId"])

    def _on_group_created(self, payload: Dict[str, Any]) -> None:
        self.invalidate_conversations()

    def _on_presence(self, payload: Dict[str, Any]) -> None:
        self.online[payload["userId"]] = payload.get("status") == "online"
