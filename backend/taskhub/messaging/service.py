"""Message lifecycle engine.

Every mutating operation validates and authorizes first, persists second and
pushes a realtime event last. Pushes are best-effort: a failed publish is
logged and swallowed, because the durable write already succeeded.

Read paths always drop messages the caller soft-deleted. Direct-message
content is encrypted at rest and decrypted on every read; group message
content is stored as sent.
"""
import logging
import time
import uuid
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from taskhub.cache import TTLCache
from taskhub.config import MessagingSettings
from taskhub.errors import ForbiddenError, NotFoundError, ValidationError
from taskhub.groups import GroupService
from taskhub.realtime.events import Broadcaster, ServerEvent, group_room, user_room
from taskhub.realtime.signals import SignalChannel
from taskhub.users import UserDirectory, UserRecord

from .crypto import ContentCipher
from .schemas import (
    Attachment,
    ConversationSummaryView,
    DeleteResult,
    DirectTarget,
    GroupTarget,
    MessageDeleteResult,
    MessageDetailView,
    MessageRecord,
    MessageStatus,
    Reaction,
    ReplyPreview,
    UnreadCounts,
)
from .store import MessageStore

logger = logging.getLogger(__name__)


class MessagingService:
    """Send, read, seen, reaction and delete operations on messages.

    Args:
        store: Message persistence.
        users: User directory (existence and role checks).
        groups: Group membership checks.
        broadcaster: Realtime fan-out for new-message pushes.
        signals: Ephemeral seen/reaction signals.
        cipher: Content cipher for direct messages.
        settings: Messaging policy (restricted roles, limits, cache TTL).
        clock: Wall-clock source for message timestamps.
        cache_clock: Monotonic source for the unread counter cache.
    """

    def __init__(
        self,
        store: MessageStore,
        users: UserDirectory,
        groups: GroupService,
        broadcaster: Broadcaster,
        signals: SignalChannel,
        cipher: ContentCipher,
        settings: MessagingSettings,
        clock: Callable[[], float] = time.time,
        cache_clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._users = users
        self._groups = groups
        self._broadcaster = broadcaster
        self._signals = signals
        self._cipher = cipher
        self._settings = settings
        self._clock = clock
        self._unread_cache: TTLCache[str, UnreadCounts] = TTLCache(
            settings.unread_cache_ttl_seconds, clock=cache_clock
        )

    # =========================================================================
    # Send
    # =========================================================================

    async def send(
        self,
        sender: UserRecord,
        target: Union[DirectTarget, GroupTarget],
        content: str = "",
        attachments: Sequence[Attachment] = (),
        reply_to: Optional[str] = None,
    ) -> MessageDetailView:
        """Persist a message and push it to the recipient's or group's room.

        Raises:
            ValidationError: Empty or oversized message, self-message, or a
                reply target from another conversation.
            NotFoundError: Recipient, group or reply target does not exist.
            ForbiddenError: Restricted sender/recipient, or sender not in group.
        """
        self._ensure_can_message(sender)
        text = (content or "").strip()
        if not text and not attachments:
            raise ValidationError("Message content or attachments are required")
        if len(text) > self._settings.max_content_length:
            raise ValidationError(
                f"Message cannot exceed {self._settings.max_content_length} characters"
            )

        group_members: List[str] = []
        if isinstance(target, DirectTarget):
            if target.recipient_id == sender.id:
                raise ValidationError("Cannot send a message to yourself")
            recipient = self._users.get(target.recipient_id)
            if recipient is None:
                raise NotFoundError("Recipient not found")
            if recipient.role in self._settings.restricted_roles:
                raise ForbiddenError("Cannot send messages to this user")
        else:
            group_members = self._groups.require_member(target.group_id, sender.id).member_ids

        if reply_to:
            self._check_reply_target(reply_to, sender.id, target)

        record = MessageRecord(
            id=str(uuid.uuid4()),
            sender_id=sender.id,
            target=target,
            content=self._cipher.encrypt(text) if isinstance(target, DirectTarget) else text,
            attachments=list(attachments),
            reply_to=reply_to,
            created_at=self._clock(),
        )
        self._store.insert(record)
        view = self._to_views([record])[0]

        if isinstance(target, DirectTarget):
            logger.info(f"[Messaging] {sender.id} -> {target.recipient_id}: message {record.id}")
            self._invalidate([target.recipient_id])
            await self._push(
                user_room(target.recipient_id),
                ServerEvent.NEW_MESSAGE,
                {"message": view.model_dump(mode="json"), "senderId": sender.id},
            )
        else:
            logger.info(f"[Messaging] {sender.id} -> group {target.group_id}: message {record.id}")
            self._groups.touch(target.group_id)
            self._invalidate(m for m in group_members if m != sender.id)
            await self._push(
                group_room(target.group_id),
                ServerEvent.NEW_GROUP_MESSAGE,
                {
                    "message": view.model_dump(mode="json"),
                    "groupId": target.group_id,
                    "senderId": sender.id,
                },
            )
        return view

    def _check_reply_target(
        self, reply_to: str, sender_id: str, target: Union[DirectTarget, GroupTarget]
    ) -> None:
        original = self._store.get(reply_to)
        if original is None or sender_id in original.deleted_by:
            raise NotFoundError("Replied message not found")
        if isinstance(target, GroupTarget):
            same = original.group_id == target.group_id
        else:
            same = not original.is_group and {original.sender_id, original.recipient_id} == {
                sender_id, target.recipient_id
            }
        if not same:
            raise ValidationError("Replied message belongs to another conversation")

    # =========================================================================
    # Read / seen
    # =========================================================================

    async def mark_read(self, reader_id: str, sender_id: str) -> int:
        """Mark every unread direct message from ``sender_id`` as read. Idempotent."""
        if not sender_id:
            raise ValidationError("senderId is required")
        updated = self._store.mark_read(sender_id, reader_id)
        self._invalidate([reader_id])
        if updated:
            logger.debug(f"[Messaging] {reader_id} read {updated} message(s) from {sender_id}")
        return updated

    async def mark_seen(self, message_id: str, viewer_id: str) -> MessageDetailView:
        """Add the viewer to ``seenBy``; repeated calls change nothing."""
        record = self._get_visible(message_id, viewer_id)
        await self._mark_seen_many(viewer_id, [record])
        return self._to_views([record])[0]

    async def _mark_seen_many(self, viewer_id: str, records: Iterable[MessageRecord]) -> int:
        now = self._clock()
        changed = 0
        for record in records:
            if record.sender_id == viewer_id or viewer_id in record.seen_user_ids():
                continue
            if not self._store.add_seen(record.id, viewer_id, now):
                continue
            if record.status != MessageStatus.SEEN:
                self._store.set_status(record.id, MessageStatus.SEEN)
                record.status = MessageStatus.SEEN
            record.seen_by = self._store.get(record.id).seen_by
            changed += 1
            await self._signals.emit_seen(
                record.id,
                [s.model_dump() for s in record.seen_by],
                record.status.value,
                actor_id=viewer_id,
                **self._conversation_of(record, viewer_id),
            )
        if changed:
            self._invalidate([viewer_id])
        return changed

    async def confirm_delivery(self, message_id: str, recipient_id: str) -> str:
        """Tell the sender that a direct message reached the recipient's client.

        Returns:
            The sender id the confirmation was pushed to.

        Raises:
            NotFoundError: No such direct message addressed to ``recipient_id``.
        """
        record = self._store.get(message_id)
        if record is None or record.is_group or record.recipient_id != recipient_id:
            raise NotFoundError("Message not found")
        await self._signals.emit_delivered(record.id, record.sender_id)
        return record.sender_id

    # =========================================================================
    # Reactions
    # =========================================================================

    async def react(self, message_id: str, user_id: str, reaction_type: str) -> List[Reaction]:
        """Set the caller's reaction, replacing any previous one."""
        if reaction_type not in self._settings.reaction_types:
            raise ValidationError(
                f"Invalid reaction type. Must be one of: {', '.join(self._settings.reaction_types)}"
            )
        record = self._get_visible(message_id, user_id)
        self._store.upsert_reaction(record.id, user_id, reaction_type, self._clock())
        return await self._publish_reactions(record, user_id, reaction_type)

    async def unreact(self, message_id: str, user_id: str) -> List[Reaction]:
        record = self._get_visible(message_id, user_id)
        self._store.remove_reaction(record.id, user_id)
        return await self._publish_reactions(record, user_id, None)

    async def _publish_reactions(
        self, record: MessageRecord, user_id: str, reaction_type: Optional[str]
    ) -> List[Reaction]:
        reactions = self._store.get(record.id).reactions
        await self._signals.emit_reaction_changed(
            record.id,
            [r.model_dump() for r in reactions],
            actor_id=user_id,
            reaction_type=reaction_type,
            **self._conversation_of(record, user_id),
        )
        return reactions

    # =========================================================================
    # Delete
    # =========================================================================

    async def soft_delete(self, message_id: str, user_id: str) -> MessageDeleteResult:
        """Hide a message for the caller.

        A direct message deleted by both participants is removed for good.
        Group deletions only ever affect the caller.
        """
        record = self._store.get(message_id)
        if record is None:
            raise NotFoundError("Message not found")
        self._ensure_participant(record, user_id)

        self._store.add_deletion(record.id, user_id, self._clock())
        self._invalidate([user_id])
        deleted_by = set(record.deleted_by) | {user_id}
        if self._reached_quorum(record, deleted_by):
            self._store.hard_delete([record.id])
            return MessageDeleteResult(messageId=record.id, permanentlyDeleted=True)
        return MessageDeleteResult(messageId=record.id, permanentlyDeleted=False)

    async def soft_delete_conversation(self, user_id: str, other_id: str) -> DeleteResult:
        records = self._store.list_direct(user_id, other_id, visible_to=user_id)
        return self._delete_for(user_id, records)

    async def soft_delete_group_messages(self, user_id: str, group_id: str) -> DeleteResult:
        self._groups.require_member(group_id, user_id)
        records = self._store.list_group(group_id, visible_to=user_id)
        return self._delete_for(user_id, records)

    def _delete_for(self, user_id: str, records: List[MessageRecord]) -> DeleteResult:
        self._store.add_deletions([r.id for r in records], user_id, self._clock())
        purge = [r.id for r in records if self._reached_quorum(r, set(r.deleted_by) | {user_id})]
        hard = self._store.hard_delete(purge)
        self._invalidate([user_id])
        logger.info(
            f"[Messaging] {user_id} deleted {len(records)} message(s), {hard} permanently"
        )
        return DeleteResult(softDeleted=len(records) - hard, hardDeleted=hard)

    @staticmethod
    def _reached_quorum(record: MessageRecord, deleted_by: set) -> bool:
        if record.is_group:
            return False
        return {record.sender_id, record.recipient_id} <= deleted_by

    # =========================================================================
    # Fetch
    # =========================================================================

    async def get_conversation(self, user_id: str, other_id: str) -> List[MessageDetailView]:
        """Full 1:1 history, oldest first.

        Side effects: the counterpart's messages become read and seen.
        """
        if self._users.get(other_id) is None:
            raise NotFoundError("User not found")
        records = self._store.list_direct(user_id, other_id, visible_to=user_id)
        if any(r.sender_id == other_id and not r.is_read for r in records):
            await self.mark_read(user_id, other_id)
            for r in records:
                if r.sender_id == other_id:
                    r.is_read = True
        await self._mark_seen_many(user_id, records)
        return self._to_views(records)

    async def get_group_messages(self, user_id: str, group_id: str) -> List[MessageDetailView]:
        """Full group history, oldest first; marks others' messages seen."""
        self._groups.require_member(group_id, user_id)
        records = self._store.list_group(group_id, visible_to=user_id)
        await self._mark_seen_many(user_id, records)
        return self._to_views(records)

    def get_message(self, message_id: str, user_id: str) -> MessageDetailView:
        return self._to_views([self._get_visible(message_id, user_id)])[0]

    def list_messageable_users(self, user_id: str) -> List[UserRecord]:
        return self._users.list_messageable(user_id, self._settings.restricted_roles)

    def list_conversations(self, user_id: str) -> List[ConversationSummaryView]:
        """Direct and group conversation summaries, most recent first."""
        entries: List[Tuple[float, ConversationSummaryView]] = []

        by_counterpart: Dict[str, List[MessageRecord]] = {}
        for record in self._store.list_direct_for_user(user_id):
            by_counterpart.setdefault(record.counterpart_of(user_id), []).append(record)
        counterparts = {u.id: u for u in self._users.get_many(list(by_counterpart))}
        for other_id, records in by_counterpart.items():
            other = counterparts.get(other_id)
            if other is None:
                continue
            unread = sum(1 for r in records if r.recipient_id == user_id and not r.is_read)
            summary = self._summary(user_id, other_id, False, other.name, other.avatar, records[-1], unread)
            entries.append((summary.lastMessageTime, summary))

        groups = self._groups.list_for_user(user_id)
        by_group: Dict[str, List[MessageRecord]] = {}
        for record in self._store.list_groups([g.id for g in groups], visible_to=user_id):
            by_group.setdefault(record.group_id, []).append(record)
        for group in groups:
            records = by_group.get(group.id, [])
            unread = sum(
                1 for r in records if r.sender_id != user_id and user_id not in r.seen_user_ids()
            )
            last = records[-1] if records else None
            summary = self._summary(user_id, group.id, True, group.name, group.avatar or None, last, unread)
            entries.append((summary.lastMessageTime or group.updatedAt, summary))

        entries.sort(key=lambda e: e[0], reverse=True)
        return [summary for _, summary in entries]

    def _summary(
        self,
        user_id: str,
        conversation_id: str,
        is_group: bool,
        title: str,
        avatar: Optional[str],
        last: Optional[MessageRecord],
        unread: int,
    ) -> ConversationSummaryView:
        summary = ConversationSummaryView(
            conversationId=conversation_id,
            isGroup=is_group,
            title=title,
            avatar=avatar,
            unreadCount=unread,
        )
        if last is not None:
            summary.lastMessage = self._read_content(last)
            summary.lastMessageTime = last.created_at
            summary.lastMessageSenderId = last.sender_id
            summary.isLastMessageFromMe = last.sender_id == user_id
        return summary

    # =========================================================================
    # Unread counters
    # =========================================================================

    def unread_counts(self, user_id: str, force_refresh: bool = False) -> UnreadCounts:
        """Cached unread counters; ``force_refresh`` recomputes immediately."""
        if not force_refresh:
            cached = self._unread_cache.get(user_id)
            if cached is not None:
                return cached
        counts = self.compute_unread_counts(user_id)
        self._unread_cache.set(user_id, counts)
        return counts

    def compute_unread_counts(self, user_id: str) -> UnreadCounts:
        """Aggregate unread counters straight from the message tables."""
        per_conversation = [count for _, count in self._store.unread_direct_by_sender(user_id)]
        group_ids = self._groups.group_ids_for_user(user_id)
        per_conversation += [count for _, count in self._store.unread_group_by_group(user_id, group_ids)]
        per_conversation = [c for c in per_conversation if c > 0]
        return UnreadCounts(
            conversationCount=len(per_conversation),
            totalUnreadMessages=sum(per_conversation),
        )

    def _invalidate(self, user_ids: Iterable[str]) -> None:
        for user_id in user_ids:
            self._unread_cache.invalidate(user_id)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _ensure_can_message(self, user: UserRecord) -> None:
        if user.role in self._settings.restricted_roles:
            raise ForbiddenError("Your role cannot send messages")

    def _ensure_participant(self, record: MessageRecord, user_id: str) -> None:
        if record.is_group:
            if not self._groups.is_member(record.group_id, user_id):
                raise ForbiddenError("You are not a member of this group")
        elif user_id not in (record.sender_id, record.recipient_id):
            raise ForbiddenError("You are not part of this conversation")

    def _get_visible(self, message_id: str, user_id: str) -> MessageRecord:
        """Load a message the caller may see.

        Raises:
            NotFoundError: Missing, hard-deleted, or deleted by the caller.
            ForbiddenError: The caller is not a participant.
        """
        record = self._store.get(message_id)
        if record is None or user_id in record.deleted_by:
            raise NotFoundError("Message not found")
        self._ensure_participant(record, user_id)
        return record

    @staticmethod
    def _conversation_of(record: MessageRecord, user_id: str) -> Dict[str, Any]:
        if record.is_group:
            return {"conversation_id": record.group_id, "is_group": True}
        return {"conversation_id": record.counterpart_of(user_id), "is_group": False}

    def _read_content(self, record: MessageRecord) -> str:
        return record.content if record.is_group else self._cipher.decrypt(record.content)

    def _to_views(self, records: List[MessageRecord]) -> List[MessageDetailView]:
        replies: Dict[str, Optional[MessageRecord]] = {}
        for record in records:
            if record.reply_to and record.reply_to not in replies:
                replies[record.reply_to] = self._store.get(record.reply_to)

        views = []
        for record in records:
            original = replies.get(record.reply_to) if record.reply_to else None
            views.append(MessageDetailView(
                id=record.id,
                senderId=record.sender_id,
                recipientId=record.recipient_id,
                groupId=record.group_id,
                isGroupMessage=record.is_group,
                content=self._read_content(record),
                attachments=record.attachments,
                replyTo=ReplyPreview(
                    id=original.id,
                    senderId=original.sender_id,
                    content=self._read_content(original),
                ) if original else None,
                isRead=record.is_read,
                status=record.status,
                createdAt=record.created_at,
                reactions=record.reactions,
                seenBy=record.seen_by,
            ))
        return views

    async def _push(self, room: str, event: ServerEvent, payload: Dict[str, Any]) -> None:
        try:
            await self._broadcaster.publish(room, event, payload)
        except Exception as e:
            logger.warning(f"[Messaging] Push {event.value} to {room} failed: {e}")
