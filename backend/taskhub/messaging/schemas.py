"""Pydantic models for the messaging API and internal message records.

Wire models use camelCase field names, matching the realtime event payloads.
"""
from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from taskhub.errors import ValidationError


class MessageStatus(str, Enum):
    """Client-observed lifecycle tag; not authoritative."""
    SENDING = "sending"
    SENT = "sent"
    DELIVERED = "delivered"
    SEEN = "seen"


class DirectTarget(BaseModel):
    kind: Literal["direct"] = "direct"
    recipient_id: str


class GroupTarget(BaseModel):
    kind: Literal["group"] = "group"
    group_id: str


MessageTarget = Annotated[Union[DirectTarget, GroupTarget], Field(discriminator="kind")]


class Attachment(BaseModel):
    filename: str
    originalName: str = ""
    path: str = ""
    mimetype: str = "application/octet-stream"
    size: int = 0


class Reaction(BaseModel):
    userId: str
    type: str
    createdAt: float


class SeenEntry(BaseModel):
    userId: str
    seenAt: float


class MessageRecord(BaseModel):
    """A persisted message as the store sees it (content in stored form)."""
    id: str
    sender_id: str
    target: MessageTarget
    content: str
    attachments: List[Attachment] = Field(default_factory=list)
    reply_to: Optional[str] = None
    is_read: bool = False
    status: MessageStatus = MessageStatus.SENT
    created_at: float
    reactions: List[Reaction] = Field(default_factory=list)
    seen_by: List[SeenEntry] = Field(default_factory=list)
    deleted_by: List[str] = Field(default_factory=list)

    @property
    def is_group(self) -> bool:
        return isinstance(self.target, GroupTarget)

    @property
    def recipient_id(self) -> Optional[str]:
        return self.target.recipient_id if isinstance(self.target, DirectTarget) else None

    @property
    def group_id(self) -> Optional[str]:
        return self.target.group_id if isinstance(self.target, GroupTarget) else None

    def counterpart_of(self, user_id: str) -> str:
        """Conversation id of a direct message from ``user_id``'s point of view."""
        return self.recipient_id if self.sender_id == user_id else self.sender_id

    def seen_user_ids(self) -> List[str]:
        return [s.userId for s in self.seen_by]


# =============================================================================
# Requests
# =============================================================================


class SendMessageRequest(BaseModel):
    recipientId: Optional[str] = None
    groupId: Optional[str] = None
    content: str = ""
    attachments: List[Attachment] = Field(default_factory=list)
    replyTo: Optional[str] = None

    def to_target(self) -> Union[DirectTarget, GroupTarget]:
        """Exactly one of recipientId / groupId must be given."""
        if bool(self.recipientId) == bool(self.groupId):
            raise ValidationError("Exactly one of recipientId or groupId is required")
        if self.groupId:
            return GroupTarget(group_id=self.groupId)
        return DirectTarget(recipient_id=self.recipientId)


class MarkReadRequest(BaseModel):
    senderId: str = Field(..., min_length=1)


class ReactionRequest(BaseModel):
    reactionType: str = Field(..., min_length=1)


# =============================================================================
# Views
# =============================================================================


class ReplyPreview(BaseModel):
    id: str
    senderId: str
    content: str


class MessageDetailView(BaseModel):
    id: str
    senderId: str
    recipientId: Optional[str] = None
    groupId: Optional[str] = None
    isGroupMessage: bool
    content: str
    attachments: List[Attachment] = Field(default_factory=list)
    replyTo: Optional[ReplyPreview] = None
    isRead: bool
    status: MessageStatus
    createdAt: float
    reactions: List[Reaction] = Field(default_factory=list)
    seenBy: List[SeenEntry] = Field(default_factory=list)


class ConversationSummaryView(BaseModel):
    conversationId: str
    isGroup: bool
    title: str
    avatar: Optional[str] = None
    lastMessage: Optional[str] = None
    lastMessageTime: Optional[float] = None
    lastMessageSenderId: Optional[str] = None
    isLastMessageFromMe: bool = False
    unreadCount: int = 0


class UnreadCounts(BaseModel):
    conversationCount: int = 0
    totalUnreadMessages: int = 0


class DeleteResult(BaseModel):
    softDeleted: int = 0
    hardDeleted: int = 0


class MessageDeleteResult(BaseModel):
    messageId: str
    permanentlyDeleted: bool
