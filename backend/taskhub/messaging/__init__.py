from .crypto import ContentCipher
from .schemas import (
    Attachment,
    ConversationSummaryView,
    DirectTarget,
    GroupTarget,
    MessageDetailView,
    MessageRecord,
    MessageStatus,
    SendMessageRequest,
    UnreadCounts,
)
from .service import MessagingService
from .store import MessageStore

__all__ = [
    "Attachment",
    "ContentCipher",
    "ConversationSummaryView",
    "DirectTarget",
    "GroupTarget",
    "MessageDetailView",
    "MessageRecord",
    "MessageStatus",
    "MessageStore",
    "MessagingService",
    "SendMessageRequest",
    "UnreadCounts",
]
