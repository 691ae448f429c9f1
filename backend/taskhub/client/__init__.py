"""Client reconciliation layer for applications consuming the messaging API."""
from .api import MessagingApiClient
from .debounce import Debouncer
from .realtime import ConnectionState, RealtimeClient
from .session import ChatSession
from .state import ConversationListState, ThreadState, TypingTracker
from .suppression import DeletedConversations

__all__ = [
    "ChatSession",
    "ConnectionState",
    "ConversationListState",
    "Debouncer",
    "DeletedConversations",
    "MessagingApiClient",
    "RealtimeClient",
    "ThreadState",
    "TypingTracker",
]
