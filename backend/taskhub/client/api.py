"""Async REST client for the messaging API.

Failures come back as the same AppError taxonomy the server raises, so a
caller catches ``NotFoundError`` whether it ran in-process or over HTTP.
Concurrent identical GET requests share one in-flight request.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx

from taskhub.errors import InternalError, error_for_status
from taskhub.groups.schemas import GroupView, LeaveGroupResult
from taskhub.messaging.schemas import (
    Attachment,
    ConversationSummaryView,
    DeleteResult,
    MessageDeleteResult,
    MessageDetailView,
    Reaction,
    UnreadCounts,
)
from taskhub.realtime.presence import PresenceStatus
from taskhub.users import UserRecord

logger = logging.getLogger(__name__)


class MessagingApiClient:
    """Thin typed wrapper over the REST surface.

    Args:
        base_url: Server root, e.g. ``http://localhost:8000``.
        token: Bearer token of the signed-in user.
        transport: Optional httpx transport (``httpx.ASGITransport`` in tests).
        timeout: Per-request timeout in seconds.
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 10.0,
    ) -> None:
        self._http = httpx.AsyncClient(
            base_url=base_url,
            headers={"Authorization": f"Bearer {token}"},
            transport=transport,
            timeout=timeout,
        )
        self._inflight: Dict[Tuple[str, Tuple[Tuple[str, str], ...]], "asyncio.Future[Any]"] = {}

    async def close(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "MessagingApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # =========================================================================
    # Transport
    # =========================================================================

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, str]] = None,
    ) -> Any:
        try:
            response = await self._http.request(method, path, json=json, params=params)
        except httpx.HTTPError as e:
            raise InternalError(f"Request to {path} failed: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        if response.is_error or not body.get("success", False):
            message = body.get("error") or body.get("message") or response.reason_phrase
            logger.debug(f"[Client] {method} {path} -> {response.status_code}: {message}")
            raise error_for_status(response.status_code if response.is_error else 500, message)
        return body.get("data")

    async def _get(self, path: str, params: Optional[Dict[str, str]] = None) -> Any:
        """GET with in-flight de-duplication."""
        key = (path, tuple(sorted((params or {}).items())))
        pending = self._inflight.get(key)
        if pending is not None:
            return await asyncio.shield(pending)

        task = asyncio.ensure_future(self._request("GET", path, params=params))
        self._inflight[key] = task
        task.add_done_callback(lambda _: self._inflight.pop(key, None))
        return await asyncio.shield(task)

    # =========================================================================
    # Messages
    # =========================================================================

    async def list_conversations(self) -> List[ConversationSummaryView]:
        data = await self._get("/messages")
        return [ConversationSummaryView(**c) for c in data]

    async def send_message(
        self,
        content: str = "",
        recipient_id: Optional[str] = None,
        group_id: Optional[str] = None,
        attachments: Sequence[Attachment] = (),
        reply_to: Optional[str] = None,
    ) -> MessageDetailView:
        body: Dict[str, Any] = {
            "content": content,
            "attachments": [a.model_dump() for a in attachments],
        }
        if recipient_id:
            body["recipientId"] = recipient_id
        if group_id:
            body["groupId"] = group_id
        if reply_to:
            body["replyTo"] = reply_to
        return MessageDetailView(**await self._request("POST", "/messages", json=body))

    async def mark_read(self, sender_id: str) -> int:
        data = await self._request("PUT", "/messages/read", json={"senderId": sender_id})
        return data["updated"]

    async def list_users(self) -> List[UserRecord]:
        return [UserRecord(**u) for u in await self._get("/messages/users")]

    async def unread_counts(self, refresh: bool = False) -> UnreadCounts:
        params = {"refresh": "true"} if refresh else None
        return UnreadCounts(**await self._get("/messages/unread/count", params=params))

    async def get_conversation(self, user_id: str) -> List[MessageDetailView]:
        data = await self._get(f"/messages/conversation/{user_id}")
        return [MessageDetailView(**m) for m in data]

    async def delete_conversation(self, user_id: str) -> DeleteResult:
        return DeleteResult(**await self._request("POST", f"/messages/conversation/{user_id}/delete"))

    async def get_message(self, message_id: str) -> MessageDetailView:
        return MessageDetailView(**await self._get(f"/messages/message/{message_id}"))

    async def mark_seen(self, message_id: str) -> MessageDetailView:
        return MessageDetailView(**await self._request("POST", f"/messages/message/{message_id}/seen"))

    async def react(self, message_id: str, reaction_type: str) -> List[Reaction]:
        data = await self._request(
            "POST", f"/messages/message/{message_id}/reaction", json={"reactionType": reaction_type}
        )
        return [Reaction(**r) for r in data["reactions"]]

    async def unreact(self, message_id: str) -> List[Reaction]:
        data = await self._request("DELETE", f"/messages/message/{message_id}/reaction")
        return [Reaction(**r) for r in data["reactions"]]

    async def delete_message(self, message_id: str) -> MessageDeleteResult:
        return MessageDeleteResult(**await self._request("DELETE", f"/messages/message/{message_id}"))

    # =========================================================================
    # Groups
    # =========================================================================

    async def create_group(self, name: str, members: Sequence[str], description: str = "") -> GroupView:
        body = {"name": name, "members": list(members), "description": description}
        return GroupView(**await self._request("POST", "/groups", json=body))

    async def list_groups(self) -> List[GroupView]:
        return [GroupView(**g) for g in await self._get("/groups")]

    async def get_group(self, group_id: str) -> GroupView:
        return GroupView(**await self._get(f"/groups/{group_id}"))

    async def leave_group(self, group_id: str) -> LeaveGroupResult:
        return LeaveGroupResult(**await self._request("POST", f"/groups/{group_id}/leave"))

    async def get_group_messages(self, group_id: str) -> List[MessageDetailView]:
        data = await self._get(f"/groups/{group_id}/messages")
        return [MessageDetailView(**m) for m in data]

    async def delete_group_messages(self, group_id: str) -> DeleteResult:
        return DeleteResult(**await self._request("POST", f"/groups/{group_id}/delete-messages"))

    # =========================================================================
    # Presence
    # =========================================================================

    async def get_presence(self, user_id: str) -> PresenceStatus:
        return PresenceStatus(**await self._get(f"/presence/{user_id}"))
