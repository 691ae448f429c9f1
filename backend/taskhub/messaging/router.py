"""Messaging REST endpoints.

Endpoints:
    GET    /messages                              Conversation summaries
    POST   /messages                              Send a message
    PUT    /messages/read                         Mark a sender's messages read
    GET    /messages/users                        Users the caller may message
    GET    /messages/unread/count                 Unread counters (?refresh=true bypasses cache)
    GET    /messages/conversation/{user_id}       1:1 history (marks read and seen)
    POST   /messages/conversation/{user_id}/delete  Delete a conversation for the caller
    GET    /messages/message/{message_id}         One message
    POST   /messages/message/{message_id}/seen    Mark seen
    POST   /messages/message/{message_id}/reaction  React
    DELETE /messages/message/{message_id}/reaction  Remove reaction
    DELETE /messages/message/{message_id}         Delete a message for the caller

All endpoints require a bearer token for a user whose role may message.
"""
import logging

from fastapi import APIRouter, Depends, Query

from taskhub.auth import require_messaging_user
from taskhub.responses import success
from taskhub.services import get_services
from taskhub.users import UserRecord

from .schemas import MarkReadRequest, ReactionRequest, SendMessageRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/messages", tags=["messages"])


@router.get("")
async def list_conversations(user: UserRecord = Depends(require_messaging_user)) -> dict:
    return success(get_services().messaging.list_conversations(user.id))


@router.post("", status_code=201)
async def send_message(
    body: SendMessageRequest,
    user: UserRecord = Depends(require_messaging_user),
) -> dict:
    message = await get_services().messaging.send(
        user,
        body.to_target(),
        content=body.content,
        attachments=body.attachments,
        reply_to=body.replyTo,
    )
    return success(message)


@router.put("/read")
async def mark_read(
    body: MarkReadRequest,
    user: UserRecord = Depends(require_messaging_user),
) -> dict:
    updated = await get_services().messaging.mark_read(user.id, body.senderId)
    return success({"updated": updated}, message="Messages marked as read")


@router.get("/users")
async def list_users(user: UserRecord = Depends(require_messaging_user)) -> dict:
    return success(get_services().messaging.list_messageable_users(user.id))


@router.get("/unread/count")
async def unread_count(
    refresh: bool = Query(False, description="Bypass the short server-side cache"),
    user: UserRecord = Depends(require_messaging_user),
) -> dict:
    return success(get_services().messaging.unread_counts(user.id, force_refresh=refresh))


@router.get("/conversation/{user_id}")
async def get_conversation(user_id: str, user: UserRecord = Depends(require_messaging_user)) -> dict:
    return success(await get_services().messaging.get_conversation(user.id, user_id))


@router.post("/conversation/{user_id}/delete")
async def delete_conversation(user_id: str, user: UserRecord = Depends(require_messaging_user)) -> dict:
    result = await get_services().messaging.soft_delete_conversation(user.id, user_id)
    return success(result, message="Conversation deleted")


@router.get("/message/{message_id}")
async def get_message(message_id: str, user: UserRecord = Depends(require_messaging_user)) -> dict:
    return success(get_services().messaging.get_message(message_id, user.id))


@router.post("/message/{message_id}/seen")
async def mark_seen(message_id: str, user: UserRecord = Depends(require_messaging_user)) -> dict:
    return success(await get_services().messaging.mark_seen(message_id, user.id))


@router.post("/message/{message_id}/reaction")
async def add_reaction(
    message_id: str,
    body: ReactionRequest,
    user: UserRecord = Depends(require_messaging_user),
) -> dict:
    reactions = await get_services().messaging.react(message_id, user.id, body.reactionType)
    return success({"messageId": message_id, "reactions": reactions})


@router.delete("/message/{message_id}/reaction")
async def remove_reaction(message_id: str, user: UserRecord = Depends(require_messaging_user)) -> dict:
    reactions = await get_services().messaging.unreact(message_id, user.id)
    return success({"messageId": message_id, "reactions": reactions})


@router.delete("/message/{message_id}")
async def delete_message(message_id: str, user: UserRecord = Depends(require_messaging_user)) -> dict:
    result = await get_services().messaging.soft_delete(message_id, user.id)
    return success(result, message="Message deleted")
