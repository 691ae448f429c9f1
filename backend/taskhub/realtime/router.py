"""Realtime WebSocket endpoint and presence lookup.

This module provides:
    - WebSocket /ws: the single persistent realtime connection per client
    - GET /presence/{user_id}: presence snapshot

Protocol Flow:
    1. Client connects (optionally ``?token=<jwt>``)
       → Server sends: {type: "connected", connectionId}
    2. Client sends: {type: "join", userId}
       → connection joins ``user:{userId}``; everyone gets ``userOnline``
    3. Client sends: {type: "joinGroup" | "leaveGroup", groupId}
       while a group conversation is open
    4. Client sends: {type: "typing" | "stopTyping", conversationId, isGroup}
       → counterpart room gets ``userTyping`` / ``userStoppedTyping``
    5. Client sends: {type: "messageDelivered", messageId, senderId}
       → if the joined user is the recipient, the stored sender's room gets
         ``messageDeliveredConfirm``
    6. On disconnect → everyone gets ``userOffline``

Room membership does not survive a disconnect: a reconnecting client must
send ``join`` (and ``joinGroup`` for its open group) again. Protocol errors
are answered in-band as {type: "error", error} and the connection stays open.
"""
import json
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect

from taskhub.auth import decode_access_token, get_current_user
from taskhub.config import get_config
from taskhub.errors import AppError, AuthenticationError
from taskhub.responses import success
from taskhub.services import get_services
from taskhub.users import UserRecord

from .events import ClientEvent, ServerEvent, build_event

logger = logging.getLogger(__name__)

router = APIRouter()


def _error(message: str) -> Dict[str, Any]:
    return build_event(ServerEvent.ERROR, {"error": message})


@router.get("/presence/{user_id}")
async def get_presence(user_id: str, _: UserRecord = Depends(get_current_user)) -> dict:
    return success(get_services().presence.get_status(user_id))


@router.websocket("/ws")
async def realtime_endpoint(
    websocket: WebSocket,
    token: Optional[str] = Query(None, description="Optional bearer token binding the connection to one user"),
) -> None:
    """Realtime channel for one client connection.

    SECURITY MODEL:
        - With ``token``, ``join`` is only accepted for the token's subject.
        - Without it the ``join`` userId is trusted, and must name a known user.
        - Typing signals always use the joined userId, never a client-provided one.
        - ``messageDelivered`` is only accepted from the message's recipient and
          is confirmed to the stored sender.
        - ``joinGroup`` is not checked against membership; persisted group
          data is only served by the REST layer after a membership check.
    """
    services = get_services()
    manager = services.manager

    token_user_id: Optional[str] = None
    if token:
        try:
            token_user_id = decode_access_token(token)
        except AuthenticationError:
            logger.warning("[WS] Rejecting connection with invalid token")
            await websocket.close(code=1008)  # 1008 = Policy Violation
            return

    connection = await manager.connect(websocket)
    logger.info(f"[WS] New connection {connection.id} (token_user={token_user_id})")

    try:
        await websocket.send_json(build_event(ServerEvent.CONNECTED, {"connectionId": connection.id}))

        # Main message loop
        while True:
            raw = await websocket.receive_text()
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                await websocket.send_json(_error("Malformed JSON"))
                continue
            if not isinstance(data, dict):
                await websocket.send_json(_error("Expected a JSON object"))
                continue

            message_type = data.get("type")
            logger.debug("[WS] %s received: type=%s", connection.id, message_type or "?")

            # --- JOIN: bind connection to a user and its personal room ---
            if message_type == ClientEvent.JOIN.value:
                user_id = data.get("userId")
                if not user_id or not isinstance(user_id, str):
                    await websocket.send_json(_error("userId is required"))
                    continue
                if token_user_id and user_id != token_user_id:
                    logger.warning(f"[WS] {connection.id} tried to join as {user_id}, token is for {token_user_id}")
                    await websocket.send_json(_error("Cannot join as another user"))
                    continue
                if services.users.get(user_id) is None:
                    await websocket.send_json(_error("Unknown user"))
                    continue

                limit = get_config().realtime.max_connections_per_user
                if (
                    limit > 0
                    and connection.user_id != user_id
                    and manager.user_connection_count(user_id) >= limit
                ):
                    logger.warning(f"[WS] {user_id} already has {limit} connection(s). Rejecting.")
                    await websocket.send_json(_error("Too many connections"))
                    await websocket.close(code=1008)
                    break

                manager.join_personal_room(connection.id, user_id)
                logger.info(f"[WS] {connection.id} joined as {user_id}")
                await services.presence.mark_online(user_id, connection.id)
                continue

            # Everything below needs a joined connection
            if message_type not in {e.value for e in ClientEvent}:
                await websocket.send_json(_error(f"Unknown message type: {message_type}"))
                continue
            if connection.user_id is None:
                await websocket.send_json(_error("Send join first"))
                continue

            # --- GROUP ROOMS ---
            if message_type in (ClientEvent.JOIN_GROUP.value, ClientEvent.LEAVE_GROUP.value):
                group_id = data.get("groupId")
                if not group_id or not isinstance(group_id, str):
                    await websocket.send_json(_error("groupId is required"))
                    continue
                if message_type == ClientEvent.JOIN_GROUP.value:
                    manager.join_group_room(connection.id, group_id)
                else:
                    manager.leave_group_room(connection.id, group_id)
                logger.debug(f"[WS] {connection.id} {message_type} {group_id}")
                continue

            # --- TYPING indicators ---
            # SECURITY: Use the joined userId
            if message_type in (ClientEvent.TYPING.value, ClientEvent.STOP_TYPING.value):
                conversation_id = data.get("conversationId")
                if not conversation_id or not isinstance(conversation_id, str):
                    await websocket.send_json(_error("conversationId is required"))
                    continue
                is_group = bool(data.get("isGroup", False))
                if message_type == ClientEvent.TYPING.value:
                    await services.signals.emit_typing(connection.user_id, conversation_id, is_group)
                else:
                    await services.signals.emit_stop_typing(connection.user_id, conversation_id, is_group)
                continue

            # --- DELIVERY confirmation ---
            # SECURITY: only the recipient of a direct message may confirm it;
            # the confirmation goes to the stored sender, not a client-provided one
            if message_type == ClientEvent.MESSAGE_DELIVERED.value:
                message_id = data.get("messageId")
                if not message_id or not isinstance(message_id, str):
                    await websocket.send_json(_error("messageId is required"))
                    continue
                try:
                    await services.messaging.confirm_delivery(message_id, connection.user_id)
                except AppError as e:
                    await websocket.send_json(_error(e.message))
                continue

    except WebSocketDisconnect:
        logger.info(f"[WS] Connection {connection.id} disconnected")
    finally:
        manager.disconnect(connection.id)
        if connection.user_id:
            # Any closed connection marks the user offline, even with other tabs open
            await services.presence.mark_offline(connection.user_id)
