"""Realtime channel client with automatic reconnect.

Room membership does not survive a dropped connection, so every (re)connect
sends ``join`` for the signed-in user and ``joinGroup`` for the group that is
currently open. While reconnecting the client reports ``reconnecting``;
REST calls are unaffected.
"""
import asyncio
import inspect
import json
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union
from urllib.parse import urlencode

import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake

from taskhub.realtime.events import ClientEvent, ServerEvent

logger = logging.getLogger(__name__)

Handler = Callable[[Dict[str, Any]], Union[None, Awaitable[None]]]


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


class RealtimeClient:
    """One persistent WebSocket per signed-in client.

    Args:
        url: WebSocket URL, e.g. ``ws://localhost:8000/ws``.
        user_id: Signed-in user; joined on every connect.
        token: Optional bearer token, sent as the ``token`` query parameter.
        connector: Coroutine function opening a connection
            (defaults to ``websockets.connect``).
        reconnect_delay: First retry delay in seconds; doubles up to
            ``reconnect_delay_max``.
    """

    def __init__(
        self,
        url: str,
        user_id: str,
        token: Optional[str] = None,
        connector: Callable[[str], Awaitable[Any]] = websockets.connect,
        reconnect_delay: float = 1.0,
        reconnect_delay_max: float = 5.0,
    ) -> None:
        self._url = f"{url}?{urlencode({'token': token})}" if token else url
        self.user_id = user_id
        self._connector = connector
        self._reconnect_delay = reconnect_delay
        self._reconnect_delay_max = reconnect_delay_max

        self._handlers: Dict[str, List[Handler]] = {}
        self._state_listeners: List[Callable[[ConnectionState], None]] = []
        self._ws: Optional[Any] = None
        self._task: Optional[asyncio.Task] = None
        self._stopping = False
        self.state = ConnectionState.DISCONNECTED
        self.active_group: Optional[str] = None
        self.connect_count = 0

    # =========================================================================
    # Subscriptions
    # =========================================================================

    def on(self, event: Union[ServerEvent, str], handler: Handler) -> None:
        name = event.value if isinstance(event, ServerEvent) else event
        self._handlers.setdefault(name, []).append(handler)

    def on_state_change(self, listener: Callable[[ConnectionState], None]) -> None:
        self._state_listeners.append(listener)

    def _set_state(self, state: ConnectionState) -> None:
        if state == self.state:
            return
        self.state = state
        logger.info(f"[Client] Realtime {state.value}")
        for listener in self._state_listeners:
            listener(state)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._stopping = False
            self._task = asyncio.ensure_future(self._run())

    async def stop(self) -> None:
        self._stopping = True
        if self._ws is not None:
            await self._ws.close()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._ws = None
        self._set_state(ConnectionState.DISCONNECTED)

    async def _run(self) -> None:
        delay = self._reconnect_delay
        while not self._stopping:
            self._set_state(
                ConnectionState.CONNECTING if self.connect_count == 0 else ConnectionState.RECONNECTING
            )
            try:
                self._ws = await self._connector(self._url)
                self.connect_count += 1
                await self._on_connected()
                delay = self._reconnect_delay
                async for raw in self._ws:
                    await self._dispatch(raw)
            except (ConnectionClosed, InvalidHandshake, OSError, asyncio.TimeoutError) as e:
                logger.warning(f"[Client] Realtime connection lost: {e!r}")
            except Exception as e:
                # anything else still goes through backoff; only cancellation stops the loop
                logger.exception(f"[Client] Realtime connection failed: {e!r}")
            finally:
                self._ws = None
            if self._stopping:
                break
            self._set_state(ConnectionState.RECONNECTING)
            await asyncio.sleep(delay)
            delay = min(delay * 2, self._reconnect_delay_max)

    async def _on_connected(self) -> None:
        # rooms are per connection; re-establish them every time
        await self._send(ClientEvent.JOIN, {"userId": self.user_id})
        if self.active_group:
            await self._send(ClientEvent.JOIN_GROUP, {"groupId": self.active_group})
        self._set_state(ConnectionState.CONNECTED)

    async def _dispatch(self, raw: Union[str, bytes]) -> None:
        try:
            data = json.loads(raw)
        except (TypeError, ValueError):
            logger.debug(f"[Client] Ignoring malformed frame: {raw!r}")
            return
        if not isinstance(data, dict):
            return
        event = data.pop("type", None)
        if event == ServerEvent.ERROR.value:
            logger.warning(f"[Client] Server error: {data.get('error')}")
        for handler in self._handlers.get(event, []):
            try:
                result = handler(data)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.exception(f"[Client] Handler for {event} failed: {e}")

    # =========================================================================
    # Outgoing
    # =========================================================================

    async def _send(self, event: ClientEvent, payload: Dict[str, Any]) -> bool:
        """Best-effort send; returns False while disconnected."""
        if self._ws is None:
            return False
        try:
            await self._ws.send(json.dumps({"type": event.value, **payload}))
            return True
        except ConnectionClosed:
            return False

    async def join_group(self, group_id: str) -> None:
        """Remember the open group and join its room (now, and after reconnects)."""
        if self.active_group and self.active_group != group_id:
            await self.leave_group(self.active_group)
        self.active_group = group_id
        await self._send(ClientEvent.JOIN_GROUP, {"groupId": group_id})

    async def leave_group(self, group_id: str) -> None:
        if self.active_group == group_id:
            self.active_group = None
        await self._send(ClientEvent.LEAVE_GROUP, {"groupId": group_id})

    async def typing(self, conversation_id: str, is_group: bool) -> bool:
        return await self._send(
            ClientEvent.TYPING,
            {"userId": self.user_id, "conversationId": conversation_id, "isGroup": is_group},
        )

    async def stop_typing(self, conversation_id: str, is_group: bool) -> bool:
        return await self._send(
            ClientEvent.STOP_TYPING,
            {"userId": self.user_id, "conversationId": conversation_id, "isGroup": is_group},
        )

    async def delivered(self, message_id: str, sender_id: str) -> bool:
        return await self._send(
            ClientEvent.MESSAGE_DELIVERED, {"messageId": message_id, "senderId": sender_id}
        )
