"""RealtimeClient reconnect and dispatch behaviour with a fake connector."""
import asyncio
import json
from typing import Any, Dict, List, Optional

import pytest

from taskhub.client import ConnectionState, RealtimeClient


class FakeSocket:
    def __init__(self) -> None:
        self.sent: List[Dict[str, Any]] = []
        self.closed = False
        self._incoming: "asyncio.Queue[Any]" = asyncio.Queue()

    async def send(self, data: str) -> None:
        self.sent.append(json.loads(data))

    async def close(self) -> None:
        self.closed = True
        self._incoming.put_nowait(None)

    def push(self, frame: Any) -> None:
        self._incoming.put_nowait(frame)

    def drop(self) -> None:
        self._incoming.put_nowait(OSError("connection reset"))

    def __aiter__(self):
        return self

    async def __anext__(self) -> Any:
        item = await self._incoming.get()
        if item is None:
            raise StopAsyncIteration
        if isinstance(item, Exception):
            raise item
        return item


class FakeConnector:
    def __init__(self, failures: int = 0, error: Optional[Exception] = None) -> None:
        self.sockets: List[FakeSocket] = []
        self.urls: List[str] = []
        self._failures = failures
        self._error = error or OSError("connection refused")

    async def __call__(self, url: str) -> FakeSocket:
        self.urls.append(url)
        if self._failures:
            self._failures -= 1
            raise self._error
        socket = FakeSocket()
        self.sockets.append(socket)
        return socket


async def wait_for(predicate, timeout: float = 1.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.005)


def _client(connector: FakeConnector, **kwargs) -> RealtimeClient:
    return RealtimeClient(
        "ws://testserver/ws",
        "alice",
        connector=connector,
        reconnect_delay=0.01,
        reconnect_delay_max=0.02,
        **kwargs,
    )


class TestReconnect:
    @pytest.mark.asyncio
    async def test_joins_personal_room_on_connect(self):
        connector = FakeConnector()
        client = _client(connector, token="abc")
        client.start()
        await wait_for(lambda: client.state == ConnectionState.CONNECTED)

        assert connector.urls == ["ws://testserver/ws?token=abc"]
        assert connector.sockets[0].sent == [{"type": "join", "userId": "alice"}]
        await client.stop()

    @pytest.mark.asyncio
    async def test_reconnect_rejoins_personal_and_group_rooms(self):
        connector = FakeConnector()
        client = _client(connector)
        states = []
        client.on_state_change(states.append)
        client.start()
        await wait_for(lambda: client.state == ConnectionState.CONNECTED)
        await client.join_group("g1")

        connector.sockets[0].drop()
        await wait_for(lambda: len(connector.sockets) == 2 and client.state == ConnectionState.CONNECTED)

        assert connector.sockets[1].sent == [
            {"type": "join", "userId": "alice"},
            {"type": "joinGroup", "groupId": "g1"},
        ]
        assert client.connect_count == 2
        assert states == [
            ConnectionState.CONNECTING,
            ConnectionState.CONNECTED,
            ConnectionState.RECONNECTING,
            ConnectionState.CONNECTED,
        ]
        await client.stop()
        assert client.state == ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_retries_until_connect_succeeds(self):
        connector = FakeConnector(failures=2)
        client = _client(connector)
        client.start()
        await wait_for(lambda: client.state == ConnectionState.CONNECTED)

        assert len(connector.urls) == 3
        assert len(connector.sockets) == 1
        await client.stop()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [asyncio.TimeoutError(), RuntimeError("handshake parser bug")])
    async def test_any_connect_failure_keeps_retrying(self, error):
        connector = FakeConnector(failures=2, error=error)
        client = _client(connector)
        client.start()
        await wait_for(lambda: client.state == ConnectionState.CONNECTED)

        assert len(connector.urls) == 3
        assert connector.sockets[0].sent == [{"type": "join", "userId": "alice"}]
        await client.stop()

    @pytest.mark.asyncio
    async def test_left_group_not_rejoined(self):
        connector = FakeConnector()
        client = _client(connector)
        client.start()
        await wait_for(lambda: client.state == ConnectionState.CONNECTED)
        await client.join_group("g1")
        await client.leave_group("g1")

        connector.sockets[0].drop()
        await wait_for(lambda: len(connector.sockets) == 2 and client.state == ConnectionState.CONNECTED)

        assert connector.sockets[1].sent == [{"type": "join", "userId": "alice"}]
        await client.stop()


class TestOutgoing:
    @pytest.mark.asyncio
    async def test_send_while_disconnected_is_dropped(self):
        client = _client(FakeConnector())
        assert await client.typing("bob", is_group=False) is False

    @pytest.mark.asyncio
    async def test_switching_groups_leaves_previous(self):
        connector = FakeConnector()
        client = _client(connector)
        client.start()
        await wait_for(lambda: client.state == ConnectionState.CONNECTED)

        await client.join_group("g1")
        await client.join_group("g2")
        await client.delivered("m1", "bob")

        assert connector.sockets[0].sent[1:] == [
            {"type": "joinGroup", "groupId": "g1"},
            {"type": "leaveGroup", "groupId": "g1"},
            {"type": "joinGroup", "groupId": "g2"},
            {"type": "messageDelivered", "messageId": "m1", "senderId": "bob"},
        ]
        assert client.active_group == "g2"
        await client.stop()


class TestDispatch:
    @pytest.mark.asyncio
    async def test_handlers_receive_payload_without_type(self):
        connector = FakeConnector()
        client = _client(connector)
        received = []

        async def on_async(payload):
            received.append(("async", payload))

        client.on("userOnline", lambda payload: received.append(("sync", payload)))
        client.on("userOnline", on_async)
        client.start()
        await wait_for(lambda: client.state == ConnectionState.CONNECTED)

        connector.sockets[0].push(json.dumps({"type": "userOnline", "userId": "bob", "status": "online"}))
        await wait_for(lambda: len(received) == 2)

        assert received == [
            ("sync", {"userId": "bob", "status": "online"}),
            ("async", {"userId": "bob", "status": "online"}),
        ]
        await client.stop()

    @pytest.mark.asyncio
    async def test_bad_frames_and_failing_handlers_do_not_break_loop(self):
        connector = FakeConnector()
        client = _client(connector)
        received = []

        def broken(payload):
            raise RuntimeError("boom")

        client.on("userOffline", broken)
        client.on("userOffline", received.append)
        client.start()
        await wait_for(lambda: client.state == ConnectionState.CONNECTED)

        socket = connector.sockets[0]
        socket.push("not json")
        socket.push(json.dumps(["not", "an", "object"]))
        socket.push(json.dumps({"type": "userOffline", "userId": "bob"}))
        await wait_for(lambda: received)

        assert received == [{"userId": "bob"}]
        assert len(connector.sockets) == 1
        await client.stop()
