"""Tests for the connection manager, presence registry and signal channel."""
import pytest

from taskhub.realtime import ConnectionManager, PresenceRegistry, ServerEvent, SignalChannel

from conftest import FakeWebSocket


async def _join(manager: ConnectionManager, user_id: str, fail: bool = False) -> tuple:
    ws = FakeWebSocket(fail=fail)
    connection = await manager.connect(ws)
    manager.join_personal_room(connection.id, user_id)
    return connection, ws


class TestRooms:
    @pytest.mark.asyncio
    async def test_personal_room_reaches_every_tab(self):
        manager = ConnectionManager()
        _, tab1 = await _join(manager, "alice")
        _, tab2 = await _join(manager, "alice")
        _, other = await _join(manager, "bob")

        delivered = await manager.publish("user:alice", ServerEvent.NEW_MESSAGE, {"senderId": "bob"})

        assert delivered == 2
        assert tab1.events("newMessage") == [{"type": "newMessage", "senderId": "bob"}]
        assert tab2.events("newMessage") == tab1.events("newMessage")
        assert other.events("newMessage") == []

    @pytest.mark.asyncio
    async def test_join_personal_room_is_idempotent(self):
        manager = ConnectionManager()
        connection, _ = await _join(manager, "alice")
        manager.join_personal_room(connection.id, "alice")
        assert manager.user_connection_count("alice") == 1

    @pytest.mark.asyncio
    async def test_rejoin_as_other_user_leaves_old_room(self):
        manager = ConnectionManager()
        connection, _ = await _join(manager, "alice")
        manager.join_personal_room(connection.id, "bob")
        assert manager.user_connection_count("alice") == 0
        assert manager.user_connection_count("bob") == 1

    @pytest.mark.asyncio
    async def test_group_room_only_reaches_viewers(self):
        manager = ConnectionManager()
        viewing, viewer_ws = await _join(manager, "alice")
        _, idle_ws = await _join(manager, "bob")
        manager.join_group_room(viewing.id, "g1")

        await manager.publish("group:g1", ServerEvent.NEW_GROUP_MESSAGE, {"groupId": "g1"})

        assert len(viewer_ws.events("newGroupMessage")) == 1
        assert idle_ws.events("newGroupMessage") == []

    @pytest.mark.asyncio
    async def test_leave_group_room_stops_delivery(self):
        manager = ConnectionManager()
        connection, ws = await _join(manager, "alice")
        manager.join_group_room(connection.id, "g1")
        manager.leave_group_room(connection.id, "g1")

        assert await manager.publish("group:g1", ServerEvent.NEW_GROUP_MESSAGE, {}) == 0
        assert manager.get_room_size("group:g1") == 0
        assert ws.events("newGroupMessage") == []

    @pytest.mark.asyncio
    async def test_disconnect_clears_all_rooms(self):
        manager = ConnectionManager()
        connection, _ = await _join(manager, "alice")
        manager.join_group_room(connection.id, "g1")

        removed = manager.disconnect(connection.id)

        assert removed is connection
        assert manager.rooms == {}
        assert manager.disconnect(connection.id) is None

    @pytest.mark.asyncio
    async def test_dead_connection_is_removed_on_publish(self):
        manager = ConnectionManager()
        _, good = await _join(manager, "alice")
        dead, _ = await _join(manager, "alice", fail=True)

        delivered = await manager.publish("user:alice", ServerEvent.USER_ONLINE, {"userId": "bob"})

        assert delivered == 1
        assert manager.get(dead.id) is None
        assert manager.user_connection_count("alice") == 1
        assert len(good.events("userOnline")) == 1

    @pytest.mark.asyncio
    async def test_publish_excluding_user(self):
        manager = ConnectionManager()
        alice_conn, alice_ws = await _join(manager, "alice")
        bob_conn, bob_ws = await _join(manager, "bob")
        manager.join_group_room(alice_conn.id, "g1")
        manager.join_group_room(bob_conn.id, "g1")

        await manager.publish("group:g1", ServerEvent.USER_TYPING, {"userId": "alice"}, exclude_user="alice")

        assert alice_ws.events("userTyping") == []
        assert len(bob_ws.events("userTyping")) == 1


class TestPresence:
    @pytest.mark.asyncio
    async def test_unknown_user_is_offline(self):
        presence = PresenceRegistry(ConnectionManager())
        status = presence.get_status("ghost")
        assert status.online is False
        assert status.lastSeen is None

    @pytest.mark.asyncio
    async def test_transitions_broadcast_to_everyone(self):
        manager = ConnectionManager()
        presence = PresenceRegistry(manager, clock=lambda: 1700000000.0)
        _, watcher = await _join(manager, "bob")

        await presence.mark_online("alice")
        await presence.mark_offline("alice")

        assert watcher.events("userOnline") == [
            {"type": "userOnline", "userId": "alice", "status": "online"}
        ]
        assert watcher.events("userOffline") == [
            {"type": "userOffline", "userId": "alice", "status": "offline", "lastSeen": 1700000000.0}
        ]
        status = presence.get_status("alice")
        assert status.online is False
        assert status.lastSeen == 1700000000.0

    @pytest.mark.asyncio
    async def test_last_transition_wins_with_several_tabs(self):
        presence = PresenceRegistry(ConnectionManager())
        await presence.mark_online("alice")
        await presence.mark_online("alice")
        await presence.mark_offline("alice")
        assert presence.get_status("alice").online is False
        assert presence.online_user_ids() == []

    @pytest.mark.asyncio
    async def test_broadcast_failure_is_swallowed(self):
        class Exploding:
            async def publish_all(self, event, payload):
                raise RuntimeError("boom")

        presence = PresenceRegistry(Exploding())
        await presence.mark_online("alice")
        assert presence.get_status("alice").online is True


class TestSignals:
    @pytest.mark.asyncio
    async def test_direct_typing_targets_counterpart_only(self):
        manager = ConnectionManager()
        signals = SignalChannel(manager)
        _, alice_ws = await _join(manager, "alice")
        _, bob_ws = await _join(manager, "bob")

        await signals.emit_typing("alice", "bob", is_group=False)
        await signals.emit_stop_typing("alice", "bob", is_group=False)

        assert [e["type"] for e in bob_ws.sent] == ["userTyping", "userStoppedTyping"]
        assert bob_ws.sent[0]["userId"] == "alice"
        assert bob_ws.sent[0]["conversationId"] == "bob"
        assert alice_ws.sent == []

    @pytest.mark.asyncio
    async def test_group_typing_skips_all_sender_tabs(self):
        manager = ConnectionManager()
        signals = SignalChannel(manager)
        tab1, tab1_ws = await _join(manager, "alice")
        tab2, tab2_ws = await _join(manager, "alice")
        bob, bob_ws = await _join(manager, "bob")
        for conn in (tab1, tab2, bob):
            manager.join_group_room(conn.id, "g1")

        await signals.emit_typing("alice", "g1", is_group=True)

        assert tab1_ws.sent == [] and tab2_ws.sent == []
        assert bob_ws.events("userTyping")[0]["conversationId"] == "g1"

    @pytest.mark.asyncio
    async def test_direct_reaction_reaches_actor_tabs_and_counterpart(self):
        manager = ConnectionManager()
        signals = SignalChannel(manager)
        _, alice_ws = await _join(manager, "alice")
        _, bob_ws = await _join(manager, "bob")
        reactions = [{"userId": "alice", "type": "like", "createdAt": 1.0}]

        await signals.emit_reaction_changed(
            "m1", reactions, actor_id="alice", reaction_type="like", conversation_id="bob", is_group=False
        )

        expected = {
            "type": "messageReaction",
            "messageId": "m1",
            "reactions": reactions,
            "userId": "alice",
            "reactionType": "like",
        }
        assert bob_ws.events("messageReaction") == [expected]
        assert alice_ws.events("messageReaction") == [expected]

    @pytest.mark.asyncio
    async def test_group_seen_goes_to_group_room_once(self):
        manager = ConnectionManager()
        signals = SignalChannel(manager)
        conn, alice_ws = await _join(manager, "alice")
        manager.join_group_room(conn.id, "g1")

        await signals.emit_seen("m1", [], "seen", actor_id="alice", conversation_id="g1", is_group=True)

        assert len(alice_ws.events("messageSeen")) == 1

    @pytest.mark.asyncio
    async def test_delivered_confirmation_goes_to_sender(self):
        manager = ConnectionManager()
        signals = SignalChannel(manager)
        _, alice_ws = await _join(manager, "alice")

        await signals.emit_delivered("m1", "alice")

        assert alice_ws.events("messageDeliveredConfirm") == [
            {"type": "messageDeliveredConfirm", "messageId": "m1"}
        ]

    @pytest.mark.asyncio
    async def test_emit_failure_is_swallowed(self):
        class Exploding:
            async def publish(self, *args, **kwargs):
                raise RuntimeError("boom")

        await SignalChannel(Exploding()).emit_typing("alice", "bob", is_group=False)
