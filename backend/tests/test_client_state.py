"""Tests for client view state, suppression and debouncing."""
import asyncio
import json

import pytest

from taskhub.client import ConversationListState, Debouncer, DeletedConversations, ThreadState, TypingTracker
from taskhub.messaging.schemas import ConversationSummaryView, MessageDetailView, Reaction, SeenEntry


def _message(mid, sender, recipient=None, group=None, created=1.0, content="hi"):
    return MessageDetailView(
        id=mid,
        senderId=sender,
        recipientId=recipient,
        groupId=group,
        isGroupMessage=group is not None,
        content=content,
        isRead=False,
        status="sent",
        createdAt=created,
    )


class TestConversationListState:
    def _state(self):
        state = ConversationListState()
        state.replace([
            ConversationSummaryView(conversationId="bob", isGroup=False, title="Bob", lastMessageTime=5.0, unreadCount=2),
            ConversationSummaryView(conversationId="g1", isGroup=True, title="Ops", lastMessageTime=9.0),
        ])
        return state

    def test_items_sorted_by_last_activity(self):
        assert [s.conversationId for s in self._state().items()] == ["g1", "bob"]

    def test_zero_unread(self):
        state = self._state()
        state.zero_unread("bob")
        state.zero_unread("missing")
        assert state.get("bob").unreadCount == 0
        assert state.total_unread() == 0

    def test_incoming_message_updates_summary(self):
        state = self._state()
        assert state.apply_message(_message("m1", "bob", "me", created=10.0, content="new"), "me", count_unread=True)
        summary = state.get("bob")
        assert summary.lastMessage == "new"
        assert summary.unreadCount == 3
        assert state.items()[0].conversationId == "bob"

    def test_own_message_never_counts_unread(self):
        state = self._state()
        state.apply_message(_message("m1", "me", "bob", created=10.0), "me", count_unread=True)
        assert state.get("bob").unreadCount == 2
        assert state.get("bob").isLastMessageFromMe is True

    def test_older_message_does_not_replace_last(self):
        state = self._state()
        state.apply_message(_message("m0", "bob", "me", created=1.0, content="old"), "me", count_unread=False)
        assert state.get("bob").lastMessage is None

    def test_unknown_conversation_reported(self):
        assert self._state().apply_message(_message("m1", "carol", "me"), "me", count_unread=True) is False


class TestThreadState:
    def test_dedup_and_order_by_created_at(self):
        thread = ThreadState("bob", is_group=False)
        thread.load([_message("b", "bob", "me", created=2.0)])
        assert thread.merge(_message("a", "me", "bob", created=1.0)) is True
        assert thread.merge(_message("b", "bob", "me", created=2.0, content="edited")) is False
        assert [m.id for m in thread.messages()] == ["a", "b"]
        assert len(thread) == 2

    def test_snapshot_merges_with_pushed_messages(self):
        thread = ThreadState("bob", is_group=False)
        thread.merge(_message("pushed", "bob", "me", created=3.0))
        thread.merge(_message("a", "bob", "me", created=1.0, content="stale"))

        thread.load([
            _message("a", "bob", "me", created=1.0, content="fresh"),
            _message("b", "me", "bob", created=2.0),
        ])

        assert [m.id for m in thread.messages()] == ["a", "b", "pushed"]
        assert thread.messages()[0].content == "fresh"

    def test_belongs(self):
        thread = ThreadState("bob", is_group=False)
        assert thread.belongs(_message("1", "bob", "me"), "me")
        assert thread.belongs(_message("2", "me", "bob"), "me")
        assert not thread.belongs(_message("3", "carol", "me"), "me")
        assert not thread.belongs(_message("4", "bob", group="bob"), "me")

    def test_reactions_and_seen_replace_state(self):
        thread = ThreadState("g1", is_group=True)
        thread.load([_message("m1", "bob", group="g1")])
        assert thread.apply_reactions("m1", [Reaction(userId="me", type="like", createdAt=1.0)])
        assert thread.apply_seen("m1", [SeenEntry(userId="me", seenAt=2.0)], "seen")
        assert not thread.apply_reactions("missing", [])
        message = thread.messages()[0]
        assert message.reactions[0].type == "like"
        assert message.status == "seen"


class TestTypingTracker:
    def test_typing_expires_without_renewal(self):
        now = {"t": 0.0}
        tracker = TypingTracker(timeout_seconds=4.0, clock=lambda: now["t"])
        tracker.start("bob", "bob")
        now["t"] = 3.9
        assert tracker.typing_users("bob") == ["bob"]
        now["t"] = 4.0
        assert tracker.typing_users("bob") == []

    def test_renewal_and_stop(self):
        now = {"t": 0.0}
        tracker = TypingTracker(timeout_seconds=4.0, clock=lambda: now["t"])
        tracker.start("g1", "bob")
        tracker.start("g1", "carol")
        now["t"] = 3.0
        tracker.start("g1", "bob")
        now["t"] = 5.0
        assert tracker.typing_users("g1") == ["bob"]
        tracker.stop("g1", "bob")
        assert tracker.typing_users("g1") == []


class TestDeletedConversations:
    def test_persists_per_user(self, tmp_path):
        path = tmp_path / "deleted.json"
        mine = DeletedConversations(path, "alice")
        mine.add("bob")
        DeletedConversations(path, "carol").add("dave")

        reloaded = DeletedConversations(path, "alice")
        assert "bob" in reloaded
        assert "dave" not in reloaded
        assert json.loads(path.read_text()) == {"alice": ["bob"], "carol": ["dave"]}

    def test_evict_on_new_activity(self, tmp_path):
        path = tmp_path / "deleted.json"
        suppressed = DeletedConversations(path, "alice")
        suppressed.add("bob")
        assert suppressed.evict("bob") is True
        assert suppressed.evict("bob") is False
        assert "bob" not in DeletedConversations(path, "alice")

    def test_corrupt_file_is_ignored(self, tmp_path):
        path = tmp_path / "deleted.json"
        path.write_text("{broken")
        assert DeletedConversations(path, "alice").ids() == set()


class TestDebouncer:
    @pytest.mark.asyncio
    async def test_burst_collapses_into_one_call(self):
        calls = []

        async def callback():
            calls.append(1)

        debouncer = Debouncer(0.05, callback)
        for _ in range(5):
            debouncer.trigger()
        await asyncio.sleep(0.15)
        assert calls == [1]

    @pytest.mark.asyncio
    async def test_flush_runs_immediately(self):
        calls = []

        async def callback():
            calls.append(1)

        debouncer = Debouncer(10.0, callback)
        debouncer.trigger()
        await debouncer.flush()
        assert calls == [1]
        assert debouncer.pending is False
