"""Unit tests for RoomManager: lifecycle, messages, reactions, sweeps, reconnection.

Socket.IO is a MagicMock; grace and drain timers are fired through fake_eventlet.
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from pairchat.configurations.configuration_constants import (CloseReasons,
                                                             MessageKinds)
from pairchat.server.errors import (DuplicateRequestError, NotFoundError,
                                    ValidationError)
from pairchat.server.room_manager import RoomManager, RoomMember, RoomState
from pairchat.server.waiting_pool import WaitingEntry


def entry(handle, name, fingerprint=None, interests=None):
    return WaitingEntry(
        handle=handle,
        fingerprint=fingerprint or f"fp-{handle}",
        display_name=name,
        interests=interests or ["music"],
    )


@pytest.fixture
def on_room_closed():
    return MagicMock(name="on_room_closed")


@pytest.fixture
def on_member_left():
    return MagicMock(name="on_member_left")


@pytest.fixture
def persister():
    return MagicMock(name="persister")


@pytest.fixture
def forwarder():
    return MagicMock(name="forwarder")


@pytest.fixture
def manager(socketio, fake_eventlet, on_room_closed, on_member_left, persister, forwarder):
    return RoomManager(
        socketio,
        history_size=3,
        inactivity_timeout_s=600,
        inactivity_warning_lead_s=180,
        reconnect_grace_s=30,
        drain_grace_s=30,
        message_persister=persister,
        media_forwarder=forwarder,
        on_room_closed=on_room_closed,
        on_member_left=on_member_left,
    )


@pytest.fixture
def room(manager):
    return manager.create_room(entry("a", "Alice"), entry("b", "Bob"), match_type="random")


class TestCreateRoom:
    def test_room_is_active_with_both_members(self, manager, room):
        assert room.state == RoomState.ACTIVE
        assert set(room.members) == {"fp-a", "fp-b"}
        assert room.alias == "Alice-Bob"
        assert room.match_type == "random"
        assert manager.get_room(room.room_id) is room
        assert manager.room_for_member("fp-a") is room

    def test_room_ids_are_opaque_and_unique(self, manager, room):
        other = manager.create_room(entry("c", "Alice"), entry("d", "Bob"))
        assert other.room_id != room.room_id
        assert other.alias == room.alias
        assert [r.room_id for r in manager.find_by_alias("alice-bob")] == [room.room_id, other.room_id]

    def test_refuses_member_already_in_a_room(self, manager, room):
        with pytest.raises(DuplicateRequestError):
            manager.create_room(entry("a2", "Alice", fingerprint="fp-a"), entry("c", "Carol"))

    def test_refuses_same_fingerprint_pair(self, manager):
        with pytest.raises(DuplicateRequestError):
            manager.create_room(entry("x", "X", fingerprint="fp-x"), entry("y", "X", fingerprint="fp-x"))

    def test_room_holds_at_most_two(self, manager, room):
        assert not room.add_member(RoomMember(fingerprint="fp-c", display_name="Carol", handle="c"))
        assert len(room.members) == 2


class TestMessages:
    def test_message_broadcast_to_both_members(self, manager, room, emits):
        message = manager.post_message(room.room_id, "fp-a", MessageKinds.Text, "hi")

        for sid in ("a", "b"):
            records = emits("message", room=sid)
            assert len(records) == 1
            assert records[0]["message_id"] == message.message_id
            assert records[0]["username"] == "Alice"
            assert records[0]["payload"] == "hi"
            assert records[0]["reactions"] == {}

    def test_history_is_bounded(self, manager, room):
        for i in range(5):
            manager.post_message(room.room_id, "fp-a", MessageKinds.Text, f"m{i}")

        assert [m.payload for m in room.history] == ["m2", "m3", "m4"]

    def test_non_member_cannot_post(self, manager, room):
        with pytest.raises(NotFoundError):
            manager.post_message(room.room_id, "fp-stranger", MessageKinds.Text, "hi")
        with pytest.raises(NotFoundError):
            manager.post_message("no-such-room", "fp-a", MessageKinds.Text, "hi")

    def test_post_refreshes_activity_and_clears_warning(self, manager, room):
        room.last_activity_at = 0
        room.warned = True

        manager.post_message(room.room_id, "fp-a", MessageKinds.Text, "still here")

        assert room.last_activity_at > 0
        assert room.warned is False

    def test_persist_and_forward_media(self, manager, room, persister, forwarder):
        manager.post_message(room.room_id, "fp-a", MessageKinds.Text, "hi")
        manager.post_message(room.room_id, "fp-a", MessageKinds.Image, "data:image/png;base64,AAAA")

        assert persister.persist_message.call_count == 2
        assert persister.persist_message.call_args[0][0] == room.room_id
        forwarder.forward_media.assert_called_once_with(
            MessageKinds.Image, "data:image/png;base64,AAAA", "fp-a"
        )

    def test_collaborator_failure_does_not_block_delivery(self, manager, room, persister, emits):
        persister.persist_message.side_effect = OSError("disk full")

        manager.post_message(room.room_id, "fp-a", MessageKinds.Text, "hi")

        assert len(emits("message", room="b")) == 1

    def test_failing_member_does_not_block_partner(self, manager, room, socketio, emits):
        def emit(event, data=None, room=None, **kwargs):
            if room == "a":
                raise ConnectionError("socket gone")

        socketio.emit.side_effect = emit

        manager.post_message(room.room_id, "fp-a", MessageKinds.Text, "hi")

        assert len(emits("message", room="b")) == 1

    def test_messages_since(self, manager, room):
        first = manager.post_message(room.room_id, "fp-a", MessageKinds.Text, "one")
        second = manager.post_message(room.room_id, "fp-b", MessageKinds.Text, "two")
        second.timestamp = first.timestamp + 5

        assert [m["payload"] for m in manager.messages_since(room.room_id, "fp-a")] == ["one", "two"]
        assert [m["payload"] for m in manager.messages_since(room.room_id, "fp-a", first.timestamp)] == ["two"]


class TestReactions:
    def test_toggle_twice_restores_reactions(self, manager, room, emits):
        message = manager.post_message(room.room_id, "fp-a", MessageKinds.Text, "hi")

        assert manager.react_to_message(room.room_id, message.message_id, "👍", "fp-b") == {"👍": ["Bob"]}
        assert manager.react_to_message(room.room_id, message.message_id, "👍", "fp-b") == {}
        assert message.reactions == {}
        assert len(emits("reaction_update", room="a")) == 2

    def test_both_members_react(self, manager, room, emits):
        message = manager.post_message(room.room_id, "fp-a", MessageKinds.Text, "hi")

        manager.react_to_message(room.room_id, message.message_id, "❤", "fp-a")
        reactions = manager.react_to_message(room.room_id, message.message_id, "❤", "fp-b")

        assert reactions == {"❤": ["Alice", "Bob"]}
        assert emits("reaction_update", room="b")[-1] == {
            "room_id": room.room_id,
            "message_id": message.message_id,
            "reactions": {"❤": ["Alice", "Bob"]},
        }

    def test_same_named_members_react_separately(self, manager, emits):
        room = manager.create_room(entry("a", "Stranger"), entry("b", "Stranger"))
        message = manager.post_message(room.room_id, "fp-a", MessageKinds.Text, "hi")

        manager.react_to_message(room.room_id, message.message_id, "x", "fp-a")
        reactions = manager.react_to_message(room.room_id, message.message_id, "x", "fp-b")
        assert reactions == {"x": ["Stranger", "Stranger"]}

        reactions = manager.react_to_message(room.room_id, message.message_id, "x", "fp-b")
        assert reactions == {"x": ["Stranger"]}
        assert set(message.reactions["x"]) == {"fp-a"}

    def test_unknown_message(self, manager, room):
        with pytest.raises(NotFoundError):
            manager.react_to_message(room.room_id, "nope", "👍", "fp-a")

    def test_empty_tag_rejected(self, manager, room):
        message = manager.post_message(room.room_id, "fp-a", MessageKinds.Text, "hi")
        with pytest.raises(ValidationError):
            manager.react_to_message(room.room_id, message.message_id, "  ", "fp-a")


class TestUnsend:
    def test_sender_unsends(self, manager, room, emits):
        message = manager.post_message(room.room_id, "fp-a", MessageKinds.Text, "oops")
        manager.react_to_message(room.room_id, message.message_id, "😂", "fp-b")

        assert manager.unsend_message(room.room_id, message.message_id, "fp-a") is True

        kept = room.find_message(message.message_id)
        assert kept is message
        assert kept.unsent is True
        assert kept.payload is None
        assert kept.reactions == {}
        assert emits("message_unsent", room="b") == [
            {"room_id": room.room_id, "message_id": message.message_id}
        ]

    def test_unsend_is_idempotent(self, manager, room, emits):
        message = manager.post_message(room.room_id, "fp-a", MessageKinds.Text, "oops")
        manager.unsend_message(room.room_id, message.message_id, "fp-a")

        assert manager.unsend_message(room.room_id, message.message_id, "fp-a") is False
        assert len(emits("message_unsent", room="a")) == 1

    def test_only_sender_can_unsend(self, manager, room):
        message = manager.post_message(room.room_id, "fp-a", MessageKinds.Text, "mine")
        with pytest.raises(ValidationError):
            manager.unsend_message(room.room_id, message.message_id, "fp-b")
        assert message.unsent is False

    def test_cannot_react_to_unsent_message(self, manager, room):
        message = manager.post_message(room.room_id, "fp-a", MessageKinds.Text, "oops")
        manager.unsend_message(room.room_id, message.message_id, "fp-a")
        with pytest.raises(NotFoundError):
            manager.react_to_message(room.room_id, message.message_id, "👍", "fp-b")


class TestTyping:
    def test_typing_goes_to_partner_only(self, manager, room, emits):
        room.last_activity_at = 10.0

        manager.typing(room.room_id, "fp-a", True)

        assert emits("typing", room="b") == [{"name": "Alice", "is_typing": True}]
        assert emits("typing", room="a") == []
        assert room.last_activity_at == 10.0


class TestLeaveAndClose:
    def test_leave_drains_room_and_notifies_partner(self, manager, room, emits, fake_eventlet, on_member_left):
        manager.leave("fp-a")

        assert room.state == RoomState.DRAINING
        assert manager.room_for_member("fp-a") is None
        assert manager.room_for_member("fp-b") is room
        assert emits("user_left", room="b") == [{
            "room_id": room.room_id,
            "message": "Alice has left the chat. You will be returned to the queue shortly.",
        }]
        system = emits("message", room="b")[-1]
        assert system["kind"] == MessageKinds.System
        assert system["payload"] == "Alice has left the chat."
        assert len(fake_eventlet.pending("_expire_drain")) == 1
        on_member_left.assert_called_once()

    def test_drain_notice_without_requeue(self, manager, room, emits):
        manager.requeue_on_drain = False

        manager.leave("fp-a")

        assert emits("user_left", room="b")[0]["message"] == (
            "Alice has left the chat. This chat will close shortly."
        )

    def test_drain_timer_closes_and_releases_partner(self, manager, room, emits, fake_eventlet, on_room_closed):
        manager.leave("fp-a")

        fake_eventlet.run_pending("_expire_drain")

        assert room.state == RoomState.CLOSED
        assert manager.get_room(room.room_id) is None
        assert manager.room_for_member("fp-b") is None
        assert emits("room_closed", room="b") == [
            {"room_id": room.room_id, "reason": CloseReasons.PartnerLeft}
        ]
        closed_room, members, reason = on_room_closed.call_args[0]
        assert closed_room is room
        assert [m.fingerprint for m in members] == ["fp-b"]
        assert reason == CloseReasons.PartnerLeft

    def test_last_member_leaving_closes_room(self, manager, room, on_room_closed, emits):
        manager.leave("fp-a")
        manager.leave("fp-b")

        assert room.state == RoomState.CLOSED
        assert manager.rooms.snapshot() == {}
        assert emits("room_closed") == []
        assert on_room_closed.call_args[0][2] == CloseReasons.Empty

    def test_leave_without_room(self, manager):
        assert manager.leave("fp-nobody") is None

    def test_close_room_notifies_everyone(self, manager, room, emits):
        members = manager.close_room(room.room_id, CloseReasons.Admin)

        assert {m.fingerprint for m in members} == {"fp-a", "fp-b"}
        for sid in ("a", "b"):
            assert emits("room_closed", room=sid) == [
                {"room_id": room.room_id, "reason": CloseReasons.Admin}
            ]
        assert len(room.history) == 0
        with pytest.raises(NotFoundError):
            manager.close_room(room.room_id)


class TestInactivitySweep:
    def test_warns_once_then_closes(self, manager, room, emits):
        room.last_activity_at = 1000.0

        assert manager.sweep_inactive(now=1000.0 + 419) == ([], [])
        assert manager.sweep_inactive(now=1000.0 + 420) == ([room.room_id], [])
        assert manager.sweep_inactive(now=1000.0 + 500) == ([], [])
        assert len(emits("inactivity_warning", room="a")) == 1
        assert emits("inactivity_warning", room="b")[0]["seconds_remaining"] == 180

        assert manager.sweep_inactive(now=1000.0 + 600) == ([], [room.room_id])
        assert room.state == RoomState.CLOSED
        assert emits("room_closed", room="a")[0]["reason"] == CloseReasons.Inactivity

    def test_activity_rearms_warning(self, manager, room, emits):
        room.last_activity_at = 1000.0
        manager.sweep_inactive(now=1500.0)
        assert room.warned

        manager.post_message(room.room_id, "fp-b", MessageKinds.Text, "back")
        room.last_activity_at = 2000.0

        assert manager.sweep_inactive(now=2000.0 + 420) == ([room.room_id], [])
        assert len(emits("inactivity_warning", room="a")) == 2

    def test_sweep_loop_uses_background_task(self, manager, socketio):
        manager.start_sweep_loop()
        socketio.start_background_task.assert_called_once()


class TestReconnection:
    def test_reconnect_within_grace(self, manager, room, emits, fake_eventlet):
        manager.post_message(room.room_id, "fp-a", MessageKinds.Text, "before drop")

        assert manager.mark_disconnected("fp-a", "a") is room
        assert room.members["fp-a"].connected is False
        assert emits("partner_status", room="b")[-1]["status"] == "disconnected"

        rejoined, restored = manager.rejoin(room.room_id, "fp-a", "a2")

        assert rejoined is room and restored is False
        assert room.members["fp-a"].handle == "a2"
        payload = emits("room_rejoined", room="a2")[0]
        assert payload["partner_name"] == "Bob"
        assert [m["payload"] for m in payload["history"]] == ["before drop"]
        assert emits("partner_status", room="b")[-1]["status"] == "reconnected"

        # The old grace timer no longer applies
        fake_eventlet.run_pending("_expire_disconnect")
        assert room.state == RoomState.ACTIVE
        assert "fp-a" in room.members

    def test_grace_expiry_leaves_room(self, manager, room, emits, fake_eventlet):
        manager.mark_disconnected("fp-a", "a")

        fake_eventlet.run_pending("_expire_disconnect")

        assert room.state == RoomState.DRAINING
        assert "fp-a" not in room.members
        assert "fp-a" in room.departed
        assert len(emits("user_left", room="b")) == 1

    def test_dropped_member_can_rejoin_draining_room(self, manager, room, fake_eventlet, on_room_closed):
        manager.mark_disconnected("fp-a", "a")
        fake_eventlet.run_pending("_expire_disconnect")

        rejoined, restored = manager.rejoin(room.room_id, "fp-a", "a2")

        assert restored is True
        assert room.state == RoomState.ACTIVE
        assert manager.room_for_member("fp-a") is room

        fake_eventlet.run_pending("_expire_drain")
        assert room.state == RoomState.ACTIVE
        on_room_closed.assert_not_called()

    def test_voluntary_leaver_cannot_rejoin(self, manager, room):
        manager.leave("fp-a")
        with pytest.raises(NotFoundError):
            manager.rejoin(room.room_id, "fp-a", "a2")

    def test_stale_handle_disconnect_ignored(self, manager, room):
        manager.rejoin(room.room_id, "fp-a", "a2")

        assert manager.mark_disconnected("fp-a", "a") is None
        assert room.members["fp-a"].connected is True

    def test_rejoin_closed_room_fails(self, manager, room):
        manager.close_room(room.room_id)
        with pytest.raises(NotFoundError):
            manager.rejoin(room.room_id, "fp-a", "a2")

    def test_disconnected_member_gets_no_emits(self, manager, room, emits):
        manager.mark_disconnected("fp-a", "a")
        manager.post_message(room.room_id, "fp-b", MessageKinds.Text, "you there?")
        assert emits("message", room="a") == []


class TestSnapshot:
    def test_snapshot_lists_open_rooms(self, manager, room):
        snapshot = manager.snapshot()
        assert len(snapshot) == 1
        assert snapshot[0]["alias"] == "Alice-Bob"
        assert snapshot[0]["state"] == "ACTIVE"
        assert {m["display_name"] for m in snapshot[0]["members"]} == {"Alice", "Bob"}
