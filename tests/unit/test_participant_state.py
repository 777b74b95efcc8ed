"""Unit tests for ParticipantStateTracker transitions."""

from __future__ import annotations

from pairchat.server.participant_state import (ParticipantState,
                                               ParticipantStateTracker)


class TestParticipantStateTracker:
    def test_untracked_is_idle(self):
        tracker = ParticipantStateTracker()
        assert tracker.get_state("fp") == ParticipantState.IDLE

    def test_pool_to_room_to_idle(self):
        tracker = ParticipantStateTracker()

        assert tracker.transition_to("fp", ParticipantState.IN_POOL)
        assert tracker.is_in_pool("fp")
        assert tracker.transition_to("fp", ParticipantState.IN_ROOM)
        assert tracker.is_in_room("fp")
        assert tracker.transition_to("fp", ParticipantState.IDLE)
        assert tracker.get_state("fp") == ParticipantState.IDLE

    def test_room_to_pool_is_invalid(self):
        tracker = ParticipantStateTracker()
        tracker.transition_to("fp", ParticipantState.IN_POOL)
        tracker.transition_to("fp", ParticipantState.IN_ROOM)

        assert not tracker.transition_to("fp", ParticipantState.IN_POOL)
        assert tracker.is_in_room("fp")

    def test_pool_to_pool_is_invalid(self):
        tracker = ParticipantStateTracker()
        tracker.transition_to("fp", ParticipantState.IN_POOL)
        assert not tracker.transition_to("fp", ParticipantState.IN_POOL)

    def test_idle_to_room_for_rejoin(self):
        tracker = ParticipantStateTracker()
        assert tracker.transition_to("fp", ParticipantState.IN_ROOM)

    def test_reset_and_counts(self):
        tracker = ParticipantStateTracker()
        tracker.transition_to("a", ParticipantState.IN_POOL)
        tracker.transition_to("b", ParticipantState.IN_POOL)
        tracker.transition_to("b", ParticipantState.IN_ROOM)

        assert tracker.counts() == {"IN_POOL": 1, "IN_ROOM": 1}

        tracker.reset("b")
        tracker.reset("never-seen")
        assert tracker.counts() == {"IN_POOL": 1, "IN_ROOM": 0}
