"""Participant lifecycle state tracking.

One state per fingerprint. The tracker is the single answer to "is this
client waiting, chatting, or neither", which keeps pool membership and room
membership mutually exclusive.
"""

from __future__ import annotations

import logging
import threading
from enum import Enum, auto

from pairchat.utils.typing import Fingerprint

logger = logging.getLogger(__name__)


class ParticipantState(Enum):
    """Participant lifecycle states.

    - IDLE: Connected (or not) but neither waiting nor chatting
    - IN_POOL: Waiting to be matched
    - IN_ROOM: Member of a room (possibly disconnected within the grace window)
    """
    IDLE = auto()
    IN_POOL = auto()
    IN_ROOM = auto()


VALID_TRANSITIONS = {
    ParticipantState.IDLE: {
        ParticipantState.IN_POOL,  # Request match
        ParticipantState.IN_ROOM,  # Rejoin a draining room after a dropped connection
    },
    ParticipantState.IN_POOL: {
        ParticipantState.IN_ROOM,  # Paired
        ParticipantState.IDLE,     # Leave queue, disconnect, eviction
    },
    ParticipantState.IN_ROOM: {ParticipantState.IDLE},  # Leave, close, grace expiry
}


class ParticipantStateTracker:
    """Tracks participant lifecycle states keyed by fingerprint."""

    def __init__(self):
        self._states: dict[Fingerprint, ParticipantState] = {}
        self._lock = threading.RLock()

    def get_state(self, fingerprint: Fingerprint) -> ParticipantState:
        """Current state, IDLE if not tracked."""
        with self._lock:
            return self._states.get(fingerprint, ParticipantState.IDLE)

    def transition_to(self, fingerprint: Fingerprint, new_state: ParticipantState) -> bool:
        """Validate and apply state transition.

        Returns:
            True if transition successful, False if invalid
        """
        with self._lock:
            current_state = self.get_state(fingerprint)
            valid_targets = VALID_TRANSITIONS.get(current_state, set())

            if new_state not in valid_targets:
                logger.error(
                    f"[ParticipantState] Invalid transition for {fingerprint}: "
                    f"{current_state.name} -> {new_state.name}. "
                    f"Valid transitions: {[s.name for s in valid_targets]}"
                )
                return False

            if new_state == ParticipantState.IDLE:
                self._states.pop(fingerprint, None)
            else:
                self._states[fingerprint] = new_state
        logger.info(
            f"[ParticipantState] {fingerprint}: {current_state.name} -> {new_state.name}"
        )
        return True

    def reset(self, fingerprint: Fingerprint) -> None:
        """Remove participant from tracking (returns to implicit IDLE)."""
        with self._lock:
            old_state = self._states.pop(fingerprint, None)
        if old_state is not None:
            logger.info(
                f"[ParticipantState] {fingerprint}: reset from {old_state.name} to IDLE"
            )

    def is_in_pool(self, fingerprint: Fingerprint) -> bool:
        return self.get_state(fingerprint) == ParticipantState.IN_POOL

    def is_in_room(self, fingerprint: Fingerprint) -> bool:
        return self.get_state(fingerprint) == ParticipantState.IN_ROOM

    def counts(self) -> dict[str, int]:
        with self._lock:
            states = list(self._states.values())
        return {
            state.name: sum(1 for s in states if s == state)
            for state in (ParticipantState.IN_POOL, ParticipantState.IN_ROOM)
        }
