"""Turns match requests into rooms.

Flow for one client:

1. request_match(): validate, check the ban list, evict any stale entry for
   the same fingerprint, enqueue, and schedule attempt_match() after
   match_delay_s. The delay gives other clients time to arrive so interest
   matches have a chance before the random fallback.
2. attempt_match(): under the match lock, ask the Matchmaker for a partner,
   remove both entries from the pool in one step, and create the room.
3. After the lock is released, both clients get match_found.

Every pending attempt is a cancellable green thread keyed by handle, so
leaving the queue or being evicted stops it.
"""

from __future__ import annotations

import logging
import threading

import eventlet

from pairchat.configurations.configuration_constants import Defaults
from pairchat.server import collaborators, thread_safe_collections
from pairchat.server.errors import (BannedError, CollaboratorError,
                                    DuplicateRequestError, ValidationError)
from pairchat.server.matchmaker import InterestMatchmaker, Matchmaker
from pairchat.server.participant_state import (ParticipantState,
                                               ParticipantStateTracker)
from pairchat.server.room_manager import Room, RoomManager
from pairchat.server.waiting_pool import WaitingEntry, WaitingPool
from pairchat.utils.typing import ConnectionHandle, Fingerprint

logger = logging.getLogger(__name__)


class MatchCoordinator:
    def __init__(
        self,
        socketio,
        pool: WaitingPool,
        room_manager: RoomManager,
        tracker: ParticipantStateTracker,
        matchmaker: Matchmaker | None = None,
        moderation_store: collaborators.ModerationStore | None = None,
        match_delay_s: float = Defaults.MatchDelaySeconds,
        rescan_interval_s: float | None = None,
        ban_check_fail_open: bool = False,
        collaborator_timeout_s: float = Defaults.CollaboratorTimeoutSeconds,
        match_logger=None,
    ):
        self.socketio = socketio
        self.pool = pool
        self.room_manager = room_manager
        self.tracker = tracker
        self.matchmaker = matchmaker or InterestMatchmaker()
        self.moderation_store = moderation_store
        self.match_delay_s = match_delay_s
        self.rescan_interval_s = rescan_interval_s
        self.ban_check_fail_open = ban_check_fail_open
        self.collaborator_timeout_s = collaborator_timeout_s
        self.match_logger = match_logger

        # Held for the whole scan -> remove_pair -> create_room sequence
        self.match_lock = threading.Lock()

        # handle -> GreenThread for the scheduled attempt_match
        self.pending_attempts: dict[ConnectionHandle, object] = (
            thread_safe_collections.ThreadSafeDict()
        )

        self._rescanning = False

        logger.info(
            f"MatchCoordinator initialized with {self.matchmaker.__class__.__name__}, "
            f"match_delay_s={match_delay_s}, rescan_interval_s={rescan_interval_s}"
        )

    def _emit(self, event: str, data: dict, handle: ConnectionHandle) -> None:
        try:
            self.socketio.emit(event, data, room=handle)
        except Exception as e:
            logger.warning(f"[Match] Failed to emit {event} to {handle}: {e}")

    #####################
    # Request the match #
    #####################

    def check_banned(self, fingerprint: Fingerprint) -> bool:
        """Ask the moderation store whether this fingerprint is banned.

        Raises:
            CollaboratorError: The store failed or timed out and the relay is
                configured to fail closed.
        """
        if self.moderation_store is None:
            return False
        try:
            return bool(
                collaborators.call_with_timeout(
                    self.moderation_store.is_banned,
                    fingerprint,
                    timeout=self.collaborator_timeout_s,
                    description="is_banned",
                )
            )
        except CollaboratorError:
            if self.ban_check_fail_open:
                logger.warning(
                    f"[Match:BanCheck] Ban check unavailable for {fingerprint}. "
                    f"Failing open."
                )
                return False
            logger.warning(
                f"[Match:BanCheck] Ban check unavailable for {fingerprint}. "
                f"Failing closed."
            )
            raise

    def request_match(
        self,
        handle: ConnectionHandle,
        display_name: str,
        interests: list[str],
        fingerprint: Fingerprint,
    ) -> WaitingEntry | None:
        """Put a client in the pool and schedule a match attempt for it.

        Returns:
            The new WaitingEntry, or None if this handle was already queued.

        Raises:
            ValidationError: Missing fingerprint.
            BannedError: The fingerprint is banned.
            CollaboratorError: The ban check failed and the relay fails closed.
            DuplicateRequestError: The fingerprint is already in a room.
        """
        if not fingerprint or not isinstance(fingerprint, str):
            raise ValidationError("A client fingerprint is required to find a match")

        if self.check_banned(fingerprint):
            logger.info(f"[Match:Request] Rejected banned fingerprint {fingerprint}")
            raise BannedError("You have been banned from chatting")

        if self.tracker.is_in_room(fingerprint) or (
            self.room_manager.room_for_member(fingerprint) is not None
        ):
            raise DuplicateRequestError(f"{fingerprint} is already in a room")

        if self.pool.contains_handle(handle):
            logger.info(f"[Match:Request] {handle} is already waiting. Ignoring.")
            return None

        entry = WaitingEntry(
            handle=handle,
            fingerprint=fingerprint,
            display_name=display_name,
            interests=list(interests),
        )
        inserted, evicted = self.pool.enqueue(entry)
        if not inserted:
            return None

        for stale in evicted:
            self.cancel_pending(stale.handle)
            if stale.handle != handle:
                self._emit(
                    "duplicate_session",
                    {"message": "You started a chat search in another tab."},
                    stale.handle,
                )

        if not self.tracker.is_in_pool(fingerprint):
            self.tracker.transition_to(fingerprint, ParticipantState.IN_POOL)

        self._schedule_attempt(handle)
        self._emit(
            "queued",
            {"waiting": len(self.pool), "interests": entry.interests},
            handle,
        )
        return entry

    def _schedule_attempt(self, handle: ConnectionHandle) -> None:
        self.cancel_pending(handle)
        self.pending_attempts[handle] = eventlet.spawn_after(
            self.match_delay_s, self._run_scheduled_attempt, handle
        )
        logger.debug(
            f"[Match:Schedule] attempt_match({handle}) in {self.match_delay_s}s"
        )

    def _run_scheduled_attempt(self, handle: ConnectionHandle) -> None:
        self.pending_attempts.pop(handle, None)
        try:
            self.attempt_match(handle)
        except Exception:
            logger.exception(f"[Match:Attempt] Unexpected error matching {handle}")

    def cancel_pending(self, handle: ConnectionHandle) -> bool:
        pending = self.pending_attempts.pop(handle, None)
        if pending is None:
            return False
        pending.cancel()
        logger.debug(f"[Match:Cancel] Cancelled pending attempt for {handle}")
        return True

    #####################
    # Attempt the match #
    #####################

    def attempt_match(self, handle: ConnectionHandle) -> Room | None:
        """Try to pair one waiting handle.

        Safe to call any number of times: a handle that already left the pool
        or is already in a room is a no-op, and on failure the entry stays
        in the pool.
        """
        with self.match_lock:
            arriving = self.pool.get(handle)
            if arriving is None:
                logger.debug(f"[Match:Attempt] {handle} is no longer waiting.")
                return None
            if self.room_manager.room_for_member(arriving.fingerprint) is not None:
                logger.warning(
                    f"[Match:Attempt] {arriving.fingerprint} is waiting but already in "
                    f"a room. Removing stale pool entry."
                )
                self.pool.dequeue_by_handle(handle)
                return None

            result = self.matchmaker.find_partner(arriving, self.pool.snapshot())
            if result is None:
                logger.info(
                    f"[Match:Attempt] No partner yet for {arriving.display_name} "
                    f"({handle}). Pool size: {len(self.pool)}"
                )
                return None

            pair = self.pool.remove_pair(handle, result.partner.handle)
            if pair is None:
                logger.info(
                    f"[Match:Attempt] Partner {result.partner.handle} left before "
                    f"pairing with {handle}."
                )
                return None
            entry_a, entry_b = pair

            shared_interest = self.matchmaker.interest_matcher.shared_interests(
                entry_a.interests, entry_b.interests
            )
            try:
                room = self.room_manager.create_room(
                    entry_a,
                    entry_b,
                    match_type=result.match_type,
                    shared_interest=shared_interest,
                )
            except DuplicateRequestError as e:
                logger.error(f"[Match:Attempt] Could not create room: {e}. Re-queueing.")
                for entry in (entry_a, entry_b):
                    if self.room_manager.room_for_member(entry.fingerprint) is None:
                        self.pool.enqueue(entry)
                return None

            for entry in (entry_a, entry_b):
                self.tracker.transition_to(entry.fingerprint, ParticipantState.IN_ROOM)
            self.cancel_pending(entry_b.handle)

        logger.info(
            f"[Match:Found] {entry_a.display_name} <-> {entry_b.display_name} in room "
            f"{room.room_id} (match_type={result.match_type}, "
            f"shared_interest={shared_interest})"
        )

        for me, partner in ((entry_a, entry_b), (entry_b, entry_a)):
            self._emit(
                "match_found",
                {
                    "room_id": room.room_id,
                    "partner_name": partner.display_name,
                    "partner_fingerprint": partner.fingerprint,
                    "shared_interest": shared_interest,
                    "match_type": result.match_type,
                },
                me.handle,
            )

        if self.match_logger:
            self.match_logger.log_match(
                room_id=room.room_id,
                alias=room.alias,
                matched_entries=[entry_a, entry_b],
                match_type=result.match_type,
                shared_interest=shared_interest,
                matchmaker_class=self.matchmaker.__class__.__name__,
            )
        return room

    ###################
    # Leave the queue #
    ###################

    def leave_queue(self, handle: ConnectionHandle) -> WaitingEntry | None:
        self.cancel_pending(handle)
        entry = self.pool.dequeue_by_handle(handle)
        if entry is None:
            return None
        if self.tracker.is_in_pool(entry.fingerprint):
            self.tracker.transition_to(entry.fingerprint, ParticipantState.IDLE)
        return entry

    def remove_fingerprint(self, fingerprint: Fingerprint) -> list[WaitingEntry]:
        """Drop every pool entry for a fingerprint (ban, admin action)."""
        removed = self.pool.dequeue_by_fingerprint(fingerprint)
        for entry in removed:
            self.cancel_pending(entry.handle)
        if removed and self.tracker.is_in_pool(fingerprint):
            self.tracker.transition_to(fingerprint, ParticipantState.IDLE)
        return removed

    ##########
    # Rescan #
    ##########

    def rescan(self) -> list[Room]:
        """Retry every pooled handle, oldest first."""
        rooms = []
        for handle in self.pool.handles():
            room = self.attempt_match(handle)
            if room is not None:
                rooms.append(room)
        return rooms

    def start_rescan_loop(self) -> None:
        if not self.rescan_interval_s:
            return
        if self._rescanning:
            logger.warning("Rescan loop already running")
            return
        self._rescanning = True

        def _rescan_loop():
            logger.info(f"Pool rescan loop started (interval: {self.rescan_interval_s}s)")
            while self._rescanning:
                try:
                    self.rescan()
                except Exception as e:
                    logger.error(f"Error in pool rescan: {e}")
                self.socketio.sleep(self.rescan_interval_s)

        self.socketio.start_background_task(_rescan_loop)

    def stop_rescan_loop(self) -> None:
        self._rescanning = False
