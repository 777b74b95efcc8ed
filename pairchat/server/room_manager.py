"""Room lifecycle: creation, membership, history, reactions, sweeps and grace timers.

Rooms move FORMING -> ACTIVE -> DRAINING -> CLOSED:

- FORMING: created by a match, both members about to join
- ACTIVE: at least one connected member, activity refreshed on each message
- DRAINING: a member left; the survivor was told they will be requeued
  and a drain timer runs. A member who dropped (rather than left) may rejoin
  during the window, returning the room to ACTIVE.
- CLOSED: terminal; history dropped and the room removed from the index.

Timers (reconnect grace, drain grace) are never cancelled directly. Each
carries a token; when it fires it checks the token is still current and
does nothing otherwise, which is equivalent to cancellation.

No socket emits happen while a room lock is held.
"""

from __future__ import annotations

import collections
import dataclasses
import logging
import threading
import time
import uuid
from enum import Enum, auto
from typing import Any, Callable

import eventlet

from pairchat.configurations.configuration_constants import (
    MEDIA_MESSAGE_KINDS, SYSTEM_SENDER, CloseReasons, Defaults, MessageKinds)
from pairchat.server import collaborators, thread_safe_collections
from pairchat.server.errors import (DuplicateRequestError, NotFoundError,
                                    ValidationError)
from pairchat.server.waiting_pool import WaitingEntry
from pairchat.utils.typing import (ConnectionHandle, Fingerprint, MessageID,
                                   RoomID)

logger = logging.getLogger(__name__)

MAX_ROOM_MEMBERS = 2
MAX_REACTION_TAG_LENGTH = 32


class RoomState(Enum):
    FORMING = auto()
    ACTIVE = auto()
    DRAINING = auto()
    CLOSED = auto()


@dataclasses.dataclass
class RoomMember:
    fingerprint: Fingerprint
    display_name: str
    handle: ConnectionHandle | None
    interests: list[str] = dataclasses.field(default_factory=list)
    connected: bool = True
    disconnect_token: int = 0
    joined_at: float = dataclasses.field(default_factory=time.time)


@dataclasses.dataclass
class ChatMessage:
    """A message in a room's recent history.

    reactions maps a reaction tag (e.g. an emoji) to the members who reacted
    with it, keyed by fingerprint so two members sharing a display name stay
    distinct. Tags with no reactors are removed.
    """

    message_id: MessageID
    sender_fingerprint: Fingerprint
    sender_name: str
    kind: str
    payload: Any
    timestamp: float = dataclasses.field(default_factory=time.time)
    # tag -> {reactor fingerprint: reactor display name}
    reactions: dict[str, dict[Fingerprint, str]] = dataclasses.field(default_factory=dict)
    unsent: bool = False

    def toggle_reaction(self, tag: str, reactor: Fingerprint, reactor_name: str) -> None:
        reactors = self.reactions.setdefault(tag, {})
        if reactor in reactors:
            del reactors[reactor]
        else:
            reactors[reactor] = reactor_name
        if not reactors:
            del self.reactions[tag]

    def reactions_dict(self) -> dict[str, list[str]]:
        return {tag: sorted(reactors.values()) for tag, reactors in self.reactions.items()}

    def to_dict(self) -> dict:
        return {
            "message_id": self.message_id,
            "sender_fingerprint": self.sender_fingerprint,
            "username": self.sender_name,
            "kind": self.kind,
            "payload": self.payload,
            "timestamp": self.timestamp,
            "reactions": self.reactions_dict(),
            "unsent": self.unsent,
        }


class Room:
    """A two-party chat session. Mutate only through RoomManager."""

    VALID_TRANSITIONS = {
        RoomState.FORMING: {RoomState.ACTIVE, RoomState.CLOSED},
        RoomState.ACTIVE: {RoomState.DRAINING, RoomState.CLOSED},
        RoomState.DRAINING: {RoomState.ACTIVE, RoomState.CLOSED},
        RoomState.CLOSED: set(),  # Terminal state
    }

    def __init__(
        self,
        room_id: RoomID,
        alias: str,
        history_size: int = Defaults.HistorySize,
        match_type: str | None = None,
        shared_interest: str | None = None,
    ):
        self.room_id = room_id
        self.alias = alias
        self.match_type = match_type
        self.shared_interest = shared_interest
        self.state = RoomState.FORMING
        self.lock = threading.RLock()

        self.members: dict[Fingerprint, RoomMember] = {}
        # Members who dropped and timed out. They may come back while DRAINING.
        self.departed: dict[Fingerprint, RoomMember] = {}
        self.history: collections.deque[ChatMessage] = collections.deque(
            maxlen=history_size
        )

        self.created_at = time.time()
        self.last_activity_at = self.created_at
        self.warned = False
        self.drain_token = 0

    def transition_to(self, new_state: RoomState) -> bool:
        """Transition room to new state if valid.

        Returns:
            True if transition successful, False if invalid
        """
        if new_state not in self.VALID_TRANSITIONS.get(self.state, set()):
            logger.error(
                f"Invalid room transition: {self.state} -> {new_state}. "
                f"Valid transitions from {self.state}: "
                f"{self.VALID_TRANSITIONS.get(self.state, set())}"
            )
            return False

        old_state = self.state
        self.state = new_state
        logger.info(f"Room {self.room_id}: {old_state.name} -> {new_state.name}")
        return True

    @property
    def is_open(self) -> bool:
        return self.state in (RoomState.ACTIVE, RoomState.DRAINING)

    def add_member(self, member: RoomMember) -> bool:
        if member.fingerprint in self.members:
            return False
        if len(self.members) >= MAX_ROOM_MEMBERS:
            logger.error(
                f"Room {self.room_id} is full. Refusing member {member.fingerprint}."
            )
            return False
        self.members[member.fingerprint] = member
        return True

    def touch(self, now: float | None = None) -> None:
        self.last_activity_at = now if now is not None else time.time()
        self.warned = False

    def find_message(self, message_id: MessageID) -> ChatMessage | None:
        for message in self.history:
            if message.message_id == message_id:
                return message
        return None

    def partner_of(self, fingerprint: Fingerprint) -> RoomMember | None:
        for fp, member in self.members.items():
            if fp != fingerprint:
                return member
        return None

    def summary(self) -> dict:
        with self.lock:
            return {
                "room_id": self.room_id,
                "alias": self.alias,
                "state": self.state.name,
                "match_type": self.match_type,
                "shared_interest": self.shared_interest,
                "members": [
                    {
                        "fingerprint": m.fingerprint,
                        "display_name": m.display_name,
                        "connected": m.connected,
                    }
                    for m in self.members.values()
                ],
                "history_length": len(self.history),
                "created_at": self.created_at,
                "last_activity_at": self.last_activity_at,
            }


class RoomManager:
    """
    The RoomManager owns every open room and the fingerprint -> room index.

    on_room_closed(room, members, reason) is called after a room closes, with
    the members that were evicted, so the owner can reset their state or put
    them back in the pool.
    """

    def __init__(
        self,
        socketio,
        history_size: int = Defaults.HistorySize,
        inactivity_timeout_s: float = Defaults.InactivityTimeoutSeconds,
        inactivity_warning_lead_s: float = Defaults.InactivityWarningLeadSeconds,
        sweep_interval_s: float = Defaults.SweepIntervalSeconds,
        reconnect_grace_s: float = Defaults.ReconnectGraceSeconds,
        drain_grace_s: float = Defaults.DrainGraceSeconds,
        requeue_on_drain: bool = True,
        message_persister: collaborators.MessagePersister | None = None,
        media_forwarder: collaborators.MediaForwarder | None = None,
        on_room_closed: Callable[[Room, list[RoomMember], str], None] | None = None,
        on_member_left: Callable[[Room, RoomMember, str], None] | None = None,
    ):
        self.socketio = socketio
        self.history_size = history_size
        self.inactivity_timeout_s = inactivity_timeout_s
        self.inactivity_warning_lead_s = inactivity_warning_lead_s
        self.sweep_interval_s = sweep_interval_s
        self.reconnect_grace_s = reconnect_grace_s
        self.drain_grace_s = drain_grace_s
        self.requeue_on_drain = requeue_on_drain
        self.message_persister = message_persister or collaborators.NullMessagePersister()
        self.media_forwarder = media_forwarder or collaborators.NullMediaForwarder()
        self.on_room_closed = on_room_closed
        self.on_member_left = on_member_left

        # Active-room index: every room not yet CLOSED
        self.rooms: dict[RoomID, Room] = thread_safe_collections.ThreadSafeDict()

        # Map fingerprints to the room they are a member of
        self.member_rooms: dict[Fingerprint, RoomID] = thread_safe_collections.ThreadSafeDict()

        self._sweeping = False

    ###########
    # Lookups #
    ###########

    def get_room(self, room_id: RoomID) -> Room | None:
        return self.rooms.get(room_id)

    def room_for_member(self, fingerprint: Fingerprint) -> Room | None:
        room_id = self.member_rooms.get(fingerprint)
        if room_id is None:
            return None
        room = self.rooms.get(room_id)
        if room is None:
            logger.warning(
                f"[RoomIndex] Fingerprint {fingerprint} mapped to missing room {room_id}. "
                f"Cleaning up."
            )
            self.member_rooms.pop_if(fingerprint, room_id)
        return room

    def find_by_alias(self, alias: str) -> list[Room]:
        """Rooms whose human-readable alias matches (case-insensitive).

        Aliases are not unique; callers acting on a room should use its room_id.
        """
        alias = (alias or "").strip().lower()
        return [
            room for room in self.rooms.snapshot().values()
            if room.alias.lower() == alias
        ]

    def snapshot(self) -> list[dict]:
        return [room.summary() for room in self.rooms.snapshot().values()]

    def _require_member(
        self, room_id: RoomID, fingerprint: Fingerprint
    ) -> tuple[Room, RoomMember]:
        room = self.rooms.get(room_id)
        if room is None or not room.is_open:
            raise NotFoundError(f"Room {room_id} does not exist")
        member = room.members.get(fingerprint)
        if member is None:
            raise NotFoundError(f"{fingerprint} is not a member of room {room_id}")
        return room, member

    ############
    # Delivery #
    ############

    def _emit_to_member(self, member: RoomMember, event: str, data: dict) -> None:
        """Best-effort emit to one member. A failing member never blocks the others."""
        handle = member.handle
        if not member.connected or handle is None:
            return
        try:
            self.socketio.emit(event, data, room=handle)
        except Exception as e:
            logger.warning(
                f"[Broadcast] Failed to emit {event} to {member.fingerprint} ({handle}): {e}"
            )

    def _broadcast(
        self,
        members: list[RoomMember],
        event: str,
        data: dict,
        exclude: Fingerprint | None = None,
    ) -> None:
        for member in members:
            if member.fingerprint == exclude:
                continue
            self._emit_to_member(member, event, data)

    ####################
    # Room lifecycle   #
    ####################

    def create_room(
        self,
        entry_a: WaitingEntry,
        entry_b: WaitingEntry,
        match_type: str | None = None,
        shared_interest: str | None = None,
    ) -> Room:
        """Create a room for two matched entries and join both.

        Raises:
            DuplicateRequestError: Either fingerprint already belongs to a room,
                or both entries share a fingerprint.
        """
        if entry_a.fingerprint == entry_b.fingerprint:
            raise DuplicateRequestError("Cannot pair a fingerprint with itself")
        for entry in (entry_a, entry_b):
            if self.room_for_member(entry.fingerprint) is not None:
                raise DuplicateRequestError(
                    f"{entry.fingerprint} is already in room "
                    f"{self.member_rooms.get(entry.fingerprint)}"
                )

        room = Room(
            room_id=str(uuid.uuid4()),
            alias=f"{entry_a.display_name}-{entry_b.display_name}",
            history_size=self.history_size,
            match_type=match_type,
            shared_interest=shared_interest,
        )

        with room.lock:
            for entry in (entry_a, entry_b):
                room.add_member(
                    RoomMember(
                        fingerprint=entry.fingerprint,
                        display_name=entry.display_name,
                        handle=entry.handle,
                        interests=list(entry.interests),
                    )
                )
            self.rooms[room.room_id] = room
            for entry in (entry_a, entry_b):
                self.member_rooms[entry.fingerprint] = room.room_id
            room.transition_to(RoomState.ACTIVE)

        logger.info(
            f"[CreateRoom] Room {room.room_id} ({room.alias}) created for "
            f"{entry_a.fingerprint} and {entry_b.fingerprint}. "
            f"match_type={match_type}, active rooms: {len(self.rooms)}"
        )
        return room

    def leave(
        self,
        fingerprint: Fingerprint,
        reason: str = "left",
        voluntary: bool = True,
    ) -> Room | None:
        """Remove a member from their room.

        One member left: the room starts DRAINING and the survivor is told
        what happens when the drain grace ends (requeued, or the chat closes
        when requeue_on_drain is off). Nobody left: the room closes.

        Args:
            fingerprint: Member leaving.
            reason: Free-form reason for logs ("left", "disconnect", ...).
            voluntary: False when the leave comes from an expired reconnect
                grace. Only involuntary leavers may rejoin a DRAINING room.

        Returns:
            The room that was left, or None if the fingerprint had no room.
        """
        room = self.room_for_member(fingerprint)
        if room is None:
            logger.debug(f"[Leave] {fingerprint} is not in a room. Nothing to do.")
            return None

        drain_token = None
        with room.lock:
            member = room.members.pop(fingerprint, None)
            self.member_rooms.pop_if(fingerprint, room.room_id)
            if member is None:
                return None
            if not voluntary:
                room.departed[fingerprint] = member

            notice = self._append_system_message_locked(
                room, f"{member.display_name} has left the chat."
            )
            remaining = list(room.members.values())

            if len(remaining) == 1 and room.state == RoomState.ACTIVE:
                room.transition_to(RoomState.DRAINING)
                room.drain_token += 1
                drain_token = room.drain_token

        logger.info(
            f"[Leave] {member.display_name} ({fingerprint}) left room {room.room_id} "
            f"(reason={reason}). Remaining: {[m.fingerprint for m in remaining]}"
        )

        if self.on_member_left:
            self.on_member_left(room, member, reason)

        if not remaining:
            self._close(room, CloseReasons.Empty, notify=False)
            return room

        self._broadcast(remaining, "message", notice.to_dict())
        for survivor in remaining:
            self._emit_to_member(
                survivor,
                "user_left",
                {
                    "room_id": room.room_id,
                    "message": (
                        f"{member.display_name} has left the chat. "
                        f"{self._drain_notice()}"
                    ),
                },
            )

        if drain_token is not None:
            eventlet.spawn_after(
                self.drain_grace_s, self._expire_drain, room.room_id, drain_token
            )
        return room

    def _drain_notice(self) -> str:
        if self.requeue_on_drain:
            return "You will be returned to the queue shortly."
        return "This chat will close shortly."

    def _expire_drain(self, room_id: RoomID, drain_token: int) -> None:
        room = self.rooms.get(room_id)
        if room is None:
            return
        with room.lock:
            if room.state != RoomState.DRAINING or room.drain_token != drain_token:
                logger.debug(f"[Drain] Room {room_id} drain timer superseded. Ignoring.")
                return
        logger.info(f"[Drain] Grace window elapsed for room {room_id} with no rejoin.")
        self._close(room, CloseReasons.PartnerLeft)

    def close_room(self, room_id: RoomID, reason: str = CloseReasons.Admin) -> list[RoomMember]:
        """Force a room closed from any state, notifying and evicting every member.

        Raises:
            NotFoundError: No open room has this id.
        """
        room = self.rooms.get(room_id)
        if room is None:
            raise NotFoundError(f"Room {room_id} does not exist")
        return self._close(room, reason)

    def _close(self, room: Room, reason: str, notify: bool = True) -> list[RoomMember]:
        with room.lock:
            if room.state == RoomState.CLOSED:
                return []
            room.transition_to(RoomState.CLOSED)
            members = list(room.members.values())
            room.members.clear()
            room.departed.clear()
            room.history.clear()
            self.rooms.pop(room.room_id, None)
            for member in members:
                self.member_rooms.pop_if(member.fingerprint, room.room_id)

        logger.info(
            f"[CloseRoom] Room {room.room_id} closed (reason={reason}). "
            f"Evicted: {[m.fingerprint for m in members]}. Active rooms: {len(self.rooms)}"
        )

        if notify:
            self._broadcast(
                members, "room_closed", {"room_id": room.room_id, "reason": reason}
            )

        if self.on_room_closed:
            self.on_room_closed(room, members, reason)

        assert room.room_id not in self.rooms
        return members

    ############
    # Messages #
    ############

    def _append_system_message_locked(self, room: Room, text: str) -> ChatMessage:
        message = ChatMessage(
            message_id=str(uuid.uuid4()),
            sender_fingerprint=SYSTEM_SENDER,
            sender_name=SYSTEM_SENDER,
            kind=MessageKinds.System,
            payload=text,
        )
        room.history.append(message)
        return message

    def post_message(
        self,
        room_id: RoomID,
        fingerprint: Fingerprint,
        kind: str,
        payload: Any,
    ) -> ChatMessage:
        """Append a message to the room and broadcast it to every member.

        Raises:
            NotFoundError: Room is gone or the sender is not a member.
        """
        room, member = self._require_member(room_id, fingerprint)

        with room.lock:
            message = ChatMessage(
                message_id=str(uuid.uuid4()),
                sender_fingerprint=fingerprint,
                sender_name=member.display_name,
                kind=kind,
                payload=payload,
            )
            room.history.append(message)
            room.touch(message.timestamp)
            members = list(room.members.values())
            record = message.to_dict()

        self._broadcast(members, "message", record)

        collaborators.fire_and_forget(
            self.message_persister.persist_message,
            room.room_id,
            record,
            description="persist_message",
        )
        if kind in MEDIA_MESSAGE_KINDS:
            collaborators.fire_and_forget(
                self.media_forwarder.forward_media,
                kind,
                payload,
                fingerprint,
                description="forward_media",
            )
        return message

    def react_to_message(
        self,
        room_id: RoomID,
        message_id: MessageID,
        tag: str,
        fingerprint: Fingerprint,
    ) -> dict[str, list[str]]:
        """Toggle the member's reaction on a message and broadcast the new state.

        Reacting twice with the same tag restores the previous reactions.

        Raises:
            ValidationError: Empty or oversized tag.
            NotFoundError: Room, member or message is gone, or the message was unsent.
        """
        tag = (tag or "").strip()
        if not tag or len(tag) > MAX_REACTION_TAG_LENGTH:
            raise ValidationError("Reaction must be a short non-empty tag")

        room, member = self._require_member(room_id, fingerprint)
        with room.lock:
            message = room.find_message(message_id)
            if message is None or message.unsent:
                raise NotFoundError(f"Message {message_id} not found in room {room_id}")
            message.toggle_reaction(tag, fingerprint, member.display_name)
            room.touch()
            reactions = message.reactions_dict()
            members = list(room.members.values())

        self._broadcast(
            members,
            "reaction_update",
            {"room_id": room_id, "message_id": message_id, "reactions": reactions},
        )
        return reactions

    def unsend_message(
        self,
        room_id: RoomID,
        message_id: MessageID,
        fingerprint: Fingerprint,
    ) -> bool:
        """Retract a message. The record stays with its id but loses its payload.

        Returns:
            True if the message was unsent now, False if it already was.

        Raises:
            NotFoundError: Room, member or message is gone.
            ValidationError: The member did not send this message.
        """
        room, _ = self._require_member(room_id, fingerprint)
        with room.lock:
            message = room.find_message(message_id)
            if message is None:
                raise NotFoundError(f"Message {message_id} not found in room {room_id}")
            if message.sender_fingerprint != fingerprint:
                raise ValidationError("Only the sender can unsend a message")
            if message.unsent:
                return False
            message.unsent = True
            message.payload = None
            message.reactions.clear()
            room.touch()
            members = list(room.members.values())

        self._broadcast(
            members, "message_unsent", {"room_id": room_id, "message_id": message_id}
        )
        return True

    def typing(self, room_id: RoomID, fingerprint: Fingerprint, is_typing: bool) -> None:
        room, member = self._require_member(room_id, fingerprint)
        with room.lock:
            members = list(room.members.values())
        self._broadcast(
            members,
            "typing",
            {"name": member.display_name, "is_typing": bool(is_typing)},
            exclude=fingerprint,
        )

    def messages_since(
        self, room_id: RoomID, fingerprint: Fingerprint, since: float | None = None
    ) -> list[dict]:
        """History records newer than since (all of them when since is None)."""
        room, _ = self._require_member(room_id, fingerprint)
        with room.lock:
            return [
                m.to_dict() for m in room.history
                if since is None or m.timestamp > since
            ]

    ################
    # Reconnection #
    ################

    def mark_disconnected(
        self, fingerprint: Fingerprint, handle: ConnectionHandle
    ) -> Room | None:
        """Record that a member's socket dropped and start the reconnect grace timer.

        Ignored if the member has since moved to a different socket.
        """
        room = self.room_for_member(fingerprint)
        if room is None:
            return None

        with room.lock:
            member = room.members.get(fingerprint)
            if member is None or member.handle != handle:
                return None
            member.connected = False
            member.handle = None
            member.disconnect_token += 1
            token = member.disconnect_token
            others = [m for m in room.members.values() if m.fingerprint != fingerprint]

        logger.info(
            f"[Disconnect] {fingerprint} dropped from room {room.room_id}. "
            f"Holding membership for {self.reconnect_grace_s}s."
        )
        self._broadcast(
            others,
            "partner_status",
            {"room_id": room.room_id, "name": member.display_name, "status": "disconnected"},
        )
        eventlet.spawn_after(
            self.reconnect_grace_s,
            self._expire_disconnect,
            room.room_id,
            fingerprint,
            token,
        )
        return room

    def _expire_disconnect(
        self, room_id: RoomID, fingerprint: Fingerprint, token: int
    ) -> None:
        room = self.rooms.get(room_id)
        if room is None:
            return
        with room.lock:
            member = room.members.get(fingerprint)
            if member is None or member.connected or member.disconnect_token != token:
                logger.debug(
                    f"[Disconnect] Grace timer for {fingerprint} in {room_id} superseded."
                )
                return
        logger.info(
            f"[Disconnect] {fingerprint} did not reconnect to room {room_id} in time."
        )
        self.leave(fingerprint, reason="disconnect", voluntary=False)

    def rejoin(
        self, room_id: RoomID, fingerprint: Fingerprint, handle: ConnectionHandle
    ) -> tuple[Room, bool]:
        """Reattach a fingerprint to its room on a new socket.

        Returns:
            (room, restored): restored is True when the fingerprint had already
            been removed (grace expired) and was re-admitted to a DRAINING room.

        Raises:
            NotFoundError: Room closed, or the fingerprint has no claim on it.
        """
        room = self.rooms.get(room_id)
        if room is None or not room.is_open:
            raise NotFoundError(f"Room {room_id} does not exist")

        restored = False
        with room.lock:
            member = room.members.get(fingerprint)
            if member is not None:
                member.handle = handle
                member.connected = True
                member.disconnect_token += 1
            elif (
                fingerprint in room.departed
                and room.state == RoomState.DRAINING
                and len(room.members) < MAX_ROOM_MEMBERS
            ):
                if self.room_for_member(fingerprint) is not None:
                    raise DuplicateRequestError(f"{fingerprint} is already in another room")
                member = room.departed.pop(fingerprint)
                member.handle = handle
                member.connected = True
                member.disconnect_token += 1
                room.add_member(member)
                self.member_rooms[fingerprint] = room.room_id
                room.drain_token += 1
                room.transition_to(RoomState.ACTIVE)
                restored = True
            else:
                raise NotFoundError(f"{fingerprint} is not a member of room {room_id}")

            room.touch()
            history = [m.to_dict() for m in room.history]
            partner = room.partner_of(fingerprint)
            others = [m for m in room.members.values() if m.fingerprint != fingerprint]

        logger.info(
            f"[Rejoin] {fingerprint} rejoined room {room_id} on {handle} (restored={restored})"
        )
        self._emit_to_member(
            member,
            "room_rejoined",
            {
                "room_id": room.room_id,
                "partner_name": partner.display_name if partner else None,
                "partner_connected": bool(partner and partner.connected),
                "history": history,
            },
        )
        self._broadcast(
            others,
            "partner_status",
            {"room_id": room.room_id, "name": member.display_name, "status": "reconnected"},
        )
        return room, restored

    ##############
    # Inactivity #
    ##############

    def sweep_inactive(self, now: float | None = None) -> tuple[list[RoomID], list[RoomID]]:
        """Warn quiet rooms once and close rooms idle past the timeout.

        Returns:
            (warned, closed) room ids for this pass.
        """
        now = now if now is not None else time.time()
        warn_after = self.inactivity_timeout_s - self.inactivity_warning_lead_s
        warned, closed = [], []

        for room in list(self.rooms.snapshot().values()):
            with room.lock:
                if not room.is_open:
                    continue
                idle = now - room.last_activity_at
                should_close = idle >= self.inactivity_timeout_s
                should_warn = not should_close and idle >= warn_after and not room.warned
                if should_warn:
                    room.warned = True
                members = list(room.members.values())

            if should_close:
                self._close(room, CloseReasons.Inactivity)
                closed.append(room.room_id)
            elif should_warn:
                remaining = max(0, int(self.inactivity_timeout_s - idle))
                self._broadcast(
                    members,
                    "inactivity_warning",
                    {
                        "room_id": room.room_id,
                        "seconds_remaining": remaining,
                        "message": (
                            f"This chat has been quiet for a while and will close "
                            f"in about {max(1, remaining // 60)} minute(s)."
                        ),
                    },
                )
                warned.append(room.room_id)

        if warned or closed:
            logger.info(f"[Sweep] Warned rooms: {warned}. Closed rooms: {closed}.")
        return warned, closed

    def start_sweep_loop(self) -> None:
        if self._sweeping:
            logger.warning("Inactivity sweep loop already running")
            return
        self._sweeping = True

        def _sweep_loop():
            logger.info(f"Inactivity sweep loop started (interval: {self.sweep_interval_s}s)")
            while self._sweeping:
                try:
                    self.sweep_inactive()
                except Exception as e:
                    logger.error(f"Error in inactivity sweep: {e}")
                self.socketio.sleep(self.sweep_interval_s)

        self.socketio.start_background_task(_sweep_loop)

    def stop_sweep_loop(self) -> None:
        self._sweeping = False
