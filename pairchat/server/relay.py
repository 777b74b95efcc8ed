"""ChatRelay: the object that owns all relay state and routes client events.

One ChatRelay per process. It holds the session registry, the waiting pool,
the participant tracker, the match coordinator and the room manager, and
exposes one on_<event>(sid, data) method per inbound Socket.IO event. The
Flask-SocketIO handlers in app.py only forward to these methods.

Input validation happens here, at the boundary. Everything below trusts
its arguments.
"""

from __future__ import annotations

import functools
import logging
from typing import Any

import msgpack

from pairchat.configurations.configuration_constants import (
    CLIENT_MESSAGE_KINDS, DEFAULT_DISPLAY_NAME, SYSTEM_SENDER, CloseReasons,
    Defaults, MessageKinds)
from pairchat.configurations.relay_config import RelayConfig
from pairchat.server import collaborators
from pairchat.server.audit_log import MatchAssignmentLogger
from pairchat.server.connection_session import SessionRegistry
from pairchat.server.errors import (CollaboratorError, DuplicateRequestError,
                                    NotFoundError, RelayError,
                                    ValidationError)
from pairchat.server.interest_matcher import (FuzzyInterestMatcher,
                                              normalize_interests)
from pairchat.server.match_coordinator import MatchCoordinator
from pairchat.server.matchmaker import InterestMatchmaker
from pairchat.server.participant_state import (ParticipantState,
                                               ParticipantStateTracker)
from pairchat.server.room_manager import Room, RoomManager, RoomMember, RoomState
from pairchat.server.waiting_pool import WaitingPool
from pairchat.utils.typing import ConnectionHandle, Fingerprint, RoomID

logger = logging.getLogger(__name__)

REQUEUE_REASONS = frozenset({CloseReasons.PartnerLeft, CloseReasons.Banned})


def client_event(error_event: str = "relay_error", notify=(ValidationError,)):
    """Boundary for inbound client events.

    Errors in notify are reported to the client on error_event. Other
    RelayErrors are logged and dropped. Anything else is logged with its
    traceback; a bad event never takes the server down.
    """

    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(self, sid, data=None):
            try:
                return fn(self, sid, data)
            except notify as e:
                logger.info(f"[Relay:{fn.__name__}] Rejected event from {sid}: {e}")
                payload = {"error": str(e), "code": e.error_code}
                if isinstance(data, dict) and "room_id" in data:
                    payload["room_id"] = data.get("room_id")
                self._emit(error_event, payload, sid)
            except RelayError as e:
                logger.info(f"[Relay:{fn.__name__}] Ignored event from {sid}: {e}")
            except Exception:
                logger.exception(f"[Relay:{fn.__name__}] Unexpected error handling {sid}")
            return None

        return wrapper

    return decorator


def parse_fingerprint(value: Any) -> Fingerprint:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("A client fingerprint is required")
    value = value.strip()
    if len(value) > Defaults.MaxFingerprintLength:
        raise ValidationError("Client fingerprint is too long")
    return value


def parse_display_name(value: Any) -> str:
    if value is None:
        return DEFAULT_DISPLAY_NAME
    if not isinstance(value, str):
        raise ValidationError("Display name must be a string")
    name = " ".join(value.split())[: Defaults.MaxDisplayNameLength]
    if not name or name.lower() == SYSTEM_SENDER.lower():
        return DEFAULT_DISPLAY_NAME
    return name


def unpack_message(data: dict) -> dict:
    """Decode the msgpack "packed" form of send_message, if used."""
    packed = data.get("packed")
    if packed is None:
        return data
    if not isinstance(packed, (bytes, bytearray)):
        raise ValidationError("packed must be binary msgpack data")
    try:
        decoded = msgpack.unpackb(bytes(packed), raw=False)
    except Exception as e:
        raise ValidationError("Malformed packed message") from e
    if not isinstance(decoded, dict):
        raise ValidationError("Packed message must be a map")
    return decoded


def validate_payload(kind: str, payload: Any) -> Any:
    if not isinstance(kind, str) or kind not in CLIENT_MESSAGE_KINDS:
        raise ValidationError(f"Unsupported message kind: {kind}")
    if kind == MessageKinds.Text:
        if not isinstance(payload, str) or not payload.strip():
            raise ValidationError("Text messages cannot be empty")
        if len(payload) > Defaults.MaxTextLength:
            raise ValidationError(
                f"Text messages are limited to {Defaults.MaxTextLength} characters"
            )
        return payload
    if payload is None or payload == "" or payload == b"":
        raise ValidationError(f"{kind} messages need a payload")
    return payload


class ChatRelay:
    def __init__(
        self,
        socketio,
        config: RelayConfig | None = None,
        admin_aggregator=None,
    ):
        self.socketio = socketio
        self.config = config or RelayConfig()
        self.admin_aggregator = admin_aggregator

        self.moderation_store = (
            self.config.moderation_store or collaborators.InMemoryModerationStore()
        )
        if self.config.message_persister is not None:
            message_persister = self.config.message_persister
        elif self.config.save_message_logs:
            message_persister = collaborators.JsonlMessageLog()
        else:
            message_persister = collaborators.NullMessagePersister()

        self.sessions = SessionRegistry()
        self.tracker = ParticipantStateTracker()
        self.pool = WaitingPool()

        self.rooms = RoomManager(
            socketio,
            history_size=self.config.history_size,
            inactivity_timeout_s=self.config.inactivity_timeout_s,
            inactivity_warning_lead_s=self.config.inactivity_warning_lead_s,
            sweep_interval_s=self.config.sweep_interval_s,
            reconnect_grace_s=self.config.reconnect_grace_s,
            drain_grace_s=self.config.drain_grace_s,
            requeue_on_drain=self.config.requeue_on_drain,
            message_persister=message_persister,
            media_forwarder=self.config.media_forwarder,
            on_room_closed=self._on_room_closed,
            on_member_left=self._on_member_left,
        )

        match_logger = None
        if self.config.match_logs_dir:
            match_logger = MatchAssignmentLogger(
                admin_aggregator=admin_aggregator, logs_dir=self.config.match_logs_dir
            )

        matchmaker = self.config.matchmaker or InterestMatchmaker(
            interest_matcher=FuzzyInterestMatcher(self.config.min_prefix_length)
        )
        self.coordinator = MatchCoordinator(
            socketio,
            pool=self.pool,
            room_manager=self.rooms,
            tracker=self.tracker,
            matchmaker=matchmaker,
            moderation_store=self.moderation_store,
            match_delay_s=self.config.match_delay_s,
            rescan_interval_s=self.config.rescan_interval_s,
            ban_check_fail_open=self.config.ban_check_fail_open,
            collaborator_timeout_s=self.config.collaborator_timeout_s,
            match_logger=match_logger,
        )

    def start(self) -> None:
        """Start the background loops (inactivity sweep, optional pool rescan)."""
        self.rooms.start_sweep_loop()
        self.coordinator.start_rescan_loop()

    def stop(self) -> None:
        self.rooms.stop_sweep_loop()
        self.coordinator.stop_rescan_loop()

    ###########
    # Helpers #
    ###########

    def _emit(self, event: str, data: dict, handle: ConnectionHandle) -> None:
        try:
            self.socketio.emit(event, data, room=handle)
        except Exception as e:
            logger.warning(f"[Relay] Failed to emit {event} to {handle}: {e}")

    def _log_activity(self, event_type: str, fingerprint: str, details: dict | None = None):
        if self.admin_aggregator:
            self.admin_aggregator.log_activity(event_type, fingerprint, details)

    def broadcast_user_count(self) -> None:
        try:
            self.socketio.emit("user_count_update", {"count": len(self.sessions)})
        except Exception as e:
            logger.warning(f"[Relay] Failed to broadcast user count: {e}")

    def _identify(self, sid: ConnectionHandle) -> Fingerprint:
        session = self.sessions.get(sid)
        if session is None or not session.fingerprint:
            raise ValidationError("Find a match before sending chat events")
        session.touch()
        return session.fingerprint

    def _resolve_room_id(self, fingerprint: Fingerprint, data: dict) -> RoomID:
        room_id = data.get("room_id")
        if room_id:
            return str(room_id)
        room = self.rooms.room_for_member(fingerprint)
        if room is None:
            raise NotFoundError(f"{fingerprint} is not in a room")
        return room.room_id

    @staticmethod
    def _as_dict(data) -> dict:
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ValidationError("Event data must be an object")
        return data

    ###############
    # Connections #
    ###############

    @client_event()
    def on_connect(self, sid: ConnectionHandle, data=None) -> None:
        self.sessions.open(sid)
        logger.info(f"[Relay:Connect] {sid} connected. Online: {len(self.sessions)}")
        self.broadcast_user_count()

    @client_event()
    def on_disconnect(self, sid: ConnectionHandle, data=None) -> None:
        session = self.sessions.close(sid)
        self.coordinator.leave_queue(sid)

        if session is not None and session.fingerprint:
            # A stale tab closing must not disturb the tab that took over.
            self.rooms.mark_disconnected(session.fingerprint, sid)
            self._log_activity("disconnect", session.fingerprint, {"handle": sid})

        logger.info(f"[Relay:Disconnect] {sid} disconnected. Online: {len(self.sessions)}")
        self.broadcast_user_count()

    ############
    # Matching #
    ############

    @client_event(error_event="match_error", notify=(ValidationError, CollaboratorError))
    def on_request_match(self, sid: ConnectionHandle, data=None) -> None:
        data = self._as_dict(data)
        fingerprint = parse_fingerprint(data.get("fingerprint"))
        display_name = parse_display_name(data.get("name", data.get("display_name")))
        try:
            interests = normalize_interests(data.get("interests"))
        except TypeError as e:
            raise ValidationError(str(e)) from e

        self.sessions.bind(sid, fingerprint, display_name, interests)

        room = self.rooms.room_for_member(fingerprint)
        if room is not None:
            if room.state != RoomState.DRAINING:
                raise DuplicateRequestError(
                    f"{fingerprint} asked for a match while in room {room.room_id}"
                )
            # The partner already left; looking for someone new abandons the room.
            self.rooms.leave(fingerprint, reason="requeue")

        entry = self.coordinator.request_match(sid, display_name, interests, fingerprint)
        if entry is not None:
            self._log_activity("queued", fingerprint, {"interests": interests})

    @client_event(error_event="match_error")
    def on_leave_queue(self, sid: ConnectionHandle, data=None) -> None:
        entry = self.coordinator.leave_queue(sid)
        if entry is not None:
            logger.info(f"[Relay:LeaveQueue] {entry.display_name} ({sid}) left the queue")

    #########
    # Rooms #
    #########

    @client_event()
    def on_send_message(self, sid: ConnectionHandle, data=None) -> None:
        data = unpack_message(self._as_dict(data))
        fingerprint = self._identify(sid)
        kind = data.get("kind") or MessageKinds.Text
        payload = validate_payload(kind, data.get("payload", data.get("message")))
        room_id = self._resolve_room_id(fingerprint, data)
        self.rooms.post_message(room_id, fingerprint, kind, payload)

    @client_event()
    def on_react(self, sid: ConnectionHandle, data=None) -> None:
        data = self._as_dict(data)
        fingerprint = self._identify(sid)
        message_id = data.get("message_id")
        if not message_id:
            raise ValidationError("message_id is required")
        tag = data.get("reaction", data.get("tag"))
        if not isinstance(tag, str):
            raise ValidationError("reaction must be a string")
        room_id = self._resolve_room_id(fingerprint, data)
        self.rooms.react_to_message(room_id, message_id, tag, fingerprint)

    @client_event()
    def on_unsend(self, sid: ConnectionHandle, data=None) -> None:
        data = self._as_dict(data)
        fingerprint = self._identify(sid)
        message_id = data.get("message_id")
        if not message_id:
            raise ValidationError("message_id is required")
        room_id = self._resolve_room_id(fingerprint, data)
        self.rooms.unsend_message(room_id, message_id, fingerprint)

    @client_event()
    def on_typing(self, sid: ConnectionHandle, data=None) -> None:
        data = self._as_dict(data)
        fingerprint = self._identify(sid)
        is_typing = data.get("is_typing", True)
        if not isinstance(is_typing, bool):
            raise ValidationError("is_typing must be true or false")
        room_id = self._resolve_room_id(fingerprint, data)
        self.rooms.typing(room_id, fingerprint, is_typing)

    @client_event()
    def on_leave_room(self, sid: ConnectionHandle, data=None) -> None:
        fingerprint = self._identify(sid)
        room = self.rooms.leave(fingerprint, reason="left", voluntary=True)
        if room is None:
            raise NotFoundError(f"{fingerprint} is not in a room")

    ################
    # Reconnection #
    ################

    @client_event(
        error_event="reconnect_failed",
        notify=(ValidationError, NotFoundError, DuplicateRequestError),
    )
    def on_reconnect_room(self, sid: ConnectionHandle, data=None) -> None:
        data = self._as_dict(data)
        fingerprint = parse_fingerprint(data.get("fingerprint"))
        room_id = data.get("room_id")
        if not room_id:
            raise ValidationError("room_id is required to reconnect")

        if self.tracker.is_in_pool(fingerprint):
            raise DuplicateRequestError("Already waiting for a new match")

        session, previous = self.sessions.bind(sid, fingerprint)
        room, restored = self.rooms.rejoin(str(room_id), fingerprint, sid)

        member = room.members.get(fingerprint)
        if member is not None:
            session.display_name = member.display_name
            session.interests = list(member.interests)
        if restored:
            self.tracker.transition_to(fingerprint, ParticipantState.IN_ROOM)
        if previous is not None:
            self._emit(
                "duplicate_session",
                {"message": "This chat was reopened in another tab."},
                previous,
            )
        self._log_activity("reconnect", fingerprint, {"room_id": room.room_id})

    @client_event(error_event="reconnect_failed", notify=(ValidationError, NotFoundError))
    def on_fetch_missed(self, sid: ConnectionHandle, data=None) -> None:
        data = self._as_dict(data)
        fingerprint = self._identify(sid)
        room_id = self._resolve_room_id(fingerprint, data)
        since = data.get("since")
        if since is not None:
            try:
                since = float(since)
            except (TypeError, ValueError) as e:
                raise ValidationError("since must be a timestamp") from e
        messages = self.rooms.messages_since(room_id, fingerprint, since)
        self._emit("missed_messages", {"room_id": room_id, "messages": messages}, sid)

    ###################
    # Room callbacks  #
    ###################

    def _on_member_left(self, room: Room, member: RoomMember, reason: str) -> None:
        self.tracker.reset(member.fingerprint)
        self._log_activity(
            "left_room", member.fingerprint, {"room_id": room.room_id, "reason": reason}
        )

    def _on_room_closed(self, room: Room, members: list[RoomMember], reason: str) -> None:
        for member in members:
            self.tracker.reset(member.fingerprint)
        self._log_activity(
            "room_closed",
            members[0].fingerprint if members else "none",
            {"room_id": room.room_id, "alias": room.alias, "reason": reason},
        )

        if reason not in REQUEUE_REASONS or not self.config.requeue_on_drain:
            return

        for member in members:
            if not member.connected or member.handle is None:
                continue
            try:
                self.coordinator.request_match(
                    member.handle, member.display_name, member.interests, member.fingerprint
                )
                logger.info(
                    f"[Relay:Requeue] {member.display_name} ({member.fingerprint}) "
                    f"returned to the pool after room {room.room_id} closed ({reason})"
                )
            except RelayError as e:
                logger.info(
                    f"[Relay:Requeue] Not re-queueing {member.fingerprint}: {e}"
                )

    #########
    # Admin #
    #########

    def close_room(self, room_id: RoomID, reason: str = CloseReasons.Admin) -> list[RoomMember]:
        return self.rooms.close_room(room_id, reason)

    def find_rooms(self, alias: str) -> list[dict]:
        return [room.summary() for room in self.rooms.find_by_alias(alias)]

    def ban_user(self, fingerprint: Fingerprint, reason: str | None = None) -> None:
        """Ban a fingerprint and remove it from the pool and its room.

        Raises:
            CollaboratorError: The moderation store failed or timed out.
        """
        collaborators.call_with_timeout(
            self.moderation_store.ban_user,
            fingerprint,
            reason,
            timeout=self.config.collaborator_timeout_s,
            description="ban_user",
        )
        self.coordinator.remove_fingerprint(fingerprint)

        room = self.rooms.room_for_member(fingerprint)
        if room is not None:
            self.rooms.close_room(room.room_id, CloseReasons.Banned)

        handle = self.sessions.resolve(fingerprint)
        if handle is not None:
            self._emit(
                "match_error",
                {"error": "You have been banned from chatting", "code": "banned"},
                handle,
            )
        self._log_activity("banned", fingerprint, {"reason": reason})

    def unban_user(self, fingerprint: Fingerprint, reason: str | None = None) -> None:
        collaborators.call_with_timeout(
            self.moderation_store.unban_user,
            fingerprint,
            reason,
            timeout=self.config.collaborator_timeout_s,
            description="unban_user",
        )
        self._log_activity("unbanned", fingerprint, {"reason": reason})

    def snapshot(self) -> dict:
        pool = [
            {
                "handle": e.handle,
                "fingerprint": e.fingerprint,
                "display_name": e.display_name,
                "interests": e.interests,
                "joined_at": e.joined_at,
            }
            for e in self.pool.snapshot()
        ]
        rooms = self.rooms.snapshot()
        return {
            "summary": {
                "online": len(self.sessions),
                "waiting": len(pool),
                "active_rooms": len(rooms),
                "participants": self.tracker.counts(),
            },
            "pool": pool,
            "rooms": rooms,
        }
