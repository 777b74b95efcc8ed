"""
Admin Event Aggregator for collecting and projecting relay state.

Reads the ChatRelay without modifying it. Emits to the /admin namespace at
most about once a second (throttled).
"""
from __future__ import annotations

import hashlib
import json
import logging
import time
from collections import deque
from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import flask_socketio
    from pairchat.server.relay import ChatRelay

logger = logging.getLogger(__name__)


@dataclass
class ActivityEvent:
    """Single activity event for the timeline."""
    timestamp: float
    event_type: str  # queued, match_formed, left_room, room_closed, disconnect, banned, ...
    fingerprint: str
    details: dict = field(default_factory=dict)


class AdminEventAggregator:
    """
    Central hub for projecting relay state to the admin dashboard.
    """

    # Maximum number of activity events to retain
    MAX_ACTIVITY_LOG_SIZE = 500
    # Activity events included in each snapshot
    SNAPSHOT_ACTIVITY_SIZE = 50
    # Re-emit an unchanged snapshot after this many seconds
    HEARTBEAT_SECONDS = 2.0

    def __init__(self, sio: flask_socketio.SocketIO, relay: ChatRelay | None = None):
        self.sio = sio
        self.relay = relay

        # Activity log - capped FIFO queue
        self._activity_log: deque[ActivityEvent] = deque(maxlen=self.MAX_ACTIVITY_LOG_SIZE)

        # Broadcast loop state
        self._broadcast_running = False
        self._last_state_hash: str | None = None
        self._last_broadcast_time: float = 0

        logger.info("AdminEventAggregator initialized")

    def attach(self, relay: ChatRelay) -> None:
        self.relay = relay

    def get_snapshot(self) -> dict:
        if self.relay is None:
            snapshot = {
                'summary': {'online': 0, 'waiting': 0, 'active_rooms': 0, 'participants': {}},
                'pool': [],
                'rooms': [],
            }
        else:
            snapshot = self.relay.snapshot()
        snapshot['activity_log'] = [
            asdict(event) for event in list(self._activity_log)[-self.SNAPSHOT_ACTIVITY_SIZE:]
        ]
        snapshot['server_time'] = time.time()
        return snapshot

    def log_activity(self, event_type: str, fingerprint: str, details: dict | None = None) -> None:
        """
        Log an activity event and immediately emit to admins.
        """
        event = ActivityEvent(
            timestamp=time.time(),
            event_type=event_type,
            fingerprint=fingerprint,
            details=details or {}
        )
        self._activity_log.append(event)
        logger.debug(f"Activity logged: {event_type} for {fingerprint}")
        self.emit_activity(event)

    def activity(self) -> list[ActivityEvent]:
        return list(self._activity_log)

    def emit_activity(self, event: ActivityEvent) -> None:
        try:
            self.sio.emit(
                'activity_event',
                asdict(event),
                namespace='/admin',
                room='admin_broadcast'
            )
        except Exception as e:
            logger.debug(f"Error emitting activity event: {e}")

    def start_broadcast_loop(self, interval_seconds: float = 1.0) -> None:
        """
        Start periodic state broadcast to admin clients.

        Only emits if state changed or every HEARTBEAT_SECONDS regardless.
        """
        if self._broadcast_running:
            logger.warning("Broadcast loop already running")
            return

        self._broadcast_running = True

        def _broadcast_loop():
            logger.info(f"Admin broadcast loop started (interval: {interval_seconds}s)")
            while self._broadcast_running:
                try:
                    self.broadcast_state()
                except Exception as e:
                    logger.error(f"Error in broadcast loop: {e}")
                self.sio.sleep(interval_seconds)

        self.sio.start_background_task(_broadcast_loop)
        logger.info("Admin broadcast loop spawned")

    def stop_broadcast_loop(self) -> None:
        self._broadcast_running = False
        logger.info("Admin broadcast loop stopped")

    def broadcast_state(self, now: float | None = None) -> bool:
        """
        Broadcast state to admin clients if changed or the heartbeat elapsed.

        Returns:
            True if a state_update was emitted.
        """
        snapshot = self.get_snapshot()

        # Hash the summary and membership only; timestamps change every call.
        state_key = json.dumps({
            'summary': snapshot['summary'],
            'pool': [e['handle'] for e in snapshot['pool']],
            'rooms': [(r['room_id'], r['state'], r['history_length']) for r in snapshot['rooms']],
        }, sort_keys=True)
        state_hash = hashlib.md5(state_key.encode()).hexdigest()

        current_time = now if now is not None else time.time()
        should_emit = (
            state_hash != self._last_state_hash or
            current_time - self._last_broadcast_time >= self.HEARTBEAT_SECONDS
        )
        if not should_emit:
            return False

        try:
            self.sio.emit(
                'state_update',
                snapshot,
                namespace='/admin',
                room='admin_broadcast'
            )
        except Exception as e:
            logger.error(f"Error broadcasting state: {e}")
            return False

        self._last_state_hash = state_hash
        self._last_broadcast_time = current_time
        return True
