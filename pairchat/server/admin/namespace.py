"""
Admin SocketIO namespace for real-time dashboard updates and moderation.

This namespace is isolated from the chat namespace (/) so admin traffic
never reaches chat clients and can carry its own authentication.
"""
from __future__ import annotations

import logging

from flask_login import current_user
from flask_socketio import Namespace, emit, join_room, leave_room

from pairchat.server.errors import RelayError

logger = logging.getLogger(__name__)


class AdminNamespace(Namespace):
    """
    Handles all admin client connections on /admin namespace.

    Security: Requires authenticated admin session before allowing connection.
    """

    def __init__(self, namespace, aggregator=None, relay=None):
        super().__init__(namespace)
        self.aggregator = aggregator
        self.relay = relay
        logger.info(f"AdminNamespace initialized on {namespace}")

    def on_connect(self, auth=None):
        if not current_user.is_authenticated:
            logger.warning("Unauthenticated admin connection attempt rejected")
            return False

        logger.info(f"Admin connected: {current_user.get_id()}")
        join_room('admin_broadcast')
        emit('admin_connected', {
            'status': 'connected',
            'message': 'Admin dashboard connected to /admin namespace'
        })
        return True

    def on_disconnect(self, reason=None):
        logger.info("Admin disconnected from /admin namespace")
        leave_room('admin_broadcast')

    def on_request_state(self, data=None):
        logger.debug("Admin requested state snapshot")
        if self.aggregator:
            emit('state_update', self.aggregator.get_snapshot())
        else:
            emit('state_update', {
                'summary': {'online': 0, 'waiting': 0, 'active_rooms': 0},
                'pool': [],
                'rooms': [],
                'activity_log': [],
                'message': 'Aggregator not initialized'
            })

    def _run_action(self, action: str, fn):
        """Run a moderation action and report the outcome to the requesting admin."""
        if not current_user.is_authenticated:
            emit('admin_action_result', {'action': action, 'ok': False, 'error': 'unauthorized'})
            return
        if self.relay is None:
            emit('admin_action_result', {'action': action, 'ok': False, 'error': 'relay unavailable'})
            return
        try:
            result = fn()
        except RelayError as e:
            logger.warning(f"[Admin:{action}] Failed: {e}")
            emit('admin_action_result', {'action': action, 'ok': False, 'error': str(e)})
            return
        logger.info(f"[Admin:{action}] Completed")
        emit('admin_action_result', {'action': action, 'ok': True, 'result': result})

    def on_close_room(self, data):
        """Close a room by id. data: {'room_id': str}"""
        room_id = (data or {}).get('room_id')
        self._run_action(
            'close_room',
            lambda: [m.fingerprint for m in self.relay.close_room(room_id)],
        )

    def on_ban_user(self, data):
        """Ban a fingerprint. data: {'fingerprint': str, 'reason': str}"""
        data = data or {}
        fingerprint = data.get('fingerprint')
        if not fingerprint:
            emit('admin_action_result', {'action': 'ban_user', 'ok': False, 'error': 'fingerprint required'})
            return
        self._run_action('ban_user', lambda: self.relay.ban_user(fingerprint, data.get('reason')))

    def on_unban_user(self, data):
        """Lift a ban. data: {'fingerprint': str, 'reason': str}"""
        data = data or {}
        fingerprint = data.get('fingerprint')
        if not fingerprint:
            emit('admin_action_result', {'action': 'unban_user', 'ok': False, 'error': 'fingerprint required'})
            return
        self._run_action('unban_user', lambda: self.relay.unban_user(fingerprint, data.get('reason')))

    def on_find_rooms(self, data):
        """Look up rooms by their "nameA-nameB" alias. data: {'alias': str}"""
        alias = (data or {}).get('alias', '')
        self._run_action('find_rooms', lambda: self.relay.find_rooms(alias))
