"""Centralized WebSocket Hub.

Owns the connection lifecycle: authentication on connect, presence,
heartbeats, and notification read-state commands. Chat commands are
registered by the chat handler.
"""
import logging
from typing import Dict, Optional

from flask import Flask, request
from flask_socketio import SocketIO, emit

from stage_server.security.authentication import AuthSecurity, caller_key, display_info, extract_token
from stage_server.websocket.event_emitter import EventEmitter, set_socketio, set_registries
from stage_server.websocket.handlers.chat_handler import init_chat_handler, socket_error
from stage_server.utils.time_utils import now_utc

logger = logging.getLogger(__name__)


class WebSocketHub:
    """Centralized WebSocket Hub for real-time communication."""

    def __init__(self, socketio: SocketIO = None):
        self.socketio = socketio
        self.presence = None
        self.rooms = None
        self.bridge = None
        self._chat_handler = None
        self._initialized = False

    def init_app(self, app: Flask, socketio: SocketIO, presence, rooms, service, bridge):
        """Initialize the WebSocket hub."""
        logger.debug("WS_HUB: init app=%s, mode=%s", app.name, getattr(socketio, 'async_mode', '?'))

        self.socketio = socketio
        self.app = app
        self.presence = presence
        self.rooms = rooms
        self.bridge = bridge

        set_socketio(socketio)
        set_registries(presence, rooms)

        self._register_handlers()
        self._chat_handler = init_chat_handler(socketio, presence, rooms, service)

        self._initialized = True
        logger.debug("WS_HUB: initialized")

    def _register_handlers(self):
        """Register WebSocket event handlers."""

        @self.socketio.on_error_default
        def default_error_handler(e):
            logger.error("WS error: %s", e)

        # =====================================================================
        # Connection Events
        # =====================================================================

        @self.socketio.on('connect')
        def handle_connect(auth=None):
            """Handle new WebSocket connection."""
            socket_id = request.sid
            token = extract_token(auth, request.headers, request.args)

            payload = self._authenticate(token)
            if not payload:
                logger.warning("Unauthenticated socket rejected: sid=%s, ip=%s", socket_id, request.remote_addr)
                return False

            user_key = caller_key(payload)
            newly_online = self.presence.register(user_key, socket_id, display_info(payload))
            logger.info("WS connected: user=%s, sid=%s", user_key, socket_id)

            emit(EventEmitter.CONNECTED, {'userId': user_key, 'socketId': socket_id})

            if newly_online:
                EventEmitter.broadcast_presence(user_key, EventEmitter.USER_ONLINE, {
                    'userId': user_key,
                    'user': self.presence.get_entry(user_key).display_info,
                })

            self._send_pending_counts(user_key)
            return True

        @self.socketio.on('disconnect')
        def handle_disconnect(reason=None):
            """Handle WebSocket disconnection."""
            socket_id = request.sid
            user_key = self.presence.get_user(socket_id)
            logger.debug("WS disconnect: sid=%s, user=%s, reason=%s", socket_id, user_key, reason)

            if self._chat_handler:
                self._chat_handler.on_socket_closed(socket_id, user_key)

            if user_key and self.presence.unregister(user_key, socket_id):
                logger.info("WS offline: user=%s", user_key)
                EventEmitter.broadcast_presence(user_key, EventEmitter.USER_OFFLINE, {'userId': user_key})

        # =====================================================================
        # Presence Events
        # =====================================================================

        @self.socketio.on('get:online_users')
        def handle_get_online_users(data=None):
            user_key = self._get_user_from_socket()
            if not user_key:
                emit(EventEmitter.ERROR, {'code': 'UNAUTHORIZED', 'message': 'Not authenticated'})
                return {'success': False, 'error': 'Not authenticated'}
            users = self.presence.list_online()
            emit(EventEmitter.ONLINE_USERS_LIST, {'users': users})
            return {'success': True, 'users': users}

        # =====================================================================
        # Notification Events
        # =====================================================================

        @self.socketio.on('notification:mark_read')
        def handle_notification_mark_read(data=None):
            """Mark notification as read."""
            user_key = self._get_user_from_socket()
            if not user_key:
                emit(EventEmitter.ERROR, {'code': 'UNAUTHORIZED', 'message': 'Not authenticated'})
                return {'success': False, 'error': 'Not authenticated'}

            notification_id = (data or {}).get('notificationId') or (data or {}).get('notification_id')
            if not notification_id:
                emit(EventEmitter.ERROR, {'code': 'VALIDATION_ERROR', 'message': 'notificationId required'})
                return {'success': False, 'error': 'notificationId required'}

            try:
                changed = self.bridge.mark_one_read(notification_id, user_key)
            except Exception as e:
                payload = socket_error(e)
                emit(EventEmitter.ERROR, payload)
                return {'success': False, 'error': payload['message'], 'code': payload['code']}
            return {'success': True, 'notificationId': notification_id, 'changed': changed}

        @self.socketio.on('notification:mark_all_read')
        def handle_notification_mark_all_read(data=None):
            """Mark all notifications as read."""
            user_key = self._get_user_from_socket()
            if not user_key:
                emit(EventEmitter.ERROR, {'code': 'UNAUTHORIZED', 'message': 'Not authenticated'})
                return {'success': False, 'error': 'Not authenticated'}

            count = self.bridge.mark_all_read(user_key)
            return {'success': True, 'count': count}

        # =====================================================================
        # Ping/Pong
        # =====================================================================

        @self.socketio.on('ping')
        def handle_ping(data=None):
            """Heartbeat: refresh presence and answer."""
            self._get_user_from_socket()
            emit(EventEmitter.PONG, {'timestamp': now_utc().isoformat()})

    def _authenticate(self, token: str) -> Optional[Dict]:
        """Authenticate WebSocket connection."""
        if not token:
            return None
        try:
            return AuthSecurity.decode_token(token)
        except Exception as e:
            logger.debug("WS auth error: %s", e)
            return None

    def _get_user_from_socket(self, socket_id: str = None) -> Optional[str]:
        """User key for the socket, refreshing its presence entry."""
        sid = socket_id or request.sid
        user_key = self.presence.get_user(sid)
        if user_key:
            self.presence.touch(user_key, sid)
        return user_key

    def _send_pending_counts(self, user_key: str):
        """Send the notification badge count to a newly connected user."""
        if self.bridge is None:
            return
        try:
            EventEmitter.update_notification_count(user_key, self.bridge.unread_count(user_key))
        except Exception as e:
            logger.error("send_pending_counts error: %s", e)


# Singleton instance
_hub_instance: Optional[WebSocketHub] = None


def get_websocket_hub() -> WebSocketHub:
    """Get WebSocket hub singleton."""
    global _hub_instance
    if _hub_instance is None:
        _hub_instance = WebSocketHub()
    return _hub_instance


def init_websocket_hub(app: Flask, socketio: SocketIO, presence, rooms, service, bridge) -> WebSocketHub:
    """Initialize WebSocket hub."""
    hub = WebSocketHub()
    hub.init_app(app, socketio, presence, rooms, service, bridge)
    global _hub_instance
    _hub_instance = hub
    return hub
