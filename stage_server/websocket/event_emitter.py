"""Centralized event emitter for real-time Socket.IO delivery.

Every push goes through here so that delivery failures are logged in one
place and never reach the caller.

Usage:
    from stage_server.websocket.event_emitter import EventEmitter

    # Emit to a user's personal channel
    EventEmitter.emit_to_user(user_key, EventEmitter.NOTIFICATION_NEW, data)

    # Emit to every socket subscribed to a conversation
    EventEmitter.emit_to_room(conversation_id, EventEmitter.MESSAGE_NEW, data)
"""
import logging
from typing import Any, Dict, Optional

from stage_server.utils.time_utils import now_utc

logger = logging.getLogger(__name__)

# Set when the WebSocket hub initializes
_socketio = None
_presence = None
_rooms = None


def set_socketio(socketio_instance):
    """Set the Socket.IO instance for the event emitter."""
    global _socketio
    _socketio = socketio_instance
    logger.debug("EventEmitter initialized with Socket.IO instance")


def set_registries(presence, rooms):
    """Set the presence and room registries used to resolve targets."""
    global _presence, _rooms
    _presence = presence
    _rooms = rooms


class EventEmitter:
    """Centralized event emitter for all real-time events."""

    # =========================================================================
    # Event Type Constants
    # =========================================================================

    # Connection / presence
    CONNECTED = 'connected'
    USER_ONLINE = 'user:online'
    USER_OFFLINE = 'user:offline'
    ONLINE_USERS_LIST = 'online_users:list'
    PONG = 'pong'
    ERROR = 'error'

    # Conversation rooms
    USER_JOINED_CONVERSATION = 'user:joined_conversation'
    USER_LEFT_CONVERSATION = 'user:left_conversation'
    CONVERSATION_ACTIVE_USERS = 'conversation:active_users'

    # Messages
    MESSAGE_NEW = 'message:new'
    MESSAGE_EDITED = 'message:edited'
    MESSAGE_DELETED = 'message:deleted'
    MESSAGES_READ = 'messages:read'
    MESSAGES_READ_BY_OTHER = 'messages:read_by_other'
    USER_TYPING = 'user:typing'
    USER_STOP_TYPING = 'user:stop_typing'

    # Notifications
    NOTIFICATION_NEW = 'notification:new'
    NOTIFICATION_UNREAD_COUNT = 'notification:unread_count'
    NOTIFICATION_READ = 'notification:read'
    NOTIFICATION_READ_ALL = 'notification:read_all'
    NOTIFICATION_COUNT = 'notification:count'

    # =========================================================================
    # Emit Methods
    # =========================================================================

    @staticmethod
    def _with_meta(event: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return {**data, '_event': event, '_timestamp': now_utc().isoformat()}

    @staticmethod
    def emit_to_sid(sid: str, event: str, data: Dict[str, Any]) -> bool:
        """Emit event to a single socket. Returns False if delivery failed."""
        if not _socketio:
            logger.error("EVENT_EMITTER: Socket.IO NOT initialized, cannot emit %s", event)
            return False
        try:
            _socketio.emit(event, EventEmitter._with_meta(event, data), to=sid)
            logger.debug("EVENT_EMITTER: Emitted '%s' to socket %s", event, sid)
            return True
        except Exception as e:
            logger.warning("EVENT_EMITTER: Error emitting %s to socket %s: %s", event, sid, e)
            return False

    @staticmethod
    def emit_to_user(user_key: str, event: str, data: Dict[str, Any]) -> bool:
        """Emit event to the user's current connection, if they have one.

        Returns:
            True if the event was handed to a live socket
        """
        sid = _presence.get_sid(user_key) if _presence is not None else None
        if not sid:
            logger.debug("EVENT_EMITTER: User %s not connected, event %s not pushed", user_key, event)
            return False
        return EventEmitter.emit_to_sid(sid, event, data)

    @staticmethod
    def emit_to_room(conversation_id: str, event: str, data: Dict[str, Any],
                     skip_sid: Optional[str] = None) -> int:
        """Emit event to every socket joined to a conversation.

        Returns:
            Number of sockets the event was handed to
        """
        if _rooms is None:
            return 0
        emitted = 0
        for sid in _rooms.members(conversation_id):
            if sid == skip_sid:
                continue
            if EventEmitter.emit_to_sid(sid, event, data):
                emitted += 1
        logger.debug("EVENT_EMITTER: '%s' fanned out to %d socket(s) in %s", event, emitted, conversation_id)
        return emitted

    @staticmethod
    def broadcast_presence(user_key: str, event: str, data: Dict[str, Any]) -> int:
        """Emit a presence change to every connected user except ``user_key``."""
        if _presence is None:
            return 0
        emitted = 0
        for other in _presence.online_users():
            if other == user_key:
                continue
            if EventEmitter.emit_to_user(other, event, data):
                emitted += 1
        return emitted

    # =========================================================================
    # Counters
    # =========================================================================

    @staticmethod
    def update_unread_count(user_key: str, conversation_id: str, unread_count: int) -> bool:
        """Push a conversation's unread badge to the user's personal channel."""
        return EventEmitter.emit_to_user(user_key, EventEmitter.NOTIFICATION_UNREAD_COUNT, {
            'conversationId': conversation_id,
            'unreadCount': unread_count,
        })

    @staticmethod
    def update_notification_count(user_key: str, count: int) -> bool:
        return EventEmitter.emit_to_user(user_key, EventEmitter.NOTIFICATION_COUNT, {'count': count})
