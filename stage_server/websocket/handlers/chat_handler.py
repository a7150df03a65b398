"""WebSocket Chat Handler.

Socket commands for conversations: joining and leaving rooms, sending,
read receipts, typing indicators, edits and deletes.

Data Consistency:
- Messages are stored in MongoDB before being broadcast
- The sender gets an ack with the stored message, or an ``error`` event
- Broadcast failures are logged and never undo the write
"""
import functools
import logging
from typing import Any, Callable, Dict, Optional

from flask import request
from flask_socketio import emit

from stage_server.exception import UnauthorizedError, ValidationError
from stage_server.websocket.event_emitter import EventEmitter

logger = logging.getLogger(__name__)


def socket_error(e: Exception) -> Dict[str, Any]:
    """Failure payload for a core error, keeping its code and message."""
    code = getattr(e, 'code', None)
    if code is None:
        code = ValidationError.code if isinstance(e, ValueError) else 'SERVER_ERROR'
        message = str(e) if isinstance(e, ValueError) else 'Server error'
    else:
        message = str(e)
    return {'code': code, 'message': message}


class ChatHandler:
    """Handler for WebSocket chat events."""

    def __init__(self, socketio, presence, rooms, service):
        """Initialize chat handler.

        Args:
            socketio: Flask-SocketIO instance
            presence: PresenceRegistry of connected users
            rooms: RoomRegistry of conversation subscriptions
            service: MessagingService doing the persistent work
        """
        self.socketio = socketio
        self.presence = presence
        self.rooms = rooms
        self.service = service

    def _current_user(self) -> str:
        sid = request.sid
        user_key = self.presence.get_user(sid)
        if not user_key:
            raise UnauthorizedError('Not authenticated')
        self.presence.touch(user_key, sid)
        return user_key

    def _guard(self, func: Callable) -> Callable:
        """Run a command; core errors become an ``error`` event plus a failed ack."""
        @functools.wraps(func)
        def wrapper(data=None):
            data = data if isinstance(data, dict) else {}
            try:
                user_key = self._current_user()
                result = func(user_key, data)
                return {'success': True, **(result or {})}
            except Exception as e:
                payload = socket_error(e)
                if payload['code'] == 'SERVER_ERROR':
                    logger.exception("Socket command %s failed", func.__name__)
                else:
                    logger.debug("Socket command %s rejected: %s", func.__name__, e)
                if data.get('tempId'):
                    payload['tempId'] = data['tempId']
                emit(EventEmitter.ERROR, payload)
                return {'success': False, 'error': payload['message'], 'code': payload['code']}
        return wrapper

    @staticmethod
    def _conversation_id(data: Dict[str, Any]) -> str:
        conversation_id = data.get('conversationId') or data.get('conversation_id')
        if not conversation_id:
            raise ValidationError('conversationId is required')
        return conversation_id

    @staticmethod
    def _message_id(data: Dict[str, Any]) -> str:
        message_id = data.get('messageId') or data.get('message_id')
        if not message_id:
            raise ValidationError('messageId is required')
        return message_id

    def register_handlers(self):
        """Register all chat WebSocket event handlers."""

        # =====================================================================
        # Conversation Rooms
        # =====================================================================

        @self.socketio.on('conversation:join')
        @self._guard
        def handle_join_conversation(user_key, data):
            """Subscribe this socket to a conversation the user participates in."""
            conversation_id = self._conversation_id(data)
            conversation = self.service.require_participant(user_key, conversation_id)
            sid = request.sid

            self.rooms.join(conversation_id, sid)
            self.service.conversations.touch_last_seen(conversation_id, user_key)

            entry = self.presence.get_entry(user_key)
            EventEmitter.emit_to_room(conversation_id, EventEmitter.USER_JOINED_CONVERSATION, {
                'conversationId': conversation_id,
                'userId': user_key,
                'user': entry.display_info if entry else {'userId': user_key},
            }, skip_sid=sid)

            active = self._active_users(conversation_id, conversation.participant_keys())
            emit(EventEmitter.CONVERSATION_ACTIVE_USERS, {
                'conversationId': conversation_id,
                'activeUsers': active,
            })
            logger.debug("User %s joined conversation %s", user_key, conversation_id)
            return {'conversationId': conversation_id, 'activeUsers': active}

        @self.socketio.on('conversation:leave')
        @self._guard
        def handle_leave_conversation(user_key, data):
            conversation_id = self._conversation_id(data)
            sid = request.sid
            if self.rooms.leave(conversation_id, sid):
                EventEmitter.emit_to_room(conversation_id, EventEmitter.USER_LEFT_CONVERSATION, {
                    'conversationId': conversation_id,
                    'userId': user_key,
                }, skip_sid=sid)
            return {'conversationId': conversation_id}

        # =====================================================================
        # Message Events
        # =====================================================================

        @self.socketio.on('message:send')
        @self._guard
        def handle_send_message(user_key, data):
            """Handle sending a new message.

            Data:
                conversationId: str - Target conversation
                content: str - Message text
                attachments: list - Optional [{type, url, name?, size?, mimeType?}]
                replyTo: str - Optional message id in the same conversation
                tempId: str - Client-side temporary ID for optimistic updates
            """
            message = self.service.send_message(
                user_key,
                self._conversation_id(data),
                content=data.get('content'),
                attachments=data.get('attachments'),
                reply_to=data.get('replyTo') or data.get('reply_to'),
                temp_id=data.get('tempId'),
            )
            return {'message': message.to_dict(), 'tempId': data.get('tempId')}

        @self.socketio.on('messages:mark_read')
        @self._guard
        def handle_mark_read(user_key, data):
            count = self.service.mark_conversation_read(user_key, self._conversation_id(data))
            return {'count': count}

        @self.socketio.on('message:edit')
        @self._guard
        def handle_edit_message(user_key, data):
            content = data.get('content')
            if not content:
                raise ValidationError('content is required')
            message = self.service.edit_message(user_key, self._message_id(data), content)
            return {'message': message.to_dict()}

        @self.socketio.on('message:delete')
        @self._guard
        def handle_delete_message(user_key, data):
            deleted = self.service.delete_message(user_key, self._message_id(data))
            return {'messageId': deleted.message_id, 'conversationId': deleted.conversation_id}

        # =====================================================================
        # Typing Indicators
        # =====================================================================

        @self.socketio.on('message:typing')
        def handle_typing(data=None):
            self._relay_typing(data, EventEmitter.USER_TYPING)

        @self.socketio.on('message:stop_typing')
        def handle_stop_typing(data=None):
            self._relay_typing(data, EventEmitter.USER_STOP_TYPING)

    def _relay_typing(self, data, event: str):
        """Typing state is ephemeral; anything that goes wrong is dropped."""
        try:
            sid = request.sid
            user_key = self.presence.get_user(sid)
            conversation_id = (data or {}).get('conversationId')
            if not user_key or not conversation_id or not self.rooms.is_member(conversation_id, sid):
                return
            self.presence.touch(user_key, sid)
            entry = self.presence.get_entry(user_key)
            EventEmitter.emit_to_room(conversation_id, event, {
                'conversationId': conversation_id,
                'userId': user_key,
                'user': entry.display_info if entry else {'userId': user_key},
            }, skip_sid=sid)
        except Exception as e:
            logger.debug("Typing relay dropped: %s", e)

    def _active_users(self, conversation_id: str, participants) -> list:
        """Participants with a socket currently in the room."""
        members = self.rooms.members(conversation_id)
        active = []
        for user_key in participants:
            entry = self.presence.get_entry(user_key)
            if entry is not None and entry.sid in members:
                active.append({'userId': user_key, 'user': entry.display_info})
        return active

    def on_socket_closed(self, sid: str, user_key: Optional[str]):
        """Drop the socket from its rooms and tell the remaining members."""
        for conversation_id in self.rooms.leave_all(sid):
            if user_key:
                EventEmitter.emit_to_room(conversation_id, EventEmitter.USER_LEFT_CONVERSATION, {
                    'conversationId': conversation_id,
                    'userId': user_key,
                })


# Singleton instance
_chat_handler: Optional[ChatHandler] = None


def get_chat_handler() -> Optional[ChatHandler]:
    """Get chat handler instance."""
    return _chat_handler


def init_chat_handler(socketio, presence, rooms, service) -> ChatHandler:
    """Initialize chat handler with socketio instance."""
    global _chat_handler
    _chat_handler = ChatHandler(socketio, presence, rooms, service)
    _chat_handler.register_handlers()
    logger.info("Chat handler initialized")
    return _chat_handler
