"""Messaging service layer.

Every operation takes the caller's user key explicitly and checks that the
caller participates in the conversation before touching it. Writes are
persisted first; the real-time fan-out that follows is best-effort and a
failure there is logged, never raised and never rolled back.
"""
import logging
from typing import Optional, Dict, Any, List, Tuple

from flask import current_app

from stage_server.exception import ForbiddenError, ValidationError
from stage_server.messaging.models import Conversation, Message, ParticipantRole
from stage_server.repository.conversation_repository import ConversationRepository
from stage_server.repository.message_repository import MessageRepository
from stage_server.utils.time_utils import now_utc
from stage_server.websocket.event_emitter import EventEmitter

logger = logging.getLogger(__name__)


class MessagingService:
    """High-level messaging operations shared by the REST routes and socket handlers."""

    def __init__(self, conversations: ConversationRepository, messages: MessageRepository,
                 bridge=None, presence=None, rooms=None):
        self.conversations = conversations
        self.messages = messages
        self.bridge = bridge
        self.presence = presence
        self.rooms = rooms

    # =========================================================================
    # Authorization
    # =========================================================================

    def require_participant(self, user_key: str, conversation_id: str) -> Conversation:
        conversation = self.conversations.get(conversation_id)
        if conversation.participant(user_key) is None:
            raise ForbiddenError('You are not a participant in this conversation')
        return conversation

    def _require_admin(self, user_key: str, conversation: Conversation, action: str):
        if not conversation.is_admin(user_key):
            raise ForbiddenError(f'Only admins can {action}')

    # =========================================================================
    # Conversation Operations
    # =========================================================================

    def list_conversations(self, user_key: str, page: int = 1, limit: int = 20) -> Tuple[List[Conversation], int]:
        return self.conversations.list_for_user(user_key, page=page, limit=limit)

    def get_conversation(self, user_key: str, conversation_id: str) -> Conversation:
        """Fetch a conversation; opening it counts as reading it."""
        self.require_participant(user_key, conversation_id)
        self.mark_conversation_read(user_key, conversation_id)
        return self.conversations.get(conversation_id)

    def start_direct(self, user_key: str, other_user_key: str) -> Tuple[Conversation, bool]:
        """Get the existing direct conversation with another user, or create it."""
        if not other_user_key:
            raise ValidationError('participantId is required')
        return self.conversations.find_or_create_direct(user_key, other_user_key)

    def create_group(self, user_key: str, participant_ids: List[str], name: str,
                     description: Optional[str] = None, avatar: Optional[str] = None,
                     is_public: bool = False) -> Conversation:
        return self.conversations.create_group(user_key, participant_ids or [], name,
                                               description=description, avatar=avatar, is_public=is_public)

    def leave_or_delete(self, user_key: str, conversation_id: str) -> Dict[str, Any]:
        """Delete a direct conversation with its messages, or leave a group."""
        conversation = self.require_participant(user_key, conversation_id)
        if conversation.is_direct:
            self.conversations.delete_conversation(conversation_id)
            removed = self.messages.delete_for_conversation(conversation_id)
            logger.info("Deleted direct conversation %s and %d message(s)", conversation_id, removed)
            self._close_room(conversation_id)
            return {'deleted': True, 'left': False, 'messagesDeleted': removed}
        if self.conversations.remove_participant(conversation_id, user_key):
            self._evict_from_room(conversation_id, user_key)
        return {'deleted': False, 'left': True, 'messagesDeleted': 0}

    def add_participant(self, user_key: str, conversation_id: str, new_user: str,
                        role: ParticipantRole = ParticipantRole.MEMBER) -> bool:
        conversation = self.require_participant(user_key, conversation_id)
        role = ParticipantRole(role)
        if conversation.settings.get('only_admins_can_add_members') or role == ParticipantRole.ADMIN:
            self._require_admin(user_key, conversation, 'add members')
        added = self.conversations.add_participant(conversation_id, new_user, role)
        if added:
            # History from before joining does not count as unread.
            self.messages.mark_read(conversation_id, new_user)
        return added

    def remove_participant(self, user_key: str, conversation_id: str, target: str) -> bool:
        conversation = self.require_participant(user_key, conversation_id)
        if target != user_key:
            self._require_admin(user_key, conversation, 'remove members')
        removed = self.conversations.remove_participant(conversation_id, target)
        if removed:
            self._evict_from_room(conversation_id, target)
        return removed

    def _evict_from_room(self, conversation_id: str, user_key: str):
        """Unsubscribe every socket of a former participant, superseded ones included."""
        if self.rooms is None or self.presence is None:
            return
        sids = [sid for sid in self.rooms.members(conversation_id) if self.presence.get_user(sid) == user_key]
        if not self.rooms.evict(conversation_id, sids):
            return
        logger.info("Evicted %s from room %s", user_key, conversation_id)
        try:
            EventEmitter.emit_to_room(conversation_id, EventEmitter.USER_LEFT_CONVERSATION, {
                'conversationId': conversation_id,
                'userId': user_key,
            })
        except Exception:
            logger.exception("Leave broadcast for %s in %s failed", user_key, conversation_id)

    def _close_room(self, conversation_id: str):
        if self.rooms is not None:
            self.rooms.close(conversation_id)

    def set_role(self, user_key: str, conversation_id: str, target: str, role) -> bool:
        conversation = self.require_participant(user_key, conversation_id)
        if conversation.is_direct:
            raise ValidationError('Roles cannot be changed in direct conversations')
        self._require_admin(user_key, conversation, 'change roles')
        return self.conversations.set_role(conversation_id, target, role)

    def set_muted(self, user_key: str, conversation_id: str, muted: bool, until=None) -> Conversation:
        self.require_participant(user_key, conversation_id)
        self.conversations.set_muted(conversation_id, user_key, muted, until)
        return self.conversations.get(conversation_id)

    def update_group_info(self, user_key: str, conversation_id: str, **fields) -> Conversation:
        conversation = self.require_participant(user_key, conversation_id)
        if conversation.settings.get('only_admins_can_change_info', True):
            self._require_admin(user_key, conversation, 'change group info')
        return self.conversations.update_group_info(conversation_id, **fields)

    def update_settings(self, user_key: str, conversation_id: str, **settings) -> Conversation:
        conversation = self.require_participant(user_key, conversation_id)
        self._require_admin(user_key, conversation, 'change settings')
        return self.conversations.update_settings(conversation_id, **settings)

    # =========================================================================
    # Message Operations
    # =========================================================================

    def list_messages(self, user_key: str, conversation_id: str, page: int = 1,
                      limit: int = 50, mark_read: bool = True) -> Tuple[List[Message], int]:
        """Return one page of messages in chronological order and, by default, mark them read."""
        self.require_participant(user_key, conversation_id)
        messages, total = self.messages.list_page(conversation_id, page=page, page_size=limit)
        if mark_read:
            self.mark_conversation_read(user_key, conversation_id)
        return messages, total

    def send_message(self, user_key: str, conversation_id: str, content: Optional[str] = None,
                     attachments=None, reply_to: Optional[str] = None,
                     temp_id: Optional[str] = None) -> Message:
        """Persist a message, bump the other participants' unread counters, then fan out.

        The message and counters are durable before anything is emitted.
        """
        conversation = self.require_participant(user_key, conversation_id)
        if not conversation.is_direct and conversation.settings.get('only_admins_can_post'):
            self._require_admin(user_key, conversation, 'post in this conversation')

        # Validate before allocating a sequence number so rejected input leaves no trace.
        self.messages.check_draft(content, attachments)
        self.messages.resolve_reply_to(conversation_id, reply_to)

        seq = self.conversations.next_sequence(conversation_id)
        message = self.messages.append(conversation_id, seq, user_key, content=content,
                                       attachments=attachments, reply_to=reply_to)
        recipients = [u for u in conversation.participant_keys() if u != user_key]
        self.conversations.increment_unread(conversation_id, recipients)
        self.conversations.set_last_message(conversation_id, message.message_id, message.created_at)
        logger.info("Message %s (seq %d) sent by %s in %s", message.message_id, seq, user_key, conversation_id)

        self._fan_out_new_message(conversation, message, temp_id)
        return message

    def _fan_out_new_message(self, conversation: Conversation, message: Message, temp_id: Optional[str]):
        conversation_id = conversation.conversation_id
        try:
            EventEmitter.emit_to_room(conversation_id, EventEmitter.MESSAGE_NEW, {
                'message': message.to_dict(),
                'conversationId': conversation_id,
                'tempId': temp_id,
            })
        except Exception:
            logger.exception("Broadcast of message %s failed", message.message_id)

        try:
            counts = self.conversations.get(conversation_id).unread_counts
            for participant in conversation.participant_keys():
                EventEmitter.update_unread_count(participant, conversation_id, counts.get(participant, 0))
        except Exception:
            logger.exception("Unread count push for %s failed", conversation_id)

        if self.bridge is None:
            return
        now = now_utc()
        for participant in conversation.participants:
            if participant.user == message.sender:
                continue
            if participant.muted and (participant.muted_until is None or participant.muted_until > now):
                continue
            if self._is_viewing(participant.user, conversation_id):
                continue
            try:
                self.bridge.notify('newMessage', message.sender, participant.user, conversation_id, message.content)
            except Exception:
                logger.exception("newMessage notification for %s failed", participant.user)

    def _is_viewing(self, user_key: str, conversation_id: str) -> bool:
        if self.presence is None or self.rooms is None:
            return False
        sid = self.presence.get_sid(user_key)
        return sid is not None and self.rooms.is_member(conversation_id, sid)

    def mark_conversation_read(self, user_key: str, conversation_id: str) -> int:
        """Mark everything in the conversation read for the caller and reset their counter.

        Emits ``messages:read`` to the room and the caller, and
        ``messages:read_by_other`` to the author of the latest message
        someone else sent.
        """
        self.require_participant(user_key, conversation_id)
        count = self.messages.mark_read(conversation_id, user_key)
        self.conversations.reset_unread(conversation_id, user_key)

        try:
            payload = {'conversationId': conversation_id, 'userId': user_key}
            caller_sid = self.presence.get_sid(user_key) if self.presence is not None else None
            EventEmitter.emit_to_room(conversation_id, EventEmitter.MESSAGES_READ, payload, skip_sid=caller_sid)
            EventEmitter.emit_to_user(user_key, EventEmitter.MESSAGES_READ, payload)
            EventEmitter.update_unread_count(user_key, conversation_id, 0)
            latest = self.messages.latest(conversation_id, exclude_sender=user_key)
            if latest is not None:
                EventEmitter.emit_to_user(latest.sender, EventEmitter.MESSAGES_READ_BY_OTHER, payload)
        except Exception:
            logger.exception("Read receipt fan-out for %s failed", conversation_id)
        return count

    def mark_message_read(self, user_key: str, message_id: str) -> bool:
        message = self.messages.get(message_id)
        self.require_participant(user_key, message.conversation_id)
        changed = self.messages.mark_one_read(message_id, user_key)
        if changed:
            self.conversations.decrement_unread(message.conversation_id, user_key)
            try:
                EventEmitter.emit_to_user(message.sender, EventEmitter.MESSAGES_READ_BY_OTHER, {
                    'conversationId': message.conversation_id,
                    'userId': user_key,
                    'messageId': message_id,
                })
            except Exception:
                logger.exception("Read receipt push for %s failed", message_id)
        return changed

    def edit_message(self, user_key: str, message_id: str, content: str, now=None) -> Message:
        message = self.messages.get(message_id)
        self.require_participant(user_key, message.conversation_id)
        edited = self.messages.edit(message_id, user_key, content, now=now)
        try:
            EventEmitter.emit_to_room(edited.conversation_id, EventEmitter.MESSAGE_EDITED, {
                'message': edited.to_dict(),
                'conversationId': edited.conversation_id,
            })
        except Exception:
            logger.exception("Broadcast of edit %s failed", message_id)
        return edited

    def delete_message(self, user_key: str, message_id: str) -> Message:
        """Hard-delete a message and repair counters and the last-message pointer."""
        message = self.messages.get(message_id)
        conversation = self.require_participant(user_key, message.conversation_id)
        deleted = self.messages.delete_message(message_id, user_key)
        conversation_id = deleted.conversation_id

        for participant in conversation.participant_keys():
            if participant != deleted.sender and not deleted.is_read_by(participant):
                self.conversations.decrement_unread(conversation_id, participant)

        replacement = self.messages.latest(conversation_id)
        self.conversations.repoint_last_message(conversation_id, deleted.message_id,
                                                replacement.message_id if replacement else None)
        try:
            EventEmitter.emit_to_room(conversation_id, EventEmitter.MESSAGE_DELETED, {
                'messageId': deleted.message_id,
                'conversationId': conversation_id,
            })
        except Exception:
            logger.exception("Broadcast of delete %s failed", message_id)
        return deleted


def get_messaging_service() -> MessagingService:
    """Messaging service bound to the current Flask app."""
    return current_app.extensions['stage']['service']
