"""Message store.

Messages carry a per-conversation ``seq`` allocated by the conversation
store; that sequence is the canonical order. Read receipts are appended
with a guarded ``$push`` so marking read twice changes nothing.
"""
import logging
from datetime import timedelta
from typing import Optional, List, Tuple, Dict, Any

from stage_server.exception import ValidationError, ForbiddenError, NotFoundError, ExpiredError
from stage_server.messaging.models import Message, Attachment, AttachmentType, MessageStatus
from stage_server.repository.base_repository import BaseRepository
from stage_server.repository.conversation_repository import to_object_id
from stage_server.utils.time_utils import now_utc

logger = logging.getLogger(__name__)

MAX_CONTENT_LENGTH = 2000
EDIT_WINDOW_MINUTES = 15


def parse_attachments(raw) -> List[Attachment]:
    if not raw:
        return []
    if not isinstance(raw, list):
        raise ValidationError('attachments must be a list')
    attachments = []
    for item in raw:
        if not isinstance(item, dict) or not item.get('url'):
            raise ValidationError('Each attachment needs a url')
        try:
            attachment_type = AttachmentType(item.get('type'))
        except ValueError:
            allowed = ', '.join(t.value for t in AttachmentType)
            raise ValidationError(f'Attachment type must be one of: {allowed}')
        attachments.append(Attachment(
            attachment_type=attachment_type,
            url=item['url'],
            name=item.get('name'),
            size=item.get('size'),
            mime_type=item.get('mime_type') or item.get('mimeType'),
        ))
    return attachments


class MessageRepository(BaseRepository):
    collection_name = 'messages'

    def __init__(self, db, collection_name=None, max_length: int = MAX_CONTENT_LENGTH,
                 edit_window_minutes: int = EDIT_WINDOW_MINUTES):
        super().__init__(db, collection_name)
        self.max_length = max_length
        self.edit_window = timedelta(minutes=edit_window_minutes)

    def create(self, data):
        return self.collection.insert_one(data)

    def _clean_content(self, content) -> str:
        if content is None:
            return ''
        if not isinstance(content, str):
            raise ValidationError('content must be a string')
        content = content.strip()
        if len(content) > self.max_length:
            raise ValidationError(f'Message content cannot exceed {self.max_length} characters')
        return content

    # =========================================================================
    # Writes
    # =========================================================================

    def check_draft(self, content=None, attachments=None) -> Tuple[str, List[Attachment]]:
        """Validate message input without writing anything."""
        content = self._clean_content(content)
        attachment_list = parse_attachments(attachments)
        if not content and not attachment_list:
            raise ValidationError('Message content or attachments are required')
        return content, attachment_list

    def resolve_reply_to(self, conversation_id: str, reply_to: Optional[str]) -> Optional[str]:
        if not reply_to:
            return None
        try:
            oid = to_object_id(reply_to, 'Message')
        except NotFoundError:
            raise ValidationError('replyTo must reference a message in the same conversation')
        target = self.collection.find_one({'_id': oid, 'conversation': conversation_id}, {'_id': 1})
        if not target:
            raise ValidationError('replyTo must reference a message in the same conversation')
        return str(target['_id'])

    def append(self, conversation_id: str, seq: int, sender: str, content: Optional[str] = None,
               attachments=None, reply_to: Optional[str] = None) -> Message:
        """Persist a new message. The sender has read it from the moment it exists."""
        content, attachment_list = self.check_draft(content, attachments)
        reply_to = self.resolve_reply_to(conversation_id, reply_to)

        now = now_utc()
        message = Message(
            message_id=None,
            conversation_id=conversation_id,
            sender=sender,
            seq=seq,
            content=content,
            attachments=attachment_list,
            read_by=[{'user': sender, 'read_at': now}],
            status=MessageStatus.SENT,
            reply_to=reply_to,
            created_at=now,
            updated_at=now,
        )
        result = self.create(message.to_db_doc())
        message.message_id = str(result.inserted_id)
        return message

    def mark_read(self, conversation_id: str, reader: str, up_to_seq: Optional[int] = None) -> int:
        """Add a receipt for ``reader`` on every message they have not read and did not send."""
        query: Dict[str, Any] = {
            'conversation': conversation_id,
            'sender': {'$ne': reader},
            'read_by.user': {'$ne': reader},
        }
        if up_to_seq is not None:
            query['seq'] = {'$lte': up_to_seq}
        result = self.collection.update_many(
            query,
            {
                '$push': {'read_by': {'user': reader, 'read_at': now_utc()}},
                '$set': {'status': MessageStatus.READ.value},
            },
        )
        return result.modified_count

    def mark_one_read(self, message_id: str, reader: str) -> bool:
        message = self.get(message_id)
        if message.sender == reader:
            return False
        result = self.collection.update_one(
            {'_id': to_object_id(message_id, 'Message'), 'read_by.user': {'$ne': reader}},
            {
                '$push': {'read_by': {'user': reader, 'read_at': now_utc()}},
                '$set': {'status': MessageStatus.READ.value},
            },
        )
        return result.modified_count > 0

    def edit(self, message_id: str, requester: str, new_content: str, now=None) -> Message:
        """Replace a message's content. Sender only, within the edit window."""
        message = self.get(message_id)
        if message.sender != requester:
            raise ForbiddenError('You can only edit your own messages')
        now = now or now_utc()
        if now - message.created_at > self.edit_window:
            minutes = int(self.edit_window.total_seconds() // 60)
            raise ExpiredError(f'Cannot edit messages older than {minutes} minutes')
        content = self._clean_content(new_content)
        if not content:
            raise ValidationError('Message content is required')

        self.collection.update_one(
            {'_id': to_object_id(message_id, 'Message')},
            {'$set': {
                'content': content,
                'metadata.edited': True,
                'metadata.edited_at': now,
                'updated_at': now,
            }},
        )
        return self.get(message_id)

    def delete_message(self, message_id: str, requester: str) -> Message:
        """Hard-delete a message. Sender only; returns the removed message."""
        message = self.get(message_id)
        if message.sender != requester:
            raise ForbiddenError('You can only delete your own messages')
        self.collection.delete_one({'_id': to_object_id(message_id, 'Message')})
        return message

    def delete_for_conversation(self, conversation_id: str) -> int:
        result = self.collection.delete_many({'conversation': conversation_id})
        return result.deleted_count

    # =========================================================================
    # Reads
    # =========================================================================

    def get(self, message_id: str) -> Message:
        doc = self.collection.find_one({'_id': to_object_id(message_id, 'Message')})
        if not doc:
            raise NotFoundError('Message not found')
        return Message.from_doc(doc)

    def list_page(self, conversation_id: str, page: int = 1, page_size: int = 50) -> Tuple[List[Message], int]:
        """One page of messages, oldest first within the page.

        Page 1 holds the newest messages; the fetch runs newest-first and
        the page is reversed before it is returned.
        """
        query = {'conversation': conversation_id}
        total = self.collection.count_documents(query)
        cursor = (self.collection.find(query)
                  .sort('seq', -1)
                  .skip((page - 1) * page_size)
                  .limit(page_size))
        messages = [Message.from_doc(d) for d in cursor]
        messages.reverse()
        return messages, total

    def latest(self, conversation_id: str, exclude_sender: Optional[str] = None) -> Optional[Message]:
        query: Dict[str, Any] = {'conversation': conversation_id}
        if exclude_sender:
            query['sender'] = {'$ne': exclude_sender}
        doc = self.collection.find_one(query, sort=[('seq', -1)])
        return Message.from_doc(doc) if doc else None

    def count_unread(self, conversation_id: str, user_key: str) -> int:
        """Messages in the conversation sent by others that ``user_key`` has no receipt for."""
        return self.collection.count_documents({
            'conversation': conversation_id,
            'sender': {'$ne': user_key},
            'read_by.user': {'$ne': user_key},
        })
