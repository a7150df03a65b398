"""Messaging data models.

Collections:
- conversations: direct (exactly two participants) and group conversations,
  with per-participant unread counters
- messages: individual messages with read receipts

Documents are stored snake_case; ``to_dict`` renders the camelCase shape
sent to clients.
"""
from typing import Optional, Dict, Any, List
from datetime import datetime
from enum import Enum


class ConversationType(str, Enum):
    DIRECT = "direct"      # 1-1 conversation
    GROUP = "group"        # Group chat


class ParticipantRole(str, Enum):
    ADMIN = "admin"
    MEMBER = "member"


class MessageStatus(str, Enum):
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"


class AttachmentType(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"


GROUP_NAME_MAX_LENGTH = 100
GROUP_DESCRIPTION_MAX_LENGTH = 500


def direct_pair_key(user_a: str, user_b: str) -> str:
    """Order-independent key identifying the direct conversation between two users."""
    low, high = sorted([str(user_a), str(user_b)])
    return f"direct:{low}:{high}"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class Participant:
    """One entry of a conversation roster."""

    def __init__(
        self,
        user: str,
        role: ParticipantRole = ParticipantRole.MEMBER,
        joined_at: Optional[datetime] = None,
        last_seen: Optional[datetime] = None,
        muted: bool = False,
        muted_until: Optional[datetime] = None
    ):
        self.user = user
        self.role = ParticipantRole(role)
        self.joined_at = joined_at
        self.last_seen = last_seen
        self.muted = muted
        self.muted_until = muted_until

    def to_dict(self) -> Dict[str, Any]:
        return {
            'user': self.user,
            'role': self.role.value,
            'joinedAt': _iso(self.joined_at),
            'lastSeen': _iso(self.last_seen),
            'notifications': {
                'muted': self.muted,
                'mutedUntil': _iso(self.muted_until),
            },
        }

    def to_db_doc(self) -> Dict[str, Any]:
        return {
            'user': self.user,
            'role': self.role.value,
            'joined_at': self.joined_at,
            'last_seen': self.last_seen,
            'muted': self.muted,
            'muted_until': self.muted_until,
        }

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> 'Participant':
        return cls(
            user=doc.get('user'),
            role=doc.get('role', ParticipantRole.MEMBER),
            joined_at=doc.get('joined_at'),
            last_seen=doc.get('last_seen'),
            muted=doc.get('muted', False),
            muted_until=doc.get('muted_until'),
        )


class Conversation:
    """Conversation document structure."""

    def __init__(
        self,
        conversation_id: Optional[str],
        conversation_type: ConversationType,
        participants: List[Participant],
        pair_key: Optional[str] = None,
        group_info: Optional[Dict[str, Any]] = None,
        last_message: Optional[str] = None,
        unread_counts: Optional[Dict[str, int]] = None,
        message_seq: int = 0,
        settings: Optional[Dict[str, Any]] = None,
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None
    ):
        self.conversation_id = conversation_id
        self.conversation_type = ConversationType(conversation_type)
        self.participants = participants
        self.pair_key = pair_key
        self.group_info = group_info
        self.last_message = last_message
        self.unread_counts = unread_counts if unread_counts is not None else {p.user: 0 for p in participants}
        self.message_seq = message_seq
        self.settings = settings or default_settings()
        self.created_at = created_at
        self.updated_at = updated_at

    @property
    def is_direct(self) -> bool:
        return self.conversation_type == ConversationType.DIRECT

    def participant(self, user_key: str) -> Optional[Participant]:
        for p in self.participants:
            if p.user == user_key:
                return p
        return None

    def participant_keys(self) -> List[str]:
        return [p.user for p in self.participants]

    def is_admin(self, user_key: str) -> bool:
        p = self.participant(user_key)
        return p is not None and p.role == ParticipantRole.ADMIN

    def to_dict(self, viewer: Optional[str] = None) -> Dict[str, Any]:
        data = {
            'conversationId': self.conversation_id,
            'type': self.conversation_type.value,
            'participants': [p.to_dict() for p in self.participants],
            'lastMessage': self.last_message,
            'settings': {
                'onlyAdminsCanPost': self.settings.get('only_admins_can_post', False),
                'onlyAdminsCanAddMembers': self.settings.get('only_admins_can_add_members', False),
                'onlyAdminsCanChangeInfo': self.settings.get('only_admins_can_change_info', True),
            },
            'createdAt': _iso(self.created_at),
            'updatedAt': _iso(self.updated_at),
        }
        if self.group_info is not None:
            data['groupInfo'] = {
                'name': self.group_info.get('name'),
                'description': self.group_info.get('description'),
                'avatar': self.group_info.get('avatar'),
                'isPublic': self.group_info.get('is_public', False),
            }
        if viewer is not None:
            data['unreadCount'] = self.unread_counts.get(viewer, 0)
        return data

    def to_db_doc(self) -> Dict[str, Any]:
        doc = {
            'type': self.conversation_type.value,
            'participants': [p.to_db_doc() for p in self.participants],
            'pair_key': self.pair_key,
            'group_info': self.group_info,
            'last_message': self.last_message,
            'unread_counts': dict(self.unread_counts),
            'message_seq': self.message_seq,
            'settings': dict(self.settings),
            'created_at': self.created_at,
            'updated_at': self.updated_at,
        }
        return doc

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> 'Conversation':
        return cls(
            conversation_id=str(doc['_id']) if doc.get('_id') is not None else None,
            conversation_type=doc.get('type', ConversationType.DIRECT),
            participants=[Participant.from_doc(p) for p in doc.get('participants', [])],
            pair_key=doc.get('pair_key'),
            group_info=doc.get('group_info'),
            last_message=doc.get('last_message'),
            unread_counts=doc.get('unread_counts') or {},
            message_seq=doc.get('message_seq', 0),
            settings=doc.get('settings'),
            created_at=doc.get('created_at'),
            updated_at=doc.get('updated_at'),
        )


def default_settings() -> Dict[str, Any]:
    return {
        'only_admins_can_post': False,
        'only_admins_can_add_members': False,
        'only_admins_can_change_info': True,
    }


class Attachment:
    """Typed media reference; the file itself lives in upload storage."""

    def __init__(self, attachment_type: AttachmentType, url: str, name: Optional[str] = None,
                 size: Optional[int] = None, mime_type: Optional[str] = None):
        self.attachment_type = AttachmentType(attachment_type)
        self.url = url
        self.name = name
        self.size = size
        self.mime_type = mime_type

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': self.attachment_type.value,
            'url': self.url,
            'name': self.name,
            'size': self.size,
            'mimeType': self.mime_type,
        }

    def to_db_doc(self) -> Dict[str, Any]:
        return {
            'type': self.attachment_type.value,
            'url': self.url,
            'name': self.name,
            'size': self.size,
            'mime_type': self.mime_type,
        }

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> 'Attachment':
        return cls(
            attachment_type=doc.get('type'),
            url=doc.get('url'),
            name=doc.get('name'),
            size=doc.get('size'),
            mime_type=doc.get('mime_type') or doc.get('mimeType'),
        )


class Message:
    """Message document structure."""

    def __init__(
        self,
        message_id: Optional[str],
        conversation_id: str,
        sender: str,
        seq: int,
        content: str = '',
        attachments: Optional[List[Attachment]] = None,
        read_by: Optional[List[Dict[str, Any]]] = None,
        status: MessageStatus = MessageStatus.SENT,
        reply_to: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None
    ):
        self.message_id = message_id
        self.conversation_id = conversation_id
        self.sender = sender
        self.seq = seq
        self.content = content
        self.attachments = attachments or []
        self.read_by = read_by or []
        self.status = MessageStatus(status)
        self.reply_to = reply_to
        self.metadata = metadata or {'edited': False, 'edited_at': None}
        self.created_at = created_at
        self.updated_at = updated_at

    def is_read_by(self, user_key: str) -> bool:
        return any(r.get('user') == user_key for r in self.read_by)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'messageId': self.message_id,
            'conversationId': self.conversation_id,
            'sender': self.sender,
            'seq': self.seq,
            'content': self.content,
            'attachments': [a.to_dict() for a in self.attachments],
            'readBy': [{'user': r.get('user'), 'readAt': _iso(r.get('read_at'))} for r in self.read_by],
            'status': self.status.value,
            'replyTo': self.reply_to,
            'metadata': {
                'edited': self.metadata.get('edited', False),
                'editedAt': _iso(self.metadata.get('edited_at')),
            },
            'createdAt': _iso(self.created_at),
            'updatedAt': _iso(self.updated_at),
        }

    def to_db_doc(self) -> Dict[str, Any]:
        return {
            'conversation': self.conversation_id,
            'sender': self.sender,
            'seq': self.seq,
            'content': self.content,
            'attachments': [a.to_db_doc() for a in self.attachments],
            'read_by': list(self.read_by),
            'status': self.status.value,
            'reply_to': self.reply_to,
            'metadata': dict(self.metadata),
            'created_at': self.created_at,
            'updated_at': self.updated_at,
        }

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> 'Message':
        return cls(
            message_id=str(doc['_id']) if doc.get('_id') is not None else None,
            conversation_id=doc.get('conversation'),
            sender=doc.get('sender'),
            seq=doc.get('seq', 0),
            content=doc.get('content', ''),
            attachments=[Attachment.from_doc(a) for a in doc.get('attachments', [])],
            read_by=doc.get('read_by', []),
            status=doc.get('status', MessageStatus.SENT),
            reply_to=doc.get('reply_to'),
            metadata=doc.get('metadata'),
            created_at=doc.get('created_at'),
            updated_at=doc.get('updated_at'),
        )
