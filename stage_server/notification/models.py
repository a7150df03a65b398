"""Notification data model.

``data`` is a closed union: each notification type has exactly one payload
class carrying only the fields that type needs.
"""
from typing import Optional, Dict, Any, Tuple
from datetime import datetime
from enum import Enum

from stage_server.exception import ValidationError

TITLE_MAX_LENGTH = 100
MESSAGE_MAX_LENGTH = 500


class NotificationType(str, Enum):
    MESSAGE = "message"
    EVENT_INVITATION = "event_invitation"
    BOOKING_REQUEST = "booking_request"
    BOOKING_ACCEPTED = "booking_accepted"
    BOOKING_DECLINED = "booking_declined"
    NEW_REVIEW = "new_review"
    NEW_FOLLOWER = "new_follower"
    EVENT_UPDATED = "event_updated"
    REMINDER = "reminder"


class NotificationPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


def _camel(name: str) -> str:
    head, *rest = name.split('_')
    return head + ''.join(part.title() for part in rest)


def _plain(value):
    return value.isoformat() if isinstance(value, datetime) else value


class NotificationPayload:
    """Base for per-type payloads. Subclasses list their ``fields``."""
    notification_type: NotificationType = None
    fields: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {_camel(f): _plain(getattr(self, f)) for f in self.fields}

    def to_db_doc(self) -> Dict[str, Any]:
        return {f: getattr(self, f) for f in self.fields}

    def __eq__(self, other):
        return type(self) is type(other) and self.to_db_doc() == other.to_db_doc()

    def __repr__(self):
        return f'{type(self).__name__}({self.to_db_doc()!r})'


class NewMessageData(NotificationPayload):
    notification_type = NotificationType.MESSAGE
    fields = ('conversation_id',)

    def __init__(self, conversation_id: str):
        self.conversation_id = conversation_id


class EventInvitationData(NotificationPayload):
    notification_type = NotificationType.EVENT_INVITATION
    fields = ('event_id',)

    def __init__(self, event_id: str):
        self.event_id = event_id


class BookingRequestData(NotificationPayload):
    notification_type = NotificationType.BOOKING_REQUEST
    fields = ('event_id',)

    def __init__(self, event_id: str):
        self.event_id = event_id


class BookingAcceptedData(NotificationPayload):
    notification_type = NotificationType.BOOKING_ACCEPTED
    fields = ('event_id',)

    def __init__(self, event_id: str):
        self.event_id = event_id


class BookingDeclinedData(NotificationPayload):
    notification_type = NotificationType.BOOKING_DECLINED
    fields = ('event_id',)

    def __init__(self, event_id: str):
        self.event_id = event_id


class NewReviewData(NotificationPayload):
    notification_type = NotificationType.NEW_REVIEW
    fields = ('review_id', 'rating')

    def __init__(self, review_id: str, rating: int):
        self.review_id = review_id
        self.rating = rating


class NewFollowerData(NotificationPayload):
    notification_type = NotificationType.NEW_FOLLOWER
    fields = ()

    def __init__(self):
        pass


class EventUpdatedData(NotificationPayload):
    notification_type = NotificationType.EVENT_UPDATED
    fields = ('event_id', 'changes')

    def __init__(self, event_id: str, changes=None):
        self.event_id = event_id
        self.changes = changes


class EventReminderData(NotificationPayload):
    notification_type = NotificationType.REMINDER
    fields = ('event_id', 'event_date')

    def __init__(self, event_id: str, event_date: datetime):
        self.event_id = event_id
        self.event_date = event_date


PAYLOAD_TYPES = {cls.notification_type: cls for cls in (
    NewMessageData, EventInvitationData, BookingRequestData, BookingAcceptedData,
    BookingDeclinedData, NewReviewData, NewFollowerData, EventUpdatedData, EventReminderData,
)}


def payload_from_doc(notification_type, data: Optional[Dict[str, Any]]) -> NotificationPayload:
    cls = PAYLOAD_TYPES[NotificationType(notification_type)]
    data = data or {}
    return cls(**{f: data.get(f) for f in cls.fields})


class Notification:
    """Notification document structure."""

    def __init__(
        self,
        recipient: str,
        title: str,
        message: str,
        data: NotificationPayload,
        sender: Optional[str] = None,
        notification_id: Optional[str] = None,
        read: bool = False,
        read_at: Optional[datetime] = None,
        action_url: Optional[str] = None,
        priority: NotificationPriority = NotificationPriority.NORMAL,
        created_at: Optional[datetime] = None
    ):
        self.notification_id = notification_id
        self.recipient = recipient
        self.sender = sender
        self.title = title
        self.message = message
        self.data = data
        self.read = read
        self.read_at = read_at
        self.action_url = action_url
        self.priority = NotificationPriority(priority)
        self.created_at = created_at

    @property
    def notification_type(self) -> NotificationType:
        return self.data.notification_type

    def validate(self):
        if not self.recipient:
            raise ValidationError('Notification recipient is required')
        if not self.title or len(self.title) > TITLE_MAX_LENGTH:
            raise ValidationError(f'Notification title must be 1-{TITLE_MAX_LENGTH} characters')
        if not self.message or len(self.message) > MESSAGE_MAX_LENGTH:
            raise ValidationError(f'Notification message must be 1-{MESSAGE_MAX_LENGTH} characters')
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            'notificationId': self.notification_id,
            'recipient': self.recipient,
            'sender': self.sender,
            'type': self.notification_type.value,
            'title': self.title,
            'message': self.message,
            'data': self.data.to_dict(),
            'read': self.read,
            'readAt': self.read_at.isoformat() if self.read_at else None,
            'actionUrl': self.action_url,
            'priority': self.priority.value,
            'createdAt': self.created_at.isoformat() if self.created_at else None,
        }

    def to_db_doc(self) -> Dict[str, Any]:
        return {
            'recipient': self.recipient,
            'sender': self.sender,
            'type': self.notification_type.value,
            'title': self.title,
            'message': self.message,
            'data': self.data.to_db_doc(),
            'read': self.read,
            'read_at': self.read_at,
            'action_url': self.action_url,
            'priority': self.priority.value,
            'created_at': self.created_at,
        }

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> 'Notification':
        return cls(
            notification_id=str(doc['_id']) if doc.get('_id') is not None else None,
            recipient=doc.get('recipient'),
            sender=doc.get('sender'),
            title=doc.get('title'),
            message=doc.get('message'),
            data=payload_from_doc(doc.get('type'), doc.get('data')),
            read=doc.get('read', False),
            read_at=doc.get('read_at'),
            action_url=doc.get('action_url'),
            priority=doc.get('priority', NotificationPriority.NORMAL),
            created_at=doc.get('created_at'),
        )
