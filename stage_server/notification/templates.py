"""Notification templates.

Each template turns a domain event into a Notification. The set is closed;
``render`` rejects any other name.

Templates:
- newMessage(sender, recipient, conversation_id, message_preview=None)
- eventInvitation(sender, recipient, event_id, event_name)
- bookingRequest(sender, recipient, event_id, event_name)
- bookingAccepted(recipient, event_id, event_name)
- bookingDeclined(recipient, event_id, event_name)
- newReview(sender, recipient, review_id, rating)
- newFollower(sender, recipient)
- eventUpdated(recipient, event_id, event_name, changes=None)
- eventReminder(recipient, event_id, event_name, event_date)
"""
import logging
from typing import Callable, Dict

from stage_server.exception import ValidationError, UnknownTemplateError
from stage_server.notification.models import (
    Notification, NotificationPriority, NewMessageData, EventInvitationData, BookingRequestData,
    BookingAcceptedData, BookingDeclinedData, NewReviewData, NewFollowerData, EventUpdatedData,
    EventReminderData, MESSAGE_MAX_LENGTH
)
from stage_server.utils.time_utils import get_time_date, parse_datetime

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 100


def _preview(text) -> str:
    text = (text or '').strip()
    if len(text) > PREVIEW_LENGTH:
        return text[:PREVIEW_LENGTH - 3] + '...'
    return text


def _body(text: str) -> str:
    return text if len(text) <= MESSAGE_MAX_LENGTH else text[:MESSAGE_MAX_LENGTH - 3] + '...'


def new_message(sender, recipient, conversation_id, message_preview=None) -> Notification:
    return Notification(
        recipient=recipient,
        sender=sender,
        title='New Message',
        message=_preview(message_preview) or 'You have a new message',
        data=NewMessageData(conversation_id),
        action_url=f'/messages/{conversation_id}',
    )


def event_invitation(sender, recipient, event_id, event_name) -> Notification:
    return Notification(
        recipient=recipient,
        sender=sender,
        title='Event Invitation',
        message=_body(f"You've been invited to perform at {event_name}"),
        data=EventInvitationData(event_id),
        action_url=f'/events/{event_id}',
    )


def booking_request(sender, recipient, event_id, event_name) -> Notification:
    return Notification(
        recipient=recipient,
        sender=sender,
        title='Booking Request',
        message=_body(f'New booking request for {event_name}'),
        data=BookingRequestData(event_id),
        action_url=f'/events/{event_id}',
    )


def booking_accepted(recipient, event_id, event_name) -> Notification:
    return Notification(
        recipient=recipient,
        title='Booking Accepted!',
        message=_body(f'Your booking for {event_name} has been accepted'),
        data=BookingAcceptedData(event_id),
        action_url=f'/events/{event_id}',
    )


def booking_declined(recipient, event_id, event_name) -> Notification:
    return Notification(
        recipient=recipient,
        title='Booking Declined',
        message=_body(f'Your booking for {event_name} has been declined'),
        data=BookingDeclinedData(event_id),
        action_url=f'/events/{event_id}',
    )


def new_review(sender, recipient, review_id, rating) -> Notification:
    try:
        rating = int(rating)
    except (TypeError, ValueError):
        raise ValidationError('rating must be an integer')
    return Notification(
        recipient=recipient,
        sender=sender,
        title='New Review',
        message=f'You received a {rating}-star review',
        data=NewReviewData(review_id, rating),
        action_url='/profile',
    )


def new_follower(sender, recipient) -> Notification:
    return Notification(
        recipient=recipient,
        sender=sender,
        title='New Follower',
        message='Someone started following you',
        data=NewFollowerData(),
        action_url='/profile',
    )


def event_updated(recipient, event_id, event_name, changes=None) -> Notification:
    return Notification(
        recipient=recipient,
        title='Event Updated',
        message=_body(f'{event_name} has been updated'),
        data=EventUpdatedData(event_id, changes),
        action_url=f'/events/{event_id}',
    )


def event_reminder(recipient, event_id, event_name, event_date) -> Notification:
    when = parse_datetime(event_date)
    if when is None:
        raise ValidationError('event_date must be an ISO date or epoch timestamp')
    return Notification(
        recipient=recipient,
        title='Event Reminder',
        message=_body(f'{event_name} is starting on {get_time_date(when, include_time=False)}'),
        data=EventReminderData(event_id, when),
        action_url=f'/events/{event_id}',
        priority=NotificationPriority.HIGH,
    )


TEMPLATES: Dict[str, Callable[..., Notification]] = {
    'newMessage': new_message,
    'eventInvitation': event_invitation,
    'bookingRequest': booking_request,
    'bookingAccepted': booking_accepted,
    'bookingDeclined': booking_declined,
    'newReview': new_review,
    'newFollower': new_follower,
    'eventUpdated': event_updated,
    'eventReminder': event_reminder,
}


SENDER_TEMPLATES = frozenset([
    'newMessage', 'eventInvitation', 'bookingRequest', 'newReview', 'newFollower',
])


def bind_sender(template_name: str, sender: str, args=None, kwargs=None):
    """Template arguments with the sender slot filled by ``sender``.

    For templates that name a sender, ``args`` start at the recipient and a
    ``sender`` keyword is discarded. Other templates get their arguments
    unchanged.
    """
    args = [] if args is None else args
    kwargs = {} if kwargs is None else kwargs
    if not isinstance(args, list) or not isinstance(kwargs, dict):
        raise ValidationError('args must be a list and kwargs an object')
    args, kwargs = list(args), dict(kwargs)
    if template_name in SENDER_TEMPLATES:
        kwargs.pop('sender', None)
        args.insert(0, sender)
    return args, kwargs


def render(template_name: str, *args, **kwargs) -> Notification:
    """Build the Notification for a named template."""
    builder = TEMPLATES.get(template_name)
    if builder is None:
        raise UnknownTemplateError(template_name)
    try:
        notification = builder(*args, **kwargs)
    except TypeError as e:
        raise ValidationError(f'Invalid arguments for template "{template_name}": {e}')
    return notification.validate()
