from datetime import datetime, timedelta
from unittest.mock import patch

import pytest

from stage_server.exception import NotFoundError, UnknownTemplateError, ValidationError
from stage_server.notification.bridge import NotificationBridge
from stage_server.notification.models import (
    Notification, NotificationPriority, NotificationType, NewReviewData, EventReminderData
)
from stage_server.notification.templates import TEMPLATES, bind_sender, render
from stage_server.utils.time_utils import now_utc


class TestTemplates:

    def test_new_message_preview_is_truncated(self):
        notification = render('newMessage', 'alice', 'bob', 'conv-1', 'x' * 150)

        assert notification.notification_type == NotificationType.MESSAGE
        assert notification.title == 'New Message'
        assert len(notification.message) == 100
        assert notification.message.endswith('...')
        assert notification.action_url == '/messages/conv-1'
        assert notification.data.to_dict() == {'conversationId': 'conv-1'}

    def test_new_message_without_preview(self):
        assert render('newMessage', 'alice', 'bob', 'conv-1').message == 'You have a new message'

    def test_booking_accepted(self):
        notification = render('bookingAccepted', 'bob', 'evt-9', 'Jazz Night')

        assert notification.title == 'Booking Accepted!'
        assert 'Jazz Night' in notification.message
        assert notification.sender is None
        assert notification.action_url == '/events/evt-9'

    def test_new_review_payload(self):
        notification = render('newReview', 'alice', 'bob', 'rev-1', '4')

        assert notification.data == NewReviewData('rev-1', 4)
        assert notification.message == 'You received a 4-star review'

    def test_event_reminder_is_high_priority(self):
        notification = render('eventReminder', 'bob', 'evt-1', 'Gala', '2026-05-01T20:00:00Z')

        assert notification.priority == NotificationPriority.HIGH
        assert notification.notification_type == NotificationType.REMINDER
        assert notification.message == 'Gala is starting on 2026-05-01'
        assert notification.data == EventReminderData('evt-1', datetime(2026, 5, 1, 20, 0))

    def test_every_template_is_registered(self):
        assert set(TEMPLATES) == {
            'newMessage', 'eventInvitation', 'bookingRequest', 'bookingAccepted', 'bookingDeclined',
            'newReview', 'newFollower', 'eventUpdated', 'eventReminder',
        }

    def test_unknown_template(self):
        with pytest.raises(UnknownTemplateError) as exc:
            render('fooBar', 'bob')
        assert str(exc.value) == 'Notification template "fooBar" not found'

    def test_wrong_arguments_are_validation_errors(self):
        with pytest.raises(ValidationError):
            render('bookingAccepted', 'bob')

    def test_recipient_required(self):
        with pytest.raises(ValidationError):
            render('newFollower', 'alice', '')

    def test_bind_sender(self):
        assert bind_sender('newFollower', 'alice', ['bob'], {'sender': 'someone'}) == (['alice', 'bob'], {})
        assert bind_sender('bookingAccepted', 'alice', ['bob', 'evt-1', 'Gala']) == (['bob', 'evt-1', 'Gala'], {})
        with pytest.raises(ValidationError):
            bind_sender('newFollower', 'alice', 'bob')


class TestNotificationRepository:

    def test_insert_list_and_count(self, notification_repo):
        for i in range(3):
            notification_repo.insert(render('newFollower', f'fan{i}', 'bob'))
        notification_repo.insert(render('newFollower', 'fan', 'carol'))

        listed, total = notification_repo.list_for_user('bob', limit=2)
        assert total == 3
        assert len(listed) == 2
        assert notification_repo.unread_count('bob') == 3

    def test_mark_one_read_is_recipient_scoped(self, notification_repo):
        notification = notification_repo.insert(render('newFollower', 'fan', 'bob'))

        with pytest.raises(NotFoundError):
            notification_repo.mark_one_read(notification.notification_id, 'mallory')
        assert notification_repo.mark_one_read(notification.notification_id, 'bob') is True
        assert notification_repo.mark_one_read(notification.notification_id, 'bob') is False
        assert notification_repo.unread_count('bob') == 0

    def test_mark_all_read_and_unread_filter(self, notification_repo):
        notification_repo.insert(render('newFollower', 'a', 'bob'))
        notification_repo.insert(render('newFollower', 'b', 'bob'))

        assert notification_repo.mark_all_read('bob') == 2
        assert notification_repo.list_for_user('bob', unread_only=True) == ([], 0)

    def test_expired_notifications_are_hidden(self, notification_repo):
        old = render('newFollower', 'fan', 'bob')
        old.created_at = now_utc() - timedelta(days=31)
        notification_repo.insert(old)
        notification_repo.insert(render('newFollower', 'fan', 'bob'))

        assert notification_repo.unread_count('bob') == 1
        with pytest.raises(NotFoundError):
            notification_repo.get(old.notification_id, 'bob')

    def test_delete(self, notification_repo):
        notification = notification_repo.insert(render('newFollower', 'fan', 'bob'))

        with pytest.raises(NotFoundError):
            notification_repo.delete_one(notification.notification_id, 'mallory')
        assert notification_repo.delete_one(notification.notification_id, 'bob') is True

    def test_round_trip_keeps_payload_type(self, notification_repo):
        stored = notification_repo.insert(render('eventUpdated', 'bob', 'evt-1', 'Gala', {'venue': 'Hall B'}))

        loaded = notification_repo.get(stored.notification_id, 'bob')
        assert isinstance(loaded, Notification)
        assert loaded.data == stored.data


class TestNotificationBridge:

    def test_offline_recipient_is_persisted_not_pushed(self, notification_repo, presence):
        bridge = NotificationBridge(notification_repo, presence)

        with patch('stage_server.notification.bridge.EventEmitter.emit_to_user') as push:
            notification = bridge.notify('newFollower', 'alice', 'bob')

        push.assert_not_called()
        assert notification.notification_id is not None
        assert bridge.unread_count('bob') == 1

    def test_online_recipient_gets_push_and_count(self, notification_repo, presence):
        presence.register('bob', 'sid-bob')
        bridge = NotificationBridge(notification_repo, presence)

        with patch('stage_server.notification.bridge.EventEmitter.emit_to_user', return_value=True) as push, \
                patch('stage_server.notification.bridge.EventEmitter.update_notification_count') as count:
            bridge.notify('newFollower', 'alice', 'bob')

        user, event, payload = push.call_args[0]
        assert (user, event) == ('bob', 'notification:new')
        assert payload['type'] == 'notification'
        assert payload['data']['title'] == 'New Follower'
        count.assert_called_once_with('bob', 1)

    def test_push_failure_keeps_record(self, notification_repo, presence):
        presence.register('bob', 'sid-bob')
        bridge = NotificationBridge(notification_repo, presence)

        with patch('stage_server.notification.bridge.EventEmitter.emit_to_user', side_effect=RuntimeError('down')):
            bridge.notify('newFollower', 'alice', 'bob')

        assert bridge.unread_count('bob') == 1

    def test_unknown_template_persists_nothing(self, notification_repo, presence):
        bridge = NotificationBridge(notification_repo, presence)

        with pytest.raises(UnknownTemplateError):
            bridge.notify('fooBar', 'bob')
        assert notification_repo.collection.count_documents({}) == 0

    def test_notify_many_counts_failures(self, notification_repo, presence):
        bridge = NotificationBridge(notification_repo, presence)

        result = bridge.notify_many([
            {'template': 'newFollower', 'args': ['alice', 'bob']},
            {'template': 'fooBar', 'args': ['bob']},
            render('bookingDeclined', 'bob', 'evt-1', 'Gala'),
        ])

        assert result == {'successful': 2, 'failed': 1}
        assert bridge.unread_count('bob') == 2
