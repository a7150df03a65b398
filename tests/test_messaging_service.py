from datetime import timedelta
from unittest.mock import patch

import pytest

from stage_server.exception import ExpiredError, ForbiddenError, NotFoundError, ValidationError
from stage_server.utils.time_utils import now_utc


def assert_unread_consistent(service, conversation_id):
    """Stored counters must equal the number of unread messages from others."""
    conversation = service.conversations.get(conversation_id)
    for user in conversation.participant_keys():
        assert service.conversations.get_unread(conversation_id, user) == \
            service.messages.count_unread(conversation_id, user), user


@pytest.fixture
def direct(service):
    conv, _ = service.start_direct('alice', 'bob')
    return conv.conversation_id


@pytest.fixture
def group(service):
    return service.create_group('alice', ['bob', 'carol'], 'Band').conversation_id


class TestDirectConversations:

    def test_start_direct_is_find_or_create(self, service):
        first, created = service.start_direct('alice', 'bob')
        second, created_again = service.start_direct('bob', 'alice')

        assert (created, created_again) == (True, False)
        assert first.conversation_id == second.conversation_id

    def test_participant_id_required(self, service):
        with pytest.raises(ValidationError):
            service.start_direct('alice', '')

    def test_outsider_is_forbidden(self, service, direct):
        with pytest.raises(ForbiddenError):
            service.send_message('mallory', direct, 'let me in')
        with pytest.raises(ForbiddenError):
            service.list_messages('mallory', direct)

    def test_unknown_conversation(self, service):
        with pytest.raises(NotFoundError):
            service.get_conversation('alice', '000000000000000000000000')

    def test_delete_removes_messages(self, service, direct):
        service.send_message('alice', direct, 'one')
        service.send_message('bob', direct, 'two')

        result = service.leave_or_delete('bob', direct)

        assert result == {'deleted': True, 'left': False, 'messagesDeleted': 2}
        with pytest.raises(NotFoundError):
            service.conversations.get(direct)
        assert service.messages.collection.count_documents({}) == 0


class TestSendAndRead:

    def test_send_updates_counters_and_last_message(self, service, direct):
        message = service.send_message('alice', direct, 'hello')

        conversation = service.conversations.get(direct)
        assert conversation.last_message == message.message_id
        assert conversation.unread_counts == {'alice': 0, 'bob': 1}
        assert message.seq == 1
        assert_unread_consistent(service, direct)

    def test_invalid_message_leaves_no_trace(self, service, direct):
        with pytest.raises(ValidationError):
            service.send_message('alice', direct, 'x' * 2001)

        conversation = service.conversations.get(direct)
        assert conversation.message_seq == 0
        assert conversation.unread_counts['bob'] == 0
        assert conversation.last_message is None

    def test_listing_marks_read(self, service, direct):
        service.send_message('alice', direct, 'one')
        service.send_message('alice', direct, 'two')

        messages, total = service.list_messages('bob', direct)

        assert total == 2
        assert [m.content for m in messages] == ['one', 'two']
        assert service.conversations.get_unread(direct, 'bob') == 0
        assert_unread_consistent(service, direct)

    def test_listing_without_marking(self, service, direct):
        service.send_message('alice', direct, 'one')

        service.list_messages('bob', direct, mark_read=False)
        assert service.conversations.get_unread(direct, 'bob') == 1

    def test_mark_single_message_read(self, service, direct):
        first = service.send_message('alice', direct, 'one')
        service.send_message('alice', direct, 'two')

        assert service.mark_message_read('bob', first.message_id) is True
        assert service.mark_message_read('bob', first.message_id) is False
        assert service.conversations.get_unread(direct, 'bob') == 1
        assert_unread_consistent(service, direct)

    def test_opening_conversation_reads_it(self, service, direct):
        service.send_message('alice', direct, 'one')

        conversation = service.get_conversation('bob', direct)
        assert conversation.unread_counts['bob'] == 0

    def test_counters_stay_consistent_in_groups(self, service, group):
        service.send_message('alice', group, 'a1')
        service.send_message('bob', group, 'b1')
        service.send_message('carol', group, 'c1')
        service.mark_conversation_read('bob', group)
        service.send_message('alice', group, 'a2')

        assert service.conversations.get(group).unread_counts == {'alice': 2, 'bob': 1, 'carol': 3}
        assert_unread_consistent(service, group)


class TestEditDelete:

    def test_edit_by_sender(self, service, direct):
        message = service.send_message('alice', direct, 'draft')

        assert service.edit_message('alice', message.message_id, 'final').content == 'final'
        with pytest.raises(ForbiddenError):
            service.edit_message('bob', message.message_id, 'hijack')

    def test_edit_window(self, service, direct):
        message = service.send_message('alice', direct, 'draft')

        with pytest.raises(ExpiredError):
            service.edit_message('alice', message.message_id, 'late',
                                 now=message.created_at + timedelta(minutes=16))

    def test_delete_repairs_counters_and_last_message(self, service, direct):
        first = service.send_message('alice', direct, 'one')
        second = service.send_message('alice', direct, 'two')

        service.delete_message('alice', second.message_id)

        conversation = service.conversations.get(direct)
        assert conversation.last_message == first.message_id
        assert conversation.unread_counts['bob'] == 1
        assert_unread_consistent(service, direct)

    def test_deleting_middle_message_keeps_the_rest_in_order(self, service, direct):
        first = service.send_message('alice', direct, 'one')
        second = service.send_message('alice', direct, 'two')
        third = service.send_message('alice', direct, 'three')

        service.delete_message('alice', second.message_id)

        page, total = service.messages.list_page(direct)
        assert total == 2
        assert [m.message_id for m in page] == [first.message_id, third.message_id]
        assert [m.seq for m in page] == [1, 3]
        conversation = service.conversations.get(direct)
        assert conversation.last_message == third.message_id
        assert conversation.unread_counts['bob'] == 2
        assert_unread_consistent(service, direct)

    def test_deleting_read_message_keeps_counter(self, service, direct):
        first = service.send_message('alice', direct, 'one')
        service.send_message('alice', direct, 'two')
        service.mark_message_read('bob', first.message_id)

        service.delete_message('alice', first.message_id)

        assert service.conversations.get_unread(direct, 'bob') == 1
        assert_unread_consistent(service, direct)

    def test_deleting_only_message_clears_last_message(self, service, direct):
        message = service.send_message('alice', direct, 'only')

        service.delete_message('alice', message.message_id)

        assert service.conversations.get(direct).last_message is None

    def test_only_sender_deletes(self, service, direct):
        message = service.send_message('alice', direct, 'mine')

        with pytest.raises(ForbiddenError):
            service.delete_message('bob', message.message_id)


class TestGroupAdministration:

    def test_admin_only_posting(self, service, group):
        service.update_settings('alice', group, only_admins_can_post=True)

        with pytest.raises(ForbiddenError):
            service.send_message('bob', group, 'hi')
        assert service.send_message('alice', group, 'announcement').content == 'announcement'

    def test_settings_require_admin(self, service, group):
        with pytest.raises(ForbiddenError):
            service.update_settings('bob', group, only_admins_can_post=True)

    def test_member_added_with_history_read(self, service, group):
        service.send_message('alice', group, 'before dave')

        assert service.add_participant('bob', group, 'dave') is True
        assert service.conversations.get_unread(group, 'dave') == 0
        assert_unread_consistent(service, group)

    def test_adding_admin_needs_admin(self, service, group):
        with pytest.raises(ForbiddenError):
            service.add_participant('bob', group, 'dave', role='admin')

    def test_remove_others_needs_admin_but_leaving_does_not(self, service, group):
        with pytest.raises(ForbiddenError):
            service.remove_participant('bob', group, 'carol')

        assert service.remove_participant('bob', group, 'bob') is True
        assert service.remove_participant('alice', group, 'carol') is True
        assert service.conversations.get(group).participant_keys() == ['alice']

    def test_leave_group(self, service, group):
        assert service.leave_or_delete('carol', group) == {'deleted': False, 'left': True, 'messagesDeleted': 0}
        assert 'carol' not in service.conversations.get(group).participant_keys()

    def test_roles(self, service, group, direct):
        assert service.set_role('alice', group, 'bob', 'admin') is True
        with pytest.raises(ValidationError):
            service.set_role('alice', direct, 'bob', 'admin')
        with pytest.raises(ForbiddenError):
            service.set_role('carol', group, 'bob', 'member')

    def test_group_info_defaults_to_admin_only(self, service, group):
        with pytest.raises(ForbiddenError):
            service.update_group_info('bob', group, name='Renamed')
        assert service.update_group_info('alice', group, name='Renamed').group_info['name'] == 'Renamed'


class TestNotificationFanOut:

    def test_offline_recipient_gets_new_message_notification(self, service, direct):
        with patch.object(service.bridge, 'notify') as notify:
            service.send_message('alice', direct, 'ping')

        notify.assert_called_once_with('newMessage', 'alice', 'bob', direct, 'ping')

    def test_muted_recipient_is_skipped(self, service, direct):
        service.set_muted('bob', direct, True)

        with patch.object(service.bridge, 'notify') as notify:
            service.send_message('alice', direct, 'ping')

        notify.assert_not_called()
        assert service.conversations.get_unread(direct, 'bob') == 1

    def test_expired_mute_notifies_again(self, service, direct):
        service.set_muted('bob', direct, True, until=now_utc() - timedelta(minutes=1))

        with patch.object(service.bridge, 'notify') as notify:
            service.send_message('alice', direct, 'ping')

        notify.assert_called_once()

    def test_recipient_viewing_the_room_is_skipped(self, service, direct, stage):
        stage['presence'].register('bob', 'sid-bob')
        stage['rooms'].join(direct, 'sid-bob')

        with patch.object(service.bridge, 'notify') as notify:
            service.send_message('alice', direct, 'ping')

        notify.assert_not_called()

    def test_notification_failure_does_not_fail_send(self, service, direct):
        with patch.object(service.bridge, 'notify', side_effect=RuntimeError('down')):
            message = service.send_message('alice', direct, 'ping')

        assert service.messages.get(message.message_id).content == 'ping'
        assert service.conversations.get_unread(direct, 'bob') == 1

    def test_broadcast_failure_does_not_fail_send(self, service, direct):
        with patch('stage_server.messaging.service.EventEmitter.emit_to_room', side_effect=RuntimeError('down')):
            message = service.send_message('alice', direct, 'ping')

        assert service.conversations.get(direct).last_message == message.message_id
