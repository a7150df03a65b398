import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from unittest.mock import patch

import pytest
from pymongo.errors import DuplicateKeyError

from stage_server.exception import NotFoundError, ValidationError
from stage_server.messaging.models import ConversationType, ParticipantRole, direct_pair_key
from stage_server.utils.time_utils import now_utc


class TestFindOrCreateDirect:

    def test_creates_once_then_returns_existing(self, conversation_repo):
        first, created = conversation_repo.find_or_create_direct('alice', 'bob')
        second, created_again = conversation_repo.find_or_create_direct('alice', 'bob')

        assert created is True
        assert created_again is False
        assert first.conversation_id == second.conversation_id
        assert conversation_repo.collection.count_documents({}) == 1

    def test_pair_is_order_independent(self, conversation_repo):
        ab, _ = conversation_repo.find_or_create_direct('alice', 'bob')
        ba, created = conversation_repo.find_or_create_direct('bob', 'alice')

        assert created is False
        assert ab.conversation_id == ba.conversation_id
        assert ab.pair_key == direct_pair_key('bob', 'alice')

    def test_has_exactly_two_participants_and_zeroed_counters(self, conversation_repo):
        conv, _ = conversation_repo.find_or_create_direct('alice', 'bob')

        assert conv.conversation_type == ConversationType.DIRECT
        assert sorted(conv.participant_keys()) == ['alice', 'bob']
        assert conv.unread_counts == {'alice': 0, 'bob': 0}
        assert conv.message_seq == 0

    def test_self_conversation_rejected(self, conversation_repo):
        with pytest.raises(ValidationError):
            conversation_repo.find_or_create_direct('alice', 'alice')
        assert conversation_repo.collection.count_documents({}) == 0

    def test_lost_race_rereads_winner(self, conversation_repo):
        winner, _ = conversation_repo.find_or_create_direct('alice', 'bob')

        with patch.object(conversation_repo.collection, 'update_one', side_effect=DuplicateKeyError('dup')):
            conv, created = conversation_repo.find_or_create_direct('bob', 'alice')

        assert created is False
        assert conv.conversation_id == winner.conversation_id


class TestGroups:

    def test_creator_is_admin(self, conversation_repo):
        group = conversation_repo.create_group('alice', ['bob', 'carol', 'bob'], 'Band')

        assert group.conversation_type == ConversationType.GROUP
        assert group.participant_keys() == ['alice', 'bob', 'carol']
        assert group.is_admin('alice')
        assert not group.is_admin('bob')
        assert conversation_repo.get(group.conversation_id).group_info['name'] == 'Band'

    def test_group_needs_name_and_members(self, conversation_repo):
        with pytest.raises(ValidationError):
            conversation_repo.create_group('alice', ['bob'], '   ')
        with pytest.raises(ValidationError):
            conversation_repo.create_group('alice', ['alice'], 'Solo')

    def test_add_and_remove_participant(self, conversation_repo):
        group = conversation_repo.create_group('alice', ['bob'], 'Band')

        assert conversation_repo.add_participant(group.conversation_id, 'carol') is True
        assert conversation_repo.add_participant(group.conversation_id, 'carol') is False
        assert conversation_repo.get_unread(group.conversation_id, 'carol') == 0

        assert conversation_repo.remove_participant(group.conversation_id, 'carol') is True
        reloaded = conversation_repo.get(group.conversation_id)
        assert 'carol' not in reloaded.participant_keys()
        assert 'carol' not in reloaded.unread_counts

    def test_direct_roster_is_fixed(self, conversation_repo):
        conv, _ = conversation_repo.find_or_create_direct('alice', 'bob')

        with pytest.raises(ValidationError):
            conversation_repo.add_participant(conv.conversation_id, 'carol')
        with pytest.raises(ValidationError):
            conversation_repo.remove_participant(conv.conversation_id, 'bob')
        assert len(conversation_repo.get(conv.conversation_id).participants) == 2

    def test_set_role_and_mute(self, conversation_repo):
        group = conversation_repo.create_group('alice', ['bob'], 'Band')

        assert conversation_repo.set_role(group.conversation_id, 'bob', ParticipantRole.ADMIN) is True
        assert conversation_repo.set_role(group.conversation_id, 'bob', 'admin') is False
        conversation_repo.set_muted(group.conversation_id, 'bob', True)

        bob = conversation_repo.get(group.conversation_id).participant('bob')
        assert bob.role == ParticipantRole.ADMIN
        assert bob.muted is True

    def test_update_settings_rejects_unknown_keys(self, conversation_repo):
        group = conversation_repo.create_group('alice', ['bob'], 'Band')

        updated = conversation_repo.update_settings(group.conversation_id, only_admins_can_post=True)
        assert updated.settings['only_admins_can_post'] is True
        with pytest.raises(ValidationError):
            conversation_repo.update_settings(group.conversation_id, allow_everything=True)


class TestCounters:

    def test_sequence_is_monotonic(self, conversation_repo):
        conv, _ = conversation_repo.find_or_create_direct('alice', 'bob')

        seqs = [conversation_repo.next_sequence(conv.conversation_id) for _ in range(3)]
        assert seqs == [1, 2, 3]

    def test_unread_increment_decrement_reset(self, conversation_repo):
        conv, _ = conversation_repo.find_or_create_direct('alice', 'bob')
        cid = conv.conversation_id

        conversation_repo.increment_unread(cid, ['bob'])
        conversation_repo.increment_unread(cid, ['bob'])
        assert conversation_repo.get_unread(cid, 'bob') == 2
        assert conversation_repo.get_unread(cid, 'alice') == 0

        assert conversation_repo.decrement_unread(cid, 'bob') is True
        conversation_repo.reset_unread(cid, 'bob')
        assert conversation_repo.get_unread(cid, 'bob') == 0
        assert conversation_repo.decrement_unread(cid, 'bob') is False
        assert conversation_repo.get_unread(cid, 'bob') == 0

    def test_repoint_only_when_pointing_at_deleted(self, conversation_repo):
        conv, _ = conversation_repo.find_or_create_direct('alice', 'bob')
        cid = conv.conversation_id
        conversation_repo.set_last_message(cid, 'm2')

        assert conversation_repo.repoint_last_message(cid, 'm1', 'm0') is False
        assert conversation_repo.repoint_last_message(cid, 'm2', 'm1') is True
        assert conversation_repo.get(cid).last_message == 'm1'

    def test_user_keys_with_dots_rejected(self, conversation_repo):
        with pytest.raises(ValidationError):
            conversation_repo.find_or_create_direct('alice', 'b.ob')


class TestConcurrency:

    WORKERS = 8

    def test_parallel_find_or_create_yields_one_conversation(self, conversation_repo):
        barrier = threading.Barrier(self.WORKERS)

        def _worker(i):
            barrier.wait(timeout=5)
            pair = ('alice', 'bob') if i % 2 else ('bob', 'alice')
            conv, created = conversation_repo.find_or_create_direct(*pair)
            return conv.conversation_id, created

        with ThreadPoolExecutor(max_workers=self.WORKERS) as executor:
            results = list(executor.map(_worker, range(self.WORKERS)))

        assert len({conversation_id for conversation_id, _ in results}) == 1
        assert [created for _, created in results].count(True) == 1
        assert conversation_repo.collection.count_documents({}) == 1

    def test_parallel_increments_are_not_lost(self, conversation_repo):
        conv, _ = conversation_repo.find_or_create_direct('alice', 'bob')
        rounds = 25
        barrier = threading.Barrier(self.WORKERS)

        def _worker(_):
            barrier.wait(timeout=5)
            for _ in range(rounds):
                conversation_repo.increment_unread(conv.conversation_id, ['bob'])
                conversation_repo.next_sequence(conv.conversation_id)

        with ThreadPoolExecutor(max_workers=self.WORKERS) as executor:
            list(executor.map(_worker, range(self.WORKERS)))

        stored = conversation_repo.get(conv.conversation_id)
        assert stored.unread_counts['bob'] == self.WORKERS * rounds
        assert stored.message_seq == self.WORKERS * rounds


class TestLookup:

    def test_unknown_and_malformed_ids(self, conversation_repo):
        with pytest.raises(NotFoundError):
            conversation_repo.get('000000000000000000000000')
        with pytest.raises(NotFoundError):
            conversation_repo.get('not-an-id')
        assert conversation_repo.is_participant('not-an-id', 'alice') is False

    def test_list_for_user_newest_first(self, conversation_repo):
        older, _ = conversation_repo.find_or_create_direct('alice', 'bob')
        newer, _ = conversation_repo.find_or_create_direct('alice', 'carol')
        conversation_repo.find_or_create_direct('bob', 'carol')
        conversation_repo.set_last_message(older.conversation_id, 'm1', at=now_utc() + timedelta(seconds=5))

        listed, total = conversation_repo.list_for_user('alice')
        assert total == 2
        assert [c.conversation_id for c in listed] == [older.conversation_id, newer.conversation_id]

        page_two, _ = conversation_repo.list_for_user('alice', page=2, limit=1)
        assert [c.conversation_id for c in page_two] == [newer.conversation_id]

    def test_delete_conversation(self, conversation_repo):
        conv, _ = conversation_repo.find_or_create_direct('alice', 'bob')

        assert conversation_repo.delete_conversation(conv.conversation_id) is True
        with pytest.raises(NotFoundError):
            conversation_repo.get(conv.conversation_id)
