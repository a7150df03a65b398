from datetime import timedelta

import pytest

from stage_server.exception import ExpiredError, ForbiddenError, NotFoundError, ValidationError
from stage_server.messaging.models import AttachmentType, MessageStatus


@pytest.fixture
def conversation(conversation_repo):
    conv, _ = conversation_repo.find_or_create_direct('alice', 'bob')
    return conv


@pytest.fixture
def post(conversation_repo, message_repo, conversation):
    """Append a message with a freshly allocated sequence number."""
    def _post(sender, content='hi', **kwargs):
        seq = conversation_repo.next_sequence(conversation.conversation_id)
        return message_repo.append(conversation.conversation_id, seq, sender, content=content, **kwargs)
    return _post


class TestAppend:

    def test_sender_has_read_own_message(self, post):
        message = post('alice', '  hello  ')

        assert message.content == 'hello'
        assert message.seq == 1
        assert message.status == MessageStatus.SENT
        assert message.is_read_by('alice')
        assert not message.is_read_by('bob')

    def test_length_boundary(self, post):
        assert len(post('alice', 'x' * 2000).content) == 2000
        with pytest.raises(ValidationError):
            post('alice', 'x' * 2001)

    def test_empty_message_rejected(self, message_repo):
        with pytest.raises(ValidationError):
            message_repo.check_draft('   ', [])

    def test_attachment_only_message(self, post):
        message = post('alice', None, attachments=[{'type': 'image', 'url': 'https://cdn/x.png'}])

        assert message.content == ''
        assert message.attachments[0].attachment_type == AttachmentType.IMAGE

    def test_bad_attachment_type(self, message_repo):
        with pytest.raises(ValidationError):
            message_repo.check_draft(None, [{'type': 'hologram', 'url': 'x'}])

    def test_reply_must_be_in_same_conversation(self, conversation_repo, message_repo, post, conversation):
        original = post('alice', 'first')
        reply = post('bob', 'second', reply_to=original.message_id)
        assert reply.reply_to == original.message_id

        other, _ = conversation_repo.find_or_create_direct('alice', 'carol')
        with pytest.raises(ValidationError):
            message_repo.resolve_reply_to(other.conversation_id, original.message_id)
        with pytest.raises(ValidationError):
            message_repo.resolve_reply_to(conversation.conversation_id, 'garbage')


class TestOrdering:

    def test_pages_are_chronological_newest_page_first(self, message_repo, post, conversation):
        for i in range(5):
            post('alice' if i % 2 else 'bob', f'm{i}')

        page_one, total = message_repo.list_page(conversation.conversation_id, page=1, page_size=2)
        page_two, _ = message_repo.list_page(conversation.conversation_id, page=2, page_size=2)

        assert total == 5
        assert [m.content for m in page_one] == ['m3', 'm4']
        assert [m.content for m in page_two] == ['m1', 'm2']

    def test_latest_can_exclude_sender(self, message_repo, post, conversation):
        post('bob', 'from bob')
        post('alice', 'from alice')

        assert message_repo.latest(conversation.conversation_id).content == 'from alice'
        assert message_repo.latest(conversation.conversation_id, exclude_sender='alice').content == 'from bob'


class TestReadReceipts:

    def test_mark_read_is_idempotent(self, message_repo, post, conversation):
        post('alice', 'one')
        post('alice', 'two')
        cid = conversation.conversation_id

        assert message_repo.count_unread(cid, 'bob') == 2
        assert message_repo.mark_read(cid, 'bob') == 2
        assert message_repo.mark_read(cid, 'bob') == 0
        assert message_repo.count_unread(cid, 'bob') == 0

        receipts = [r for m in message_repo.list_page(cid)[0] for r in m.read_by if r['user'] == 'bob']
        assert len(receipts) == 2

    def test_mark_read_skips_own_messages(self, message_repo, post, conversation):
        post('alice', 'mine')

        assert message_repo.mark_read(conversation.conversation_id, 'alice') == 0

    def test_mark_read_up_to_seq(self, message_repo, post, conversation):
        post('alice', 'one')
        post('alice', 'two')

        assert message_repo.mark_read(conversation.conversation_id, 'bob', up_to_seq=1) == 1
        assert message_repo.count_unread(conversation.conversation_id, 'bob') == 1

    def test_mark_one_read(self, message_repo, post):
        message = post('alice', 'one')

        assert message_repo.mark_one_read(message.message_id, 'bob') is True
        assert message_repo.mark_one_read(message.message_id, 'bob') is False
        assert message_repo.mark_one_read(message.message_id, 'alice') is False
        assert message_repo.get(message.message_id).status == MessageStatus.READ


class TestEditDelete:

    def test_edit_within_window(self, message_repo, post):
        message = post('alice', 'draft')

        edited = message_repo.edit(message.message_id, 'alice', 'final')
        assert edited.content == 'final'
        assert edited.metadata['edited'] is True

    def test_edit_by_other_forbidden(self, message_repo, post):
        message = post('alice', 'draft')

        with pytest.raises(ForbiddenError):
            message_repo.edit(message.message_id, 'bob', 'hijack')

    def test_edit_after_window_expired(self, message_repo, post):
        message = post('alice', 'draft')

        with pytest.raises(ExpiredError):
            message_repo.edit(message.message_id, 'alice', 'late',
                              now=message.created_at + timedelta(minutes=15, seconds=1))
        assert message_repo.get(message.message_id).content == 'draft'

    def test_edit_at_window_edge_allowed(self, message_repo, post):
        message = post('alice', 'draft')

        edited = message_repo.edit(message.message_id, 'alice', 'just in time',
                                   now=message.created_at + timedelta(minutes=15))
        assert edited.content == 'just in time'

    def test_delete_sender_only(self, message_repo, post):
        message = post('alice', 'oops')

        with pytest.raises(ForbiddenError):
            message_repo.delete_message(message.message_id, 'bob')
        removed = message_repo.delete_message(message.message_id, 'alice')
        assert removed.message_id == message.message_id
        with pytest.raises(NotFoundError):
            message_repo.get(message.message_id)

    def test_delete_for_conversation(self, message_repo, post, conversation):
        post('alice', 'a')
        post('bob', 'b')

        assert message_repo.delete_for_conversation(conversation.conversation_id) == 2
        assert message_repo.list_page(conversation.conversation_id) == ([], 0)
