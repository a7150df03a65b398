"""Conversation store.

Every mutation that has to hold up under concurrent requests is a single
Mongo update: find-or-create is an upsert on the unique ``pair_key``,
unread counters move with ``$inc`` and the per-conversation message
sequence is allocated with ``$inc`` as well.
"""
import logging
from typing import Optional, List, Tuple, Iterable

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from stage_server.exception import ValidationError, NotFoundError
from stage_server.messaging.models import (
    Conversation, Participant, ConversationType, ParticipantRole,
    direct_pair_key, GROUP_NAME_MAX_LENGTH, GROUP_DESCRIPTION_MAX_LENGTH
)
from stage_server.repository.base_repository import BaseRepository
from stage_server.utils.time_utils import now_utc

logger = logging.getLogger(__name__)

SETTING_KEYS = ('only_admins_can_post', 'only_admins_can_add_members', 'only_admins_can_change_info')


def to_object_id(value, label='Conversation') -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        raise NotFoundError(f'{label} not found')


def _counter_field(user_key: str) -> str:
    key = str(user_key or '')
    if not key or '.' in key or key.startswith('$'):
        raise ValidationError(f'Invalid user reference: {user_key!r}')
    return f'unread_counts.{key}'


class ConversationRepository(BaseRepository):
    collection_name = 'conversations'

    def create(self, data):
        return self.collection.insert_one(data)

    # =========================================================================
    # Lookup
    # =========================================================================

    def get(self, conversation_id) -> Conversation:
        doc = self.collection.find_one({'_id': to_object_id(conversation_id)})
        if not doc:
            raise NotFoundError('Conversation not found')
        return Conversation.from_doc(doc)

    def is_participant(self, conversation_id, user_key: str) -> bool:
        try:
            oid = to_object_id(conversation_id)
        except NotFoundError:
            return False
        return self.collection.count_documents({'_id': oid, 'participants.user': user_key}, limit=1) > 0

    def list_for_user(self, user_key: str, page: int = 1, limit: int = 20) -> Tuple[List[Conversation], int]:
        """Conversations the user participates in, most recently active first."""
        query = {'participants.user': user_key}
        total = self.collection.count_documents(query)
        cursor = (self.collection.find(query)
                  .sort([('updated_at', -1), ('_id', -1)])
                  .skip((page - 1) * limit)
                  .limit(limit))
        return [Conversation.from_doc(d) for d in cursor], total

    # =========================================================================
    # Creation
    # =========================================================================

    def find_or_create_direct(self, user_a: str, user_b: str) -> Tuple[Conversation, bool]:
        """Return the direct conversation between two users, creating it on first contact.

        Concurrent callers for the same pair converge on one document: the
        insert is an upsert keyed on the unique pair_key, and a caller that
        loses the race re-reads the winner's document.
        """
        if not user_a or not user_b:
            raise ValidationError('Both participants are required')
        if str(user_a) == str(user_b):
            raise ValidationError('Cannot create a conversation with yourself')
        _counter_field(user_a)
        _counter_field(user_b)

        pair_key = direct_pair_key(user_a, user_b)
        now = now_utc()
        conversation = Conversation(
            conversation_id=None,
            conversation_type=ConversationType.DIRECT,
            participants=[
                Participant(user_a, ParticipantRole.ADMIN, joined_at=now, last_seen=now),
                Participant(user_b, ParticipantRole.MEMBER, joined_at=now, last_seen=now),
            ],
            created_at=now,
            updated_at=now,
        )
        doc = conversation.to_db_doc()
        doc.pop('pair_key')

        created = False
        try:
            result = self.collection.update_one({'pair_key': pair_key}, {'$setOnInsert': doc}, upsert=True)
            created = result.upserted_id is not None
        except DuplicateKeyError:
            logger.debug("Lost find-or-create race for %s, re-reading", pair_key)

        found = self.collection.find_one({'pair_key': pair_key})
        if not found:
            raise NotFoundError('Conversation not found')
        if created:
            logger.info("Created direct conversation %s", found['_id'])
        return Conversation.from_doc(found), created

    def create_group(self, creator: str, participants: Iterable[str], name: str,
                     description: Optional[str] = None, avatar: Optional[str] = None,
                     is_public: bool = False) -> Conversation:
        """Create a group conversation. The creator is always an admin member."""
        name = (name or '').strip()
        if not name:
            raise ValidationError('Group name is required')
        if len(name) > GROUP_NAME_MAX_LENGTH:
            raise ValidationError(f'Group name cannot exceed {GROUP_NAME_MAX_LENGTH} characters')
        if description and len(description) > GROUP_DESCRIPTION_MAX_LENGTH:
            raise ValidationError(f'Group description cannot exceed {GROUP_DESCRIPTION_MAX_LENGTH} characters')

        members = []
        for user_key in [creator] + list(participants or []):
            if user_key and user_key not in members:
                _counter_field(user_key)
                members.append(user_key)
        if len(members) < 2:
            raise ValidationError('A group needs at least two participants')

        now = now_utc()
        oid = ObjectId()
        conversation = Conversation(
            conversation_id=str(oid),
            conversation_type=ConversationType.GROUP,
            participants=[
                Participant(u, ParticipantRole.ADMIN if u == creator else ParticipantRole.MEMBER,
                            joined_at=now, last_seen=now)
                for u in members
            ],
            pair_key=f'group:{oid}',
            group_info={
                'name': name,
                'description': description,
                'avatar': avatar,
                'is_public': bool(is_public),
            },
            created_at=now,
            updated_at=now,
        )
        doc = conversation.to_db_doc()
        doc['_id'] = oid
        self.create(doc)
        logger.info("Created group conversation %s with %d participants", oid, len(members))
        return conversation

    # =========================================================================
    # Roster
    # =========================================================================

    def add_participant(self, conversation_id, user_key: str,
                        role: ParticipantRole = ParticipantRole.MEMBER) -> bool:
        """Add a user to a group. Returns False if they were already a participant."""
        conversation = self.get(conversation_id)
        if conversation.is_direct:
            raise ValidationError('Direct conversations cannot gain participants')
        counter = _counter_field(user_key)
        now = now_utc()
        participant = Participant(user_key, role, joined_at=now, last_seen=now)
        result = self.collection.update_one(
            {'_id': to_object_id(conversation_id), 'participants.user': {'$ne': user_key}},
            {
                '$push': {'participants': participant.to_db_doc()},
                '$set': {counter: 0, 'updated_at': now},
            },
        )
        return result.modified_count > 0

    def remove_participant(self, conversation_id, user_key: str) -> bool:
        """Remove a user from a group. Returns False if they were not a participant."""
        conversation = self.get(conversation_id)
        if conversation.is_direct:
            raise ValidationError('Direct conversations cannot lose participants')
        counter = _counter_field(user_key)
        result = self.collection.update_one(
            {'_id': to_object_id(conversation_id), 'participants.user': user_key},
            {
                '$pull': {'participants': {'user': user_key}},
                '$unset': {counter: ''},
                '$set': {'updated_at': now_utc()},
            },
        )
        return result.modified_count > 0

    def set_role(self, conversation_id, user_key: str, role: ParticipantRole) -> bool:
        role = ParticipantRole(role)
        conversation = self.get(conversation_id)
        participant = conversation.participant(user_key)
        if participant is None:
            raise NotFoundError('Participant not found')
        if participant.role == role:
            return False
        self.collection.update_one(
            {'_id': to_object_id(conversation_id), 'participants.user': user_key},
            {'$set': {'participants.$.role': role.value}},
        )
        return True

    def set_muted(self, conversation_id, user_key: str, muted: bool, until=None) -> bool:
        result = self.collection.update_one(
            {'_id': to_object_id(conversation_id), 'participants.user': user_key},
            {'$set': {'participants.$.muted': bool(muted),
                      'participants.$.muted_until': until if muted else None}},
        )
        return result.matched_count > 0

    def touch_last_seen(self, conversation_id, user_key: str) -> None:
        self.collection.update_one(
            {'_id': to_object_id(conversation_id), 'participants.user': user_key},
            {'$set': {'participants.$.last_seen': now_utc()}},
        )

    # =========================================================================
    # Counters and pointers
    # =========================================================================

    def next_sequence(self, conversation_id) -> int:
        """Allocate the next message sequence number for a conversation."""
        doc = self.collection.find_one_and_update(
            {'_id': to_object_id(conversation_id)},
            {'$inc': {'message_seq': 1}},
            projection={'message_seq': 1},
            return_document=ReturnDocument.AFTER,
        )
        if not doc:
            raise NotFoundError('Conversation not found')
        return doc['message_seq']

    def increment_unread(self, conversation_id, user_keys: Iterable[str]) -> None:
        """Add one unread message for each of the given participants in a single update."""
        increments = {_counter_field(u): 1 for u in user_keys}
        if not increments:
            return
        self.collection.update_one({'_id': to_object_id(conversation_id)}, {'$inc': increments})

    def decrement_unread(self, conversation_id, user_key: str) -> bool:
        """Take one unread message off a participant's counter, never below zero."""
        counter = _counter_field(user_key)
        result = self.collection.update_one(
            {'_id': to_object_id(conversation_id), counter: {'$gt': 0}},
            {'$inc': {counter: -1}},
        )
        return result.modified_count > 0

    def reset_unread(self, conversation_id, user_key: str) -> None:
        counter = _counter_field(user_key)
        self.collection.update_one(
            {'_id': to_object_id(conversation_id), 'participants.user': user_key},
            {'$set': {counter: 0}},
        )

    def get_unread(self, conversation_id, user_key: str) -> int:
        doc = self.collection.find_one({'_id': to_object_id(conversation_id)}, {'unread_counts': 1})
        if not doc:
            raise NotFoundError('Conversation not found')
        return (doc.get('unread_counts') or {}).get(user_key, 0)

    def set_last_message(self, conversation_id, message_id: Optional[str], at=None) -> None:
        self.collection.update_one(
            {'_id': to_object_id(conversation_id)},
            {'$set': {'last_message': message_id, 'updated_at': at or now_utc()}},
        )

    def repoint_last_message(self, conversation_id, deleted_message_id: str,
                             replacement_id: Optional[str]) -> bool:
        """Move last_message off a deleted message, only if it still points there."""
        result = self.collection.update_one(
            {'_id': to_object_id(conversation_id), 'last_message': deleted_message_id},
            {'$set': {'last_message': replacement_id}},
        )
        return result.modified_count > 0

    # =========================================================================
    # Group info and settings
    # =========================================================================

    def update_group_info(self, conversation_id, name=None, description=None, avatar=None,
                          is_public=None) -> Conversation:
        conversation = self.get(conversation_id)
        if conversation.is_direct:
            raise ValidationError('Direct conversations have no group info')
        updates = {}
        if name is not None:
            name = name.strip()
            if not name:
                raise ValidationError('Group name is required')
            if len(name) > GROUP_NAME_MAX_LENGTH:
                raise ValidationError(f'Group name cannot exceed {GROUP_NAME_MAX_LENGTH} characters')
            updates['group_info.name'] = name
        if description is not None:
            if len(description) > GROUP_DESCRIPTION_MAX_LENGTH:
                raise ValidationError(f'Group description cannot exceed {GROUP_DESCRIPTION_MAX_LENGTH} characters')
            updates['group_info.description'] = description
        if avatar is not None:
            updates['group_info.avatar'] = avatar
        if is_public is not None:
            updates['group_info.is_public'] = bool(is_public)
        if updates:
            updates['updated_at'] = now_utc()
            self.collection.update_one({'_id': to_object_id(conversation_id)}, {'$set': updates})
        return self.get(conversation_id)

    def update_settings(self, conversation_id, **settings) -> Conversation:
        unknown = [k for k in settings if k not in SETTING_KEYS]
        if unknown:
            raise ValidationError(f'Unknown settings: {", ".join(sorted(unknown))}')
        updates = {f'settings.{k}': bool(v) for k, v in settings.items()}
        if updates:
            self.collection.update_one({'_id': to_object_id(conversation_id)}, {'$set': updates})
        return self.get(conversation_id)

    def delete_conversation(self, conversation_id) -> bool:
        result = self.collection.delete_one({'_id': to_object_id(conversation_id)})
        return result.deleted_count > 0
