"""Notification store.

Documents expire through a TTL index on ``created_at``. The TTL monitor runs
on its own schedule, so every read here also filters on the cutoff and an
expired notification is already gone as far as callers can tell.
"""
from datetime import timedelta
from typing import List, Optional, Tuple

from stage_server.exception import NotFoundError
from stage_server.notification.models import Notification
from stage_server.repository.base_repository import BaseRepository
from stage_server.repository.conversation_repository import to_object_id
from stage_server.utils.time_utils import now_utc


class NotificationRepository(BaseRepository):
    collection_name = 'notifications'

    def __init__(self, db, collection_name=None, ttl_days: int = 30):
        super().__init__(db, collection_name)
        self.ttl = timedelta(days=ttl_days)

    def _live(self, recipient: str, **extra):
        query = {'recipient': recipient, 'created_at': {'$gte': now_utc() - self.ttl}}
        query.update(extra)
        return query

    def create(self, data):
        data.setdefault('created_at', now_utc())
        return self.collection.insert_one(data)

    def insert(self, notification: Notification) -> Notification:
        notification.created_at = notification.created_at or now_utc()
        result = self.create(notification.to_db_doc())
        notification.notification_id = str(result.inserted_id)
        return notification

    def get(self, notification_id: str, recipient: str) -> Notification:
        doc = self.collection.find_one(self._live(recipient, _id=to_object_id(notification_id, 'Notification')))
        if not doc:
            raise NotFoundError('Notification not found')
        return Notification.from_doc(doc)

    def list_for_user(self, recipient: str, limit: int = 20, skip: int = 0,
                      unread_only: bool = False) -> Tuple[List[Notification], int]:
        query = self._live(recipient)
        if unread_only:
            query['read'] = False
        total = self.collection.count_documents(query)
        cursor = (self.collection.find(query)
                  .sort([('created_at', -1), ('_id', -1)])
                  .skip(skip)
                  .limit(limit))
        return [Notification.from_doc(d) for d in cursor], total

    def unread_count(self, recipient: str) -> int:
        return self.collection.count_documents(self._live(recipient, read=False))

    def mark_one_read(self, notification_id: str, recipient: str) -> bool:
        """Returns False when it was already read; NotFoundError when it does not exist for this recipient."""
        oid = to_object_id(notification_id, 'Notification')
        result = self.collection.update_one(
            self._live(recipient, _id=oid, read=False),
            {'$set': {'read': True, 'read_at': now_utc()}},
        )
        if result.modified_count:
            return True
        self.get(notification_id, recipient)
        return False

    def mark_all_read(self, recipient: str) -> int:
        result = self.collection.update_many(
            self._live(recipient, read=False),
            {'$set': {'read': True, 'read_at': now_utc()}},
        )
        return result.modified_count

    def delete_one(self, notification_id: str, recipient: str) -> bool:
        result = self.collection.delete_one(
            {'_id': to_object_id(notification_id, 'Notification'), 'recipient': recipient})
        if result.deleted_count == 0:
            raise NotFoundError('Notification not found')
        return True
