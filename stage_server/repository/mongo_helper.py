from pymongo import MongoClient, ASCENDING, DESCENDING
import logging

from config import config

logger = logging.getLogger(__name__)


class MongoRepositorySingleton:
    """Process-wide handle on the messaging database."""
    _db_instance = None

    @classmethod
    def get_db(cls):
        """Singleton utility to get the MongoDB database object.

        Uses MONGO_URI and MONGO_DB from config. Tests replace the handle
        with use_database().
        """
        if cls._db_instance is not None:
            return cls._db_instance
        mongo_uri = config.MONGO_URI
        db_name = config.MONGO_DB
        logger.info("Connecting to MongoDB database %s", db_name)
        client = MongoClient(mongo_uri, tz_aware=False)
        cls._db_instance = client[db_name]
        return cls._db_instance

    @classmethod
    def use_database(cls, db):
        """Install an already-open database handle (used by tests and tools)."""
        cls._db_instance = db
        return db

    @classmethod
    def reset(cls):
        cls._db_instance = None

    @classmethod
    def ensure_indexes(cls, db, notification_ttl_days: int = 30):
        """Create the indexes the stores rely on for uniqueness, expiry and query paths (idempotent)."""
        try:
            conversations = db['conversations']
            # One direct conversation per pair; groups carry their own id here.
            conversations.create_index([('pair_key', ASCENDING)], unique=True, name='conversations_pair_key')
            conversations.create_index([('participants.user', ASCENDING), ('updated_at', DESCENDING)],
                                       name='conversations_participant_updated')

            messages = db['messages']
            messages.create_index([('conversation', ASCENDING), ('seq', ASCENDING)], unique=True,
                                  name='messages_conversation_seq')
            messages.create_index([('conversation', ASCENDING), ('read_by.user', ASCENDING)],
                                  name='messages_conversation_read_by')

            notifications = db['notifications']
            notifications.create_index([('recipient', ASCENDING), ('read', ASCENDING), ('created_at', DESCENDING)],
                                       name='notifications_recipient_read_created')
            notifications.create_index([('created_at', ASCENDING)], name='notifications_ttl',
                                       expireAfterSeconds=notification_ttl_days * 24 * 60 * 60)
            logger.info('Ensured messaging DB indexes')
        except Exception:
            # find-or-create depends on the pair_key unique index.
            logger.exception('Error creating indexes')
            raise

