"""Shared fixtures: an in-memory Mongo, the app, tokens and socket clients."""
import os

os.environ['FLASK_ENV'] = 'testing'

import mongomock
import pytest

from stage_server.app import create_app
from stage_server.repository.conversation_repository import ConversationRepository
from stage_server.repository.message_repository import MessageRepository
from stage_server.repository.mongo_helper import MongoRepositorySingleton
from stage_server.repository.notification_repository import NotificationRepository
from stage_server.security.authentication import AuthSecurity
from stage_server.websocket.presence import PresenceRegistry
from stage_server.websocket.rooms import RoomRegistry

TEST_SECRET = 'test-secret'


@pytest.fixture
def db():
    database = mongomock.MongoClient(tz_aware=False)['stage_test']
    MongoRepositorySingleton.ensure_indexes(database)
    yield database
    MongoRepositorySingleton.reset()


@pytest.fixture
def conversation_repo(db):
    return ConversationRepository(db)


@pytest.fixture
def message_repo(db):
    return MessageRepository(db)


@pytest.fixture
def notification_repo(db):
    return NotificationRepository(db)


@pytest.fixture
def presence():
    return PresenceRegistry()


@pytest.fixture
def rooms():
    return RoomRegistry()


@pytest.fixture
def app(db):
    application = create_app(db=db, config_overrides={'JWT_SECRET': TEST_SECRET, 'LOG_LEVEL': 'WARNING'})
    application.config['TESTING'] = True
    return application


@pytest.fixture
def stage(app):
    return app.extensions['stage']


@pytest.fixture
def service(stage):
    return stage['service']


@pytest.fixture
def bridge(stage):
    return stage['bridge']


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_token(app):
    def _make(user_key, **claims):
        return AuthSecurity.encode_token({'user_key': user_key, **claims})
    return _make


@pytest.fixture
def auth_headers(make_token):
    def _headers(user_key, **claims):
        return {'Authorization': f'Bearer {make_token(user_key, **claims)}'}
    return _headers


@pytest.fixture
def connect(app, stage, make_token):
    """Open an authenticated socket for a user; all are closed at teardown."""
    opened = []

    def _connect(user_key, **claims):
        sock = stage['socketio'].test_client(app, auth={'token': make_token(user_key, **claims)})
        opened.append(sock)
        return sock

    yield _connect
    for sock in opened:
        if sock.is_connected():
            sock.disconnect()
