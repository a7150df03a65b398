"""Application factory.

Builds the Flask app with CORS, the REST blueprints and a Socket.IO server
wired to the messaging core. Used by server.py and by the tests, which
inject a database handle instead of connecting to MongoDB.
"""
import logging
from typing import Any, Dict, Optional

from flask import Flask
from flask_cors import CORS
from flask_socketio import SocketIO

from config import config
from stage_server.messaging.service import MessagingService
from stage_server.notification.bridge import NotificationBridge
from stage_server.notification.sweeper import PresenceSweeper
from stage_server.repository.conversation_repository import ConversationRepository
from stage_server.repository.message_repository import MessageRepository
from stage_server.repository.mongo_helper import MongoRepositorySingleton
from stage_server.repository.notification_repository import NotificationRepository
from stage_server.routes.chat import chat_bp
from stage_server.routes.notification import notification_bp
from stage_server.security.authentication import AuthSecurity
from stage_server.websocket.hub import init_websocket_hub
from stage_server.websocket.presence import PresenceRegistry
from stage_server.websocket.rooms import RoomRegistry

logger = logging.getLogger(__name__)

SETTING_KEYS = (
    'JWT_SECRET', 'JWT_ALGORITHM', 'ACCESS_TOKEN_EXPIRE_MINUTES', 'CORS_ORIGINS_LIST',
    'LOG_LEVEL', 'LOG_FORMAT', 'LOG_DATE_FORMAT', 'SOCKETIO_ASYNC_MODE', 'SOCKETIO_MESSAGE_QUEUE',
    'MESSAGE_MAX_LENGTH', 'MESSAGE_EDIT_WINDOW_MINUTES', 'DEFAULT_PAGE_SIZE', 'NOTIFICATION_TTL_DAYS',
    'PRESENCE_IDLE_TIMEOUT_SECONDS', 'PRESENCE_SWEEP_INTERVAL_SECONDS',
)


def configure_logging(level: Optional[str] = None, fmt: Optional[str] = None, datefmt: Optional[str] = None):
    """Apply LOG_LEVEL / LOG_FORMAT to the root logger."""
    logging.basicConfig(
        level=getattr(logging, (level or config.LOG_LEVEL).upper(), logging.INFO),
        format=fmt or config.LOG_FORMAT,
        datefmt=datefmt or config.LOG_DATE_FORMAT,
    )


def _settings(overrides: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    settings = {key: getattr(config, key) for key in SETTING_KEYS}
    settings.update(overrides or {})
    return settings


def create_app(db=None, config_overrides: Optional[Dict[str, Any]] = None) -> Flask:
    """Build the app.

    Args:
        db: pymongo Database to use; defaults to the configured MongoDB
        config_overrides: values replacing the matching config keys
    """
    settings = _settings(config_overrides)
    configure_logging(settings['LOG_LEVEL'], settings['LOG_FORMAT'], settings['LOG_DATE_FORMAT'])

    AuthSecurity.configure(
        secret_key=settings['JWT_SECRET'],
        algorithm=settings['JWT_ALGORITHM'],
        access_token_expire_minutes=settings['ACCESS_TOKEN_EXPIRE_MINUTES'],
    )

    app = Flask(__name__)
    app.config.update(settings)
    origins = settings['CORS_ORIGINS_LIST']
    if origins == ['*']:
        origins = '*'
    CORS(app, origins=origins)

    socketio = SocketIO(
        app,
        async_mode=settings['SOCKETIO_ASYNC_MODE'],
        message_queue=settings['SOCKETIO_MESSAGE_QUEUE'],
        cors_allowed_origins=origins,
    )

    if db is None:
        db = MongoRepositorySingleton.get_db()
    else:
        MongoRepositorySingleton.use_database(db)
    MongoRepositorySingleton.ensure_indexes(db, notification_ttl_days=settings['NOTIFICATION_TTL_DAYS'])

    conversations = ConversationRepository(db)
    messages = MessageRepository(db, max_length=settings['MESSAGE_MAX_LENGTH'],
                                 edit_window_minutes=settings['MESSAGE_EDIT_WINDOW_MINUTES'])
    notifications = NotificationRepository(db, ttl_days=settings['NOTIFICATION_TTL_DAYS'])

    presence = PresenceRegistry()
    rooms = RoomRegistry()
    bridge = NotificationBridge(notifications, presence)
    service = MessagingService(conversations, messages, bridge=bridge, presence=presence, rooms=rooms)
    sweeper = PresenceSweeper(
        presence, rooms=rooms, socketio=socketio,
        idle_timeout=settings['PRESENCE_IDLE_TIMEOUT_SECONDS'],
        interval_seconds=settings['PRESENCE_SWEEP_INTERVAL_SECONDS'],
    )

    hub = init_websocket_hub(app, socketio, presence, rooms, service, bridge)

    app.extensions['stage'] = {
        'db': db,
        'socketio': socketio,
        'hub': hub,
        'presence': presence,
        'rooms': rooms,
        'bridge': bridge,
        'service': service,
        'sweeper': sweeper,
    }

    app.register_blueprint(chat_bp)
    app.register_blueprint(notification_bp)

    @app.route('/health')
    def health():
        return {'status': 'ok', 'online': len(presence)}

    logger.info("App created: env=%s, socketio=%s", config.CURRENT_ENV, settings['SOCKETIO_ASYNC_MODE'])
    return app
