from .routes.chat import chat_bp
from .routes.notification import notification_bp

# The application factory lives in stage_server.app; the blueprints are
# re-exported here so other runners can mount them on their own app.

__all__ = ["chat_bp", "notification_bp"]
