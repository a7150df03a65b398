"""WebSocket module for real-time communication.

This module provides:
- Centralized WebSocket Hub
- Presence and conversation room registries
- Event Emitter for messages, read receipts and notifications
"""

from stage_server.websocket.event_emitter import EventEmitter
from stage_server.websocket.hub import WebSocketHub

__all__ = ['EventEmitter', 'WebSocketHub']
