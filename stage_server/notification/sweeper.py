import logging
import threading
from datetime import datetime
from typing import List, Optional

from stage_server.websocket.event_emitter import EventEmitter

logger = logging.getLogger(__name__)


class PresenceSweeper:
    """Background thread that clears presence entries whose socket is gone.

    Liveness of an open socket is Engine.IO's job (its own ping/timeout
    closes dead transports). An entry idle for ``idle_timeout`` seconds is
    checked against the Socket.IO server: if the socket is still connected
    the entry is refreshed, otherwise the disconnect was lost and the user
    is marked offline. Live sockets are never closed from here.
    """

    def __init__(self, presence, rooms=None, socketio=None, idle_timeout=90, interval_seconds=30):
        self.presence = presence
        self.rooms = rooms
        self.socketio = socketio
        self.idle_timeout = idle_timeout
        self.interval = interval_seconds
        self._stop = threading.Event()
        self.thread = threading.Thread(target=self.run, name='presence-sweeper', daemon=True)
        self.running = False

    def start(self):
        self.running = True
        self.thread.start()
        logger.info("[Sweeper] started: idle_timeout=%ss interval=%ss", self.idle_timeout, self.interval)

    def stop(self):
        self.running = False
        self._stop.set()
        if self.thread.is_alive():
            self.thread.join()

    def run(self):
        while self.running:
            try:
                self.sweep_once()
            except Exception:
                logger.exception("[Sweeper] sweep failed")
            if self._stop.wait(self.interval):
                break

    def _is_connected(self, sid: str) -> bool:
        if self.socketio is None or self.socketio.server is None:
            return False
        return bool(self.socketio.server.manager.is_connected(sid, '/'))

    def sweep_once(self, now: Optional[datetime] = None) -> List[str]:
        """Unregister idle users whose socket is closed. Returns the swept user keys."""
        swept = []
        for entry in self.presence.stale_entries(self.idle_timeout, now=now):
            if self._is_connected(entry.sid):
                self.presence.touch(entry.user_key, entry.sid)
                continue
            if not self.presence.unregister(entry.user_key, entry.sid):
                continue
            swept.append(entry.user_key)
            logger.info("[Sweeper] %s socket %s gone since %s, marking offline",
                        entry.user_key, entry.sid, entry.last_seen.isoformat())
            if self.rooms is not None:
                self.rooms.leave_all(entry.sid)
            EventEmitter.broadcast_presence(entry.user_key, EventEmitter.USER_OFFLINE, {'userId': entry.user_key})
        return swept
