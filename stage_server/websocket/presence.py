"""Identity & presence registry.

Process-wide map of connected user -> current socket. A user has at most one
live entry; a second connection replaces the first for push purposes. The
registry is in-memory only, so presence is per-process (see
``SOCKETIO_MESSAGE_QUEUE`` for relaying emits between processes).
"""
import logging
import threading
from datetime import datetime, timedelta
from typing import Dict, Any, Optional, List

from stage_server.utils.time_utils import now_utc

logger = logging.getLogger(__name__)


class PresenceEntry:
    """One live connection for one user."""

    def __init__(self, user_key: str, sid: str, display_info: Optional[Dict[str, Any]] = None,
                 connected_at: Optional[datetime] = None):
        self.user_key = user_key
        self.sid = sid
        self.display_info = display_info or {'userId': user_key}
        self.connected_at = connected_at or now_utc()
        self.last_seen = self.connected_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            'userId': self.user_key,
            'user': self.display_info,
            'connectedAt': self.connected_at.isoformat(),
            'lastSeen': self.last_seen.isoformat(),
        }


class PresenceRegistry:
    """Thread-safe index of who is reachable for push delivery."""

    def __init__(self):
        self._lock = threading.Lock()
        self._by_user: Dict[str, PresenceEntry] = {}
        self._by_sid: Dict[str, str] = {}

    def register(self, user_key: str, sid: str, display_info: Optional[Dict[str, Any]] = None) -> bool:
        """Record ``sid`` as the user's live connection.

        Returns True only when the user was offline before this call; the
        caller broadcasts ``user:online`` in that case.
        """
        with self._lock:
            # A superseded socket keeps its sid -> user mapping until it closes.
            previous = self._by_user.get(user_key)
            self._by_user[user_key] = PresenceEntry(user_key, sid, display_info)
            self._by_sid[sid] = user_key
        if previous is not None:
            logger.debug("Presence: %s replaced socket %s with %s", user_key, previous.sid, sid)
            return False
        logger.debug("Presence: %s online on %s", user_key, sid)
        return True

    def unregister(self, user_key: str, sid: Optional[str] = None) -> bool:
        """Drop the user's entry.

        With ``sid`` given, the entry is only dropped if that socket is still
        the current one, so closing a superseded socket leaves the user online.
        Returns True when an entry was removed.
        """
        with self._lock:
            entry = self._by_user.get(user_key)
            if entry is None:
                if sid is not None:
                    self._by_sid.pop(sid, None)
                return False
            if sid is not None and entry.sid != sid:
                self._by_sid.pop(sid, None)
                return False
            del self._by_user[user_key]
            self._by_sid.pop(entry.sid, None)
        logger.debug("Presence: %s offline", user_key)
        return True

    def is_online(self, user_key: str) -> bool:
        with self._lock:
            return user_key in self._by_user

    def get_sid(self, user_key: str) -> Optional[str]:
        with self._lock:
            entry = self._by_user.get(user_key)
            return entry.sid if entry else None

    def get_user(self, sid: str) -> Optional[str]:
        with self._lock:
            return self._by_sid.get(sid)

    def get_entry(self, user_key: str) -> Optional[PresenceEntry]:
        with self._lock:
            return self._by_user.get(user_key)

    def list_online(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [{'userId': e.user_key, 'user': e.display_info} for e in self._by_user.values()]

    def online_users(self) -> List[str]:
        with self._lock:
            return list(self._by_user)

    def touch(self, user_key: str, sid: Optional[str] = None) -> bool:
        """Refresh the entry's last activity time."""
        with self._lock:
            entry = self._by_user.get(user_key)
            if entry is None or (sid is not None and entry.sid != sid):
                return False
            entry.last_seen = now_utc()
            return True

    def stale_entries(self, max_idle_seconds: int, now: Optional[datetime] = None) -> List[PresenceEntry]:
        """Entries with no activity for longer than ``max_idle_seconds``."""
        cutoff = (now or now_utc()) - timedelta(seconds=max_idle_seconds)
        with self._lock:
            return [e for e in self._by_user.values() if e.last_seen < cutoff]

    def __len__(self):
        with self._lock:
            return len(self._by_user)
