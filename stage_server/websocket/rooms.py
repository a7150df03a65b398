"""Conversation rooms: conversation id -> sockets currently subscribed.

Rooms are distinct from the durable participant roster. A participant is
only in a room while one of their sockets has joined it.
"""
import threading
from typing import Dict, Set, List


class RoomRegistry:

    def __init__(self):
        self._lock = threading.Lock()
        self._members: Dict[str, Set[str]] = {}
        self._rooms_by_sid: Dict[str, Set[str]] = {}

    def join(self, conversation_id: str, sid: str) -> bool:
        """Subscribe a socket. Returns False if it was already in the room."""
        with self._lock:
            members = self._members.setdefault(conversation_id, set())
            if sid in members:
                return False
            members.add(sid)
            self._rooms_by_sid.setdefault(sid, set()).add(conversation_id)
            return True

    def leave(self, conversation_id: str, sid: str) -> bool:
        with self._lock:
            members = self._members.get(conversation_id)
            if not members or sid not in members:
                return False
            members.discard(sid)
            if not members:
                del self._members[conversation_id]
            rooms = self._rooms_by_sid.get(sid)
            if rooms is not None:
                rooms.discard(conversation_id)
                if not rooms:
                    del self._rooms_by_sid[sid]
            return True

    def leave_all(self, sid: str) -> List[str]:
        """Remove a socket from every room; returns the rooms it was in."""
        with self._lock:
            rooms = self._rooms_by_sid.pop(sid, set())
            for conversation_id in rooms:
                members = self._members.get(conversation_id)
                if members is not None:
                    members.discard(sid)
                    if not members:
                        del self._members[conversation_id]
            return sorted(rooms)

    def evict(self, conversation_id: str, sids) -> List[str]:
        """Remove the given sockets from one room; returns those that were in it."""
        return sorted(sid for sid in set(sids) if self.leave(conversation_id, sid))

    def close(self, conversation_id: str) -> List[str]:
        """Empty a room; returns the sockets that were in it."""
        return self.evict(conversation_id, self.members(conversation_id))

    def members(self, conversation_id: str) -> Set[str]:
        """Snapshot of the sockets in a room."""
        with self._lock:
            return set(self._members.get(conversation_id, ()))

    def rooms_of(self, sid: str) -> Set[str]:
        with self._lock:
            return set(self._rooms_by_sid.get(sid, ()))

    def is_member(self, conversation_id: str, sid: str) -> bool:
        with self._lock:
            return sid in self._members.get(conversation_id, ())
