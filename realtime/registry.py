import asyncio
from contextlib import asynccontextmanager
from typing import Dict, Set

from realtime.session import Session
from logging_config import get_logger

logger = get_logger(__name__)


class RoomEntry:
    def __init__(self, room_id: str):
        self.room_id = room_id
        self.members: Dict[str, Session] = {}
        self.lock = asyncio.Lock()
        # Coroutines holding or waiting for `lock`
        self.users = 0


class RoomRegistry:
    """In-memory mapping of room id to the sessions currently joined.

    Each room has its own lock; callers mutate membership and read it for
    presence inside `locked(room_id)`, so unrelated rooms never contend.
    Entries are created on first use and evicted once empty and unlocked.
    """

    def __init__(self):
        self._rooms: Dict[str, RoomEntry] = {}

    @asynccontextmanager
    async def locked(self, room_id: str):
        entry = self._rooms.get(room_id)
        if entry is None:
            entry = self._rooms[room_id] = RoomEntry(room_id)
        entry.users += 1
        try:
            async with entry.lock:
                yield entry
        finally:
            entry.users -= 1
            if entry.users == 0 and not entry.members:
                self._rooms.pop(room_id, None)
                logger.debug(f"Evicted empty registry entry for room {room_id}")

    def join(self, session: Session, room_id: str) -> bool:
        """Add `session` to the room. Returns False if it was already a member."""
        entry = self._rooms.get(room_id)
        if entry is None:
            entry = self._rooms[room_id] = RoomEntry(room_id)
        if session.id in entry.members:
            return False
        entry.members[session.id] = session
        session.rooms.add(room_id)
        logger.debug(f"Session {session.id} joined room {room_id} ({len(entry.members)} members)")
        return True

    def leave(self, session: Session, room_id: str) -> bool:
        """Remove `session` from the room. Returns False if it was not a member."""
        session.rooms.discard(room_id)
        entry = self._rooms.get(room_id)
        if entry is None or entry.members.pop(session.id, None) is None:
            return False
        logger.debug(f"Session {session.id} left room {room_id} ({len(entry.members)} members)")
        if not entry.members and entry.users == 0:
            del self._rooms[room_id]
        return True

    def members(self, room_id: str) -> Set[Session]:
        entry = self._rooms.get(room_id)
        if entry is None:
            return set()
        return set(entry.members.values())

    def is_member(self, session: Session, room_id: str) -> bool:
        entry = self._rooms.get(room_id)
        return entry is not None and session.id in entry.members

    def ordered_members(self, room_id: str):
        """Members in join order, for deterministic fan-out."""
        entry = self._rooms.get(room_id)
        return list(entry.members.values()) if entry else []

    def room_ids(self):
        return list(self._rooms)
