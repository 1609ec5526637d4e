from realtime.registry import RoomRegistry
from schemas.rooms import ActiveUsers
from logging_config import get_logger

logger = get_logger(__name__)


class PresenceCounter:
    def __init__(self, registry: RoomRegistry):
        self.registry = registry

    def recount(self, room_id: str) -> int:
        """Count the room's members and broadcast `active-users` to them.

        Must be called inside the room's critical section, right after the
        membership change that triggered it.
        """
        members = self.registry.ordered_members(room_id)
        count = len(members)
        payload = ActiveUsers(room_id=room_id, count=count).wire()
        for session in members:
            session.emit("active-users", payload)
        logger.info(f"Room {room_id} has {count} active users")
        return count
