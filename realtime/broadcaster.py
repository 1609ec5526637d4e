import uuid

from backend import run_store_call, utc_now
from constants import MAX_MESSAGE_LENGTH, STORE_TIMEOUT_SECONDS
from errors import AuthorizationError, PersistenceError, ValidationError
from realtime.registry import RoomRegistry
from realtime.session import Session
from schemas.rooms import Message
from logging_config import get_logger

logger = get_logger(__name__)


class MessageBroadcaster:
    """Validates, persists and fans out chat messages.

    Persist and broadcast for one room happen under that room's lock, so the
    order members observe is the order the Store committed.
    """

    def __init__(self, store, registry: RoomRegistry, store_timeout: float = STORE_TIMEOUT_SECONDS):
        self.store = store
        self.registry = registry
        self.store_timeout = store_timeout

    async def send_message(self, session: Session, room_id: str, text: str) -> Message:
        text = (text or "").strip()
        if not text:
            raise ValidationError("Message text must not be empty")
        if len(text) > MAX_MESSAGE_LENGTH:
            raise ValidationError(f"Message text exceeds {MAX_MESSAGE_LENGTH} characters")

        async with self.registry.locked(room_id):
            if not await run_store_call(self.store.room_exists, room_id, timeout=self.store_timeout):
                logger.warning(f"Rejected message from {session.identity} to unknown room {room_id}")
                raise ValidationError("Room not found")
            if not self.registry.is_member(session, room_id):
                logger.warning(f"Session {session.id} ({session.identity}) tried to send to room {room_id} without joining")
                raise AuthorizationError("Join the room before sending messages")

            message = Message(
                id=uuid.uuid4().hex,
                room_id=room_id,
                user_identity=session.identity,
                text=text,
                created_at=utc_now(),
            )
            try:
                committed = await run_store_call(self.store.insert_message, message, timeout=self.store_timeout, settle=True)
            except PersistenceError:
                logger.error(f"Error saving message from {session.identity} in room {room_id}")
                raise PersistenceError("Failed to send message")
            logger.debug(f"Message {committed.id} from {session.identity} committed to room {room_id}")

            payload = committed.wire()
            recipients = self.registry.ordered_members(room_id)
            for member in recipients:
                member.emit("new-message", payload)
            logger.debug(f"Broadcasted message {committed.id} to {len(recipients)} sessions in room {room_id}")
            return committed
