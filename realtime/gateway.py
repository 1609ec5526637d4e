import json
from typing import Any, Dict, Iterable, Optional, Set

import pydantic

from backend import run_store_call
from constants import STORE_TIMEOUT_SECONDS
from errors import AuthorizationError, ChatError, ValidationError
from realtime.broadcaster import MessageBroadcaster
from realtime.history import HistoryLoader
from realtime.presence import PresenceCounter
from realtime.registry import RoomRegistry
from realtime.session import Session
from schemas.rooms import Envelope, ErrorPayload, JoinRoomPayload, LeaveRoomPayload, NewRoom, Room, SendMessagePayload
from logging_config import get_logger

logger = get_logger(__name__)


class ConnectionGateway:
    """Owns every live Session and routes its inbound events.

    Per-session failures never escape `dispatch`: they become an `error`
    event for the session that caused them.
    """

    def __init__(self, store, store_timeout: float = STORE_TIMEOUT_SECONDS):
        self.store = store
        self.store_timeout = store_timeout
        self.registry = RoomRegistry()
        self.presence = PresenceCounter(self.registry)
        self.history = HistoryLoader(store, store_timeout)
        self.broadcaster = MessageBroadcaster(store, self.registry, store_timeout)
        self.sessions: Dict[str, Session] = {}
        self._by_identity: Dict[str, Set[Session]] = {}
        self._handlers = {
            "join-room": self._handle_join,
            "leave-room": self._handle_leave,
            "send-message": self._handle_send,
        }

    def on_connect(self, transport: Any, identity: str) -> Session:
        session = Session(transport, identity)
        self.sessions[session.id] = session
        self._by_identity.setdefault(identity, set()).add(session)
        logger.info(f"User connected: {identity} (session {session.id})")
        return session

    async def on_disconnect(self, session: Session):
        if self.sessions.pop(session.id, None) is None:
            return
        session.close()
        peers = self._by_identity.get(session.identity)
        if peers is not None:
            peers.discard(session)
            if not peers:
                del self._by_identity[session.identity]

        for room_id in sorted(session.rooms):
            async with self.registry.locked(room_id):
                if self.registry.leave(session, room_id):
                    self.presence.recount(room_id)
        logger.info(f"User disconnected: {session.identity} (session {session.id})")

    async def join_room(self, session: Session, room_id: str, ref: Optional[str] = None):
        if not await run_store_call(self.store.room_exists, room_id, timeout=self.store_timeout):
            raise ValidationError("Room not found")

        async with self.registry.locked(room_id):
            if session.closed:
                logger.debug(f"Session {session.id} closed before joining room {room_id}")
                return
            added = self.registry.join(session, room_id)
            logger.info(f"{session.identity} joining room: {room_id}")
            try:
                messages = await self.history.load_history(room_id)
            except ChatError as e:
                # The join stands; only the replay is missing
                logger.error(f"Error fetching room history for {room_id}: {e.message}")
                session.emit("error", ErrorPayload(message="Failed to load room history", code=e.code).wire(), ref=ref)
            else:
                session.emit("room-history", [m.wire() for m in messages], ref=ref)
            finally:
                if added:
                    self.presence.recount(room_id)

    async def leave_room(self, session: Session, room_id: str):
        async with self.registry.locked(room_id):
            if self.registry.leave(session, room_id):
                logger.info(f"{session.identity} left room: {room_id}")
                self.presence.recount(room_id)

    def notify_new_room(self, room: Room, participants: Iterable[str]):
        """Send `new-room` to the connected sessions of the listed participants only."""
        participants = sorted(set(participants))
        payload = NewRoom(room=room, participants=participants).wire()
        delivered = 0
        for identity in participants:
            for session in list(self._by_identity.get(identity, ())):
                if session.emit("new-room", payload):
                    delivered += 1
        logger.debug(f"Notified {delivered} sessions about new room {room.id}")
        return delivered

    async def dispatch(self, session: Session, raw: str):
        ref = None
        try:
            try:
                envelope = Envelope.model_validate(json.loads(raw))
            except (json.JSONDecodeError, pydantic.ValidationError):
                raise ValidationError("Malformed frame")
            ref = envelope.ref
            handler = self._handlers.get(envelope.event)
            if handler is None:
                raise ValidationError(f"Unknown event: {envelope.event}")
            logger.debug(f"Received {envelope.event} from session {session.id}")
            await handler(session, envelope)
        except ChatError as e:
            logger.warning(f"Rejected frame from session {session.id}: [{e.code}] {e.message}")
            session.emit("error", ErrorPayload(message=e.message, code=e.code).wire(), ref=ref)

    def _payload(self, model, envelope: Envelope):
        try:
            return model.model_validate(envelope.data)
        except pydantic.ValidationError as e:
            raise ValidationError(f"Invalid {envelope.event} payload: {e.errors()[0]['msg']}")

    def _check_identity(self, session: Session, claimed: Optional[str]):
        if claimed is not None and claimed != session.identity:
            raise AuthorizationError("userIdentity does not match the connection's identity")

    async def _handle_join(self, session: Session, envelope: Envelope):
        payload = self._payload(JoinRoomPayload, envelope)
        self._check_identity(session, payload.user_identity)
        await self.join_room(session, payload.room_id, ref=envelope.ref)

    async def _handle_leave(self, session: Session, envelope: Envelope):
        payload = self._payload(LeaveRoomPayload, envelope)
        await self.leave_room(session, payload.room_id)

    async def _handle_send(self, session: Session, envelope: Envelope):
        payload = self._payload(SendMessagePayload, envelope)
        self._check_identity(session, payload.user_identity)
        await self.broadcaster.send_message(session, payload.room_id, payload.text)
