import asyncio
import functools
import json
import uuid
from datetime import datetime, timezone
from typing import Iterable, List, Optional

import redis

from constants import REDIS_HOST, REDIS_PORT, REDIS_PASSWORD, REDIS_DB, STORE_TIMEOUT_SECONDS
from errors import PersistenceError
from redis_keys import REDIS_META_KEY, REDIS_PARTICIPANTS_KEY, REDIS_MESSAGES_KEY, REDIS_USER_ROOMS_KEY
from schemas.rooms import Message, Room
from logging_config import get_logger

logger = get_logger(__name__)


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class RedisBackend:
    """Persistence Store for rooms, participants and messages.

    All methods are blocking; the realtime layer reaches them through
    `run_store_call` so the event loop keeps serving other sessions.
    """

    def __init__(self, redis_client: Optional[redis.Redis] = None):
        if redis_client is None:
            redis_client = redis.Redis(
                host=REDIS_HOST,
                port=REDIS_PORT,
                password=REDIS_PASSWORD,
                db=REDIS_DB,
                decode_responses=True,
                socket_timeout=STORE_TIMEOUT_SECONDS,
                socket_connect_timeout=STORE_TIMEOUT_SECONDS,
            )
            logger.info(f"Initializing RedisBackend with connection to {REDIS_HOST}:{REDIS_PORT}")
        self.redis_client = redis_client

    def ping(self):
        self.redis_client.ping()
        return True

    def create_room(self, name: str, created_by: str) -> Room:
        room = Room(id=uuid.uuid4().hex, name=name, created_by=created_by, created_at=utc_now())
        key = REDIS_META_KEY.format(slug=room.id)
        self.redis_client.hset(key, mapping={k: str(v) for k, v in room.model_dump().items() if v is not None})
        logger.info(f"Room {room.id} created with name {name!r} by {created_by}")
        return room

    def add_participants(self, room_id: str, identities: Iterable[str]):
        identities = sorted(set(identities))
        if not identities:
            return []
        pipe = self.redis_client.pipeline()
        pipe.sadd(REDIS_PARTICIPANTS_KEY.format(slug=room_id), *identities)
        for identity in identities:
            pipe.sadd(REDIS_USER_ROOMS_KEY.format(identity=identity), room_id)
        pipe.execute()
        logger.debug(f"Added {len(identities)} participants to room {room_id}")
        return identities

    def get_room(self, room_id: str) -> Optional[Room]:
        room_data = self.redis_client.hgetall(REDIS_META_KEY.format(slug=room_id))
        if not room_data:
            logger.debug(f"Room {room_id} not found in Redis")
            return None
        return Room.model_validate(room_data)

    def room_exists(self, room_id: str) -> bool:
        return bool(self.redis_client.exists(REDIS_META_KEY.format(slug=room_id)))

    def list_rooms_for_user(self, identity: str) -> List[Room]:
        room_ids = self.redis_client.smembers(REDIS_USER_ROOMS_KEY.format(identity=identity))
        rooms = []
        for room_id in room_ids:
            room = self.get_room(room_id)
            if room is not None:
                rooms.append(room)
        rooms.sort(key=lambda r: r.created_at)
        return rooms

    def get_messages(self, room_id: str) -> List[Message]:
        """Return the room's messages in commit order (ascending creation time)."""
        raw = self.redis_client.lrange(REDIS_MESSAGES_KEY.format(slug=room_id), 0, -1)
        return [Message.model_validate(json.loads(item)) for item in raw]

    def insert_message(self, message: Message) -> Message:
        key = REDIS_MESSAGES_KEY.format(slug=message.room_id)
        position = self.redis_client.rpush(key, json.dumps(message.model_dump()))
        logger.debug(f"Committed message {message.id} to room {message.room_id} at position {position}")
        return message


async def run_store_call(fn, *args, timeout: float = STORE_TIMEOUT_SECONDS, settle: bool = False):
    """Run a blocking Store call in the default executor with a bounded wait.

    Any Store failure, including a timeout or an undecodable record, surfaces
    as `PersistenceError`. The executor thread cannot be cancelled, so with
    `settle=True` a call that outlives `timeout` is awaited to its real
    outcome: writes made under a room lock must land before the lock is
    released, and a write that did commit is reported as committed.
    """
    loop = asyncio.get_running_loop()
    name = getattr(fn, "__name__", repr(fn))
    future = loop.run_in_executor(None, functools.partial(fn, *args))
    try:
        try:
            return await asyncio.wait_for(asyncio.shield(future), timeout)
        except asyncio.TimeoutError:
            if not settle:
                logger.error(f"Store call {name} timed out after {timeout}s")
                # The late outcome is discarded; retrieve it so it is not reported as unhandled
                future.add_done_callback(lambda f: f.cancelled() or f.exception())
                raise PersistenceError("Store did not respond in time")
            logger.warning(f"Store call {name} exceeded {timeout}s, waiting for it to settle")
            result = await future
            logger.warning(f"Store call {name} settled after timeout")
            return result
    except PersistenceError:
        raise
    except Exception as e:
        logger.error(f"Store call {name} failed: {e}", exc_info=True)
        raise PersistenceError("Store is unavailable")
