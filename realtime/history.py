from typing import List

from backend import run_store_call
from constants import STORE_TIMEOUT_SECONDS
from schemas.rooms import Message
from logging_config import get_logger

logger = get_logger(__name__)


class HistoryLoader:
    def __init__(self, store, store_timeout: float = STORE_TIMEOUT_SECONDS):
        self.store = store
        self.store_timeout = store_timeout

    async def load_history(self, room_id: str) -> List[Message]:
        """Fetch the room's persisted messages, ascending by creation time.

        Raises PersistenceError when the Store fails, times out or returns
        records that do not decode.
        """
        messages = await run_store_call(self.store.get_messages, room_id, timeout=self.store_timeout)
        logger.debug(f"Loaded {len(messages)} history messages for room {room_id}")
        return messages
