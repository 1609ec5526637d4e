import asyncio
import uuid
from typing import Any, Optional, Set

from logging_config import get_logger

logger = get_logger(__name__)


class Session:
    """Server-side representative of one live connection.

    Outbound events go through `outbox`; a single writer task per session
    drains it to the transport, so enqueueing never waits on a slow socket and
    events reach the client in the order they were emitted.
    """

    def __init__(self, transport: Any, identity: str):
        self.id = uuid.uuid4().hex
        self.identity = identity
        self.transport = transport
        # Rooms this session currently holds a membership in
        self.rooms: Set[str] = set()
        self.outbox: asyncio.Queue = asyncio.Queue()
        self.closed = False

    def emit(self, event: str, data: Any = None, ref: Optional[str] = None) -> bool:
        """Queue an event for this session. Dropped once the session is closed."""
        if self.closed:
            logger.debug(f"Dropping {event} for closed session {self.id}")
            return False
        frame = {"event": event, "data": data}
        if ref is not None:
            frame["ref"] = ref
        self.outbox.put_nowait(frame)
        return True

    def close(self):
        if self.closed:
            return
        self.closed = True
        # Wake the writer so it can exit
        self.outbox.put_nowait(None)

    async def run_writer(self):
        """Drain the outbox to the transport until the session closes."""
        while True:
            frame = await self.outbox.get()
            if frame is None:
                break
            try:
                await self.transport.send_json(frame)
            except Exception as e:
                # Transport-level failure: stop queueing; the receive loop sees the drop and cleans up
                logger.warning(f"Error sending {frame['event']} to session {self.id}: {e}")
                self.closed = True
                break

    def __repr__(self):
        return f"<Session {self.id[:8]} {self.identity}>"
