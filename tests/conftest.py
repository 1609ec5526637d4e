import threading
import time
import uuid
from datetime import datetime, timezone

import pytest
import redis
from fastapi.testclient import TestClient

from app import create_app
from schemas.rooms import Message, Room


class MemoryStore:
    """In-memory Store double with switchable failures.

    Failures raise `redis.ConnectionError`, the same way the real backend
    fails when Redis is down.
    """

    def __init__(self):
        self.rooms = {}
        self.participants = {}
        self.messages = {}
        self.fail_ping = False
        self.fail_history = False
        self.fail_inserts = False
        # Raised from get_messages instead of a Redis error, e.g. a corrupt record
        self.history_exception = None
        # text -> seconds an insert of that text takes
        self.insert_delays = {}
        self.fail_texts = set()
        # Cleared to hold inserts in flight until a test sets it again
        self.insert_gate = threading.Event()
        self.insert_gate.set()

    def ping(self):
        if self.fail_ping:
            raise redis.ConnectionError("store down")
        return True

    def create_room(self, name, created_by):
        room = Room(id=uuid.uuid4().hex, name=name, created_by=created_by,
                    created_at=datetime.now(timezone.utc).isoformat())
        self.rooms[room.id] = room
        self.messages[room.id] = []
        return room

    def add_participants(self, room_id, identities):
        identities = sorted(set(identities))
        self.participants.setdefault(room_id, set()).update(identities)
        return identities

    def get_room(self, room_id):
        return self.rooms.get(room_id)

    def room_exists(self, room_id):
        return room_id in self.rooms

    def list_rooms_for_user(self, identity):
        return [self.rooms[r] for r, members in self.participants.items() if identity in members]

    def get_messages(self, room_id):
        if self.history_exception is not None:
            raise self.history_exception
        if self.fail_history:
            raise redis.ConnectionError("read failed")
        return list(self.messages.get(room_id, []))

    def insert_message(self, message):
        self.insert_gate.wait(timeout=5)
        time.sleep(self.insert_delays.get(message.text, 0))
        if self.fail_inserts or message.text in self.fail_texts:
            raise redis.ConnectionError("write failed")
        self.messages.setdefault(message.room_id, []).append(message)
        return message

    def seed(self, room_id, identity, *texts):
        for i, text in enumerate(texts):
            self.messages[room_id].append(Message(
                id=uuid.uuid4().hex, room_id=room_id, user_identity=identity, text=text,
                created_at=f"2024-01-01T00:00:{i:02d}+00:00",
            ))


class FakeTransport:
    def __init__(self):
        self.sent = []

    async def send_json(self, frame):
        self.sent.append(frame)


def drain(session):
    """Pop every queued frame from a session's outbox (writer not running)."""
    frames = []
    while not session.outbox.empty():
        frame = session.outbox.get_nowait()
        if frame is not None:
            frames.append(frame)
    return frames


@pytest.fixture
def store():
    store = MemoryStore()
    store.create_room("general", "alice@example.com")
    return store


@pytest.fixture
def general(store):
    return next(r.id for r in store.rooms.values() if r.name == "general")


@pytest.fixture
def app(store):
    return create_app(store=store)


@pytest.fixture
def client(app):
    # Entering the client runs the lifespan and shares one event loop between sockets
    with TestClient(app) as client:
        yield client


def connect(client, identity):
    return client.websocket_connect(f"/ws?identity={identity}")


def send(ws, event, data, ref=None):
    frame = {"event": event, "data": data}
    if ref is not None:
        frame["ref"] = ref
    ws.send_json(frame)


def join(ws, room_id, ref=None):
    """Join and return the `room-history` reply."""
    send(ws, "join-room", {"roomId": room_id}, ref=ref)
    reply = ws.receive_json()
    assert reply["event"] == "room-history"
    return reply


def expect(ws, event):
    frame = ws.receive_json()
    assert frame["event"] == event, frame
    return frame["data"]
