from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Any, Optional


class WireModel(BaseModel):
    # camelCase on the wire, snake_case in Python and in the Store
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def wire(self) -> dict:
        return self.model_dump(by_alias=True)


class CreateRoomRequest(WireModel):
    name: str = Field(..., min_length=1, max_length=200)
    created_by: str = Field(..., min_length=1)
    participants: list[str] = []

class Room(WireModel):
    id: str
    name: str
    created_by: Optional[str] = None
    created_at: str

class Message(WireModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    room_id: str
    user_identity: str
    text: str
    created_at: str


# Inbound event payloads
class JoinRoomPayload(WireModel):
    room_id: str = Field(..., min_length=1)
    user_identity: Optional[str] = None

class LeaveRoomPayload(WireModel):
    room_id: str = Field(..., min_length=1)

class SendMessagePayload(WireModel):
    room_id: str = Field(..., min_length=1)
    user_identity: Optional[str] = None
    text: str


# Outbound event payloads
class ActiveUsers(WireModel):
    room_id: str
    count: int

class NewRoom(WireModel):
    room: Room
    participants: list[str]

class ErrorPayload(WireModel):
    message: str
    code: str


class Envelope(BaseModel):
    """One frame on the socket: `{"event": ..., "data": ..., "ref": ...}`.

    `ref` is an opaque client token echoed on the direct reply to a request
    (currently `room-history` for `join-room`).
    """
    event: str
    data: Any = None
    ref: Optional[str] = None
