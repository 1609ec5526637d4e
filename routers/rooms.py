from fastapi import APIRouter, HTTPException, Request
from typing import List

from backend import run_store_call
from errors import PersistenceError
from schemas.rooms import CreateRoomRequest, Room
from logging_config import get_logger

logger = get_logger(__name__)

rooms_router = APIRouter(prefix="/rooms", tags=["rooms"])


@rooms_router.get("/{user_identity}", response_model=List[Room])
async def list_rooms(user_identity: str, request: Request):
    """Rooms in which `user_identity` is a participant, oldest first."""
    store = request.app.state.store
    try:
        return await run_store_call(store.list_rooms_for_user, user_identity)
    except PersistenceError:
        logger.error(f"Error fetching rooms for {user_identity}")
        raise HTTPException(status_code=500, detail="Failed to fetch rooms")


@rooms_router.post("/", response_model=Room)
async def create_room(room_request: CreateRoomRequest, request: Request):
    # Body: { "name": "...", "createdBy": "alice@example.com", "participants": ["bob@example.com"] }
    # The creator is always a participant. Connected participants get a `new-room` event.
    logger.info(f"Room creation request from {room_request.created_by}, name: {room_request.name}")
    store = request.app.state.store
    gateway = request.app.state.gateway

    participants = [p.strip() for p in room_request.participants if p and p.strip()]
    participants.append(room_request.created_by.strip())

    try:
        room = await run_store_call(store.create_room, room_request.name, room_request.created_by.strip())
        participants = await run_store_call(store.add_participants, room.id, participants)
    except PersistenceError:
        logger.error(f"Error creating room {room_request.name!r}")
        raise HTTPException(status_code=500, detail="Failed to create room")

    gateway.notify_new_room(room, participants)
    logger.info(f"Room {room.id} created successfully with {len(participants)} participants")
    return room
