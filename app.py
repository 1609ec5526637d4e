from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import asyncio
import os

from routers.rooms import rooms_router
from backend import RedisBackend, run_store_call
from constants import CORS_ORIGINS
from errors import PersistenceError
from identity import ProxyIdentityProvider
from realtime.gateway import ConnectionGateway
from logging_config import get_logger, setup_logging

# Setup logging
log_level = os.getenv("LOG_LEVEL", "INFO")
log_file = os.getenv("LOG_FILE", None)
setup_logging(log_level=log_level, log_file=log_file)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # An unreachable Store at startup is fatal
    try:
        await run_store_call(app.state.store.ping)
    except PersistenceError:
        logger.critical("Persistence Store unreachable at startup, shutting down")
        raise
    logger.info("Persistence Store reachable")
    yield


def create_app(store=None, identity_provider=None) -> FastAPI:
    app = FastAPI(lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.store = store if store is not None else RedisBackend()
    app.state.identity_provider = identity_provider or ProxyIdentityProvider()
    app.state.gateway = ConnectionGateway(app.state.store)

    app.include_router(rooms_router)
    app.add_api_route("/health", health, methods=["GET"])
    app.add_api_websocket_route("/ws", websocket_endpoint)

    logger.info("FastAPI application initialized")
    return app


async def health(request: Request):
    try:
        await run_store_call(request.app.state.store.ping)
    except PersistenceError:
        raise HTTPException(status_code=503, detail="Store unavailable")
    return {"status": "ok"}


async def websocket_endpoint(websocket: WebSocket):
    """Persistent connection carrying the room event protocol.

    Frames are JSON objects `{"event", "data", "ref"}`; see `realtime.gateway`
    for the events handled.
    """
    gateway: ConnectionGateway = websocket.app.state.gateway
    identity = websocket.app.state.identity_provider.resolve(websocket)
    if identity is None:
        logger.info("WebSocket connection rejected: no verified user identity")
        await websocket.close(code=1008, reason="Missing user identity")
        return

    await websocket.accept()
    session = gateway.on_connect(websocket, identity)
    writer = asyncio.create_task(session.run_writer())
    try:
        while True:
            data = await websocket.receive_text()
            await gateway.dispatch(session, data)
    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected normally for session {session.id}")
    except Exception as e:
        logger.error(f"WebSocket error for session {session.id}: {e}", exc_info=True)
    finally:
        await gateway.on_disconnect(session)
        writer.cancel()
        try:
            await writer
        except asyncio.CancelledError:
            pass
        try:
            await websocket.close()
        except Exception as e:
            logger.debug(f"Error closing WebSocket: {e}")


app = create_app()
