import uvicorn
import os

# Importing app configures logging from LOG_LEVEL / LOG_FILE
from app import app
from logging_config import get_logger

logger = get_logger(__name__)

if __name__ == "__main__":
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", 8000))
    reload = os.getenv("RELOAD", "false").lower() in ("1", "true", "yes")
    logger.info(f"Starting RoomSync server on {host}:{port}")
    # A single worker: room membership lives in this process's memory
    uvicorn.run("app:app" if reload else app, host=host, port=port, reload=reload, workers=1)
