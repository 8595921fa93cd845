from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from typing import Optional
from contextlib import asynccontextmanager
import uvicorn
import logging

import config
config.setup_logging()

from socket_manager import SocketManager

logger = logging.getLogger(__name__)

socket_manager = SocketManager()
origins = config.get_allowed_origins()
socket_manager.allowed_origins = origins


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Socket server starting on port %d (%s)", config.PORT, config.ENVIRONMENT.upper())
    logger.info("Allowed origins: %s", ", ".join(origins))
    socket_manager.start_stats_loop()
    yield
    logger.info("Shutting down socket server")
    await socket_manager.shutdown()


app = FastAPI(title="Trivia Channel Server", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type"],
)


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, device_id: Optional[str] = None,
                             locale: Optional[str] = None):
    await socket_manager.connect(websocket, device_id=device_id, locale=locale)


@app.get("/")
async def root():
    return {"message": "Trivia channel server is running"}


@app.get("/health")
async def health():
    return {"status": "healthy"}


@app.get("/stats")
async def stats():
    return {
        "rooms": len(socket_manager.rooms),
        "devices": len(socket_manager.registry),
        "environment": config.ENVIRONMENT,
    }


if __name__ == "__main__":
    uvicorn.run("main:app", host=config.HOST, port=config.PORT, reload=config.ENVIRONMENT == "development")
