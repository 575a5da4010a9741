"""Couch Game backend server"""

from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from typing import Optional
import uvicorn
import logging
import socket as socketlib

import config
config.setup_logging()

from socket_manager import SocketManager

logger = logging.getLogger(__name__)


def get_local_ip():
    try:
        s = socketlib.socket(socketlib.AF_INET, socketlib.SOCK_DGRAM)
        s.connect(("8.8.8.8", 80))
        ip = s.getsockname()[0]
        s.close()
        return ip
    except Exception:
        return "127.0.0.1"


def allowed_origins() -> list:
    if config.ALLOWED_ORIGINS.strip():
        return [o.strip() for o in config.ALLOWED_ORIGINS.split(",")]
    local_ip = get_local_ip()
    return [
        "http://localhost:4200",
        "http://127.0.0.1:4200",
        f"http://{local_ip}:4200",
    ]


def create_app(manager: Optional[SocketManager] = None) -> FastAPI:
    manager = manager or SocketManager()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting Couch Game backend")
        manager.start_cleanup_loop()
        yield
        await manager.shutdown()
        logger.info("Shutting down Couch Game backend")

    app = FastAPI(title="Couch Game API", lifespan=lifespan)
    app.state.socket_manager = manager

    @app.get("/")
    async def root():
        return {"message": "Couch Game API is running"}

    @app.get("/health")
    async def health():
        return {"status": "ok", "game": "Couch Game", "rooms": len(manager.registry)}

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        await manager.connect(websocket)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins(),
        allow_credentials=False,
        allow_methods=["GET"],
        allow_headers=["Content-Type"],
    )
    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("main:app", host=config.HOST, port=config.PORT, reload=True)
