"""FastAPI server exposing the multi-agent chat rooms over a WebSocket."""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional, Set

from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from agentrooms import __version__
from agentrooms.models.websocket import UNKNOWN_ACTION, InboundCommand
from agentrooms.orchestration.rooms import RoomCatalog, error_reply
from agentrooms.utils.completion import build_completion_service
from agentrooms.utils.config import Config
from agentrooms.utils.logging import setup_logging

APP_TITLE = "Agent Rooms"

logger = logging.getLogger(__name__)


def build_catalog(config: Config) -> RoomCatalog:
    """Create the completion service and load the rooms it serves."""
    completion = build_completion_service(config.completion)
    return RoomCatalog.load(config.rooms.directory, completion, config.orchestration)


def create_app(config: Optional[Config] = None, catalog: Optional[RoomCatalog] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        config: Settings; loaded from config.yaml and the environment when None
        catalog: Pre-built room catalog; built from ``config`` when None

    Returns:
        FastAPI app
    """
    config = config or Config.load()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(
            level=config.logging.level,
            log_format=config.logging.format,
            log_file=config.logging.file or None,
        )
        app.state.config = config
        app.state.catalog = catalog or build_catalog(config)
        logger.info(f"{APP_TITLE} {__version__} serving rooms: {', '.join(app.state.catalog.names) or 'none'}")
        yield
        logger.info(f"{APP_TITLE} shutting down")

    app = FastAPI(title=APP_TITLE, version=__version__, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.server.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/healthz")
    async def healthz() -> JSONResponse:
        return JSONResponse({"status": "ok", "version": __version__})

    @app.get("/api/rooms")
    async def list_rooms(request: Request) -> JSONResponse:
        catalog_state: Optional[RoomCatalog] = getattr(request.app.state, "catalog", None)
        if catalog_state is None:
            raise HTTPException(status_code=503, detail="Rooms are not loaded yet.")
        return JSONResponse(catalog_state.room_list().to_dict())

    @app.websocket("/ws")
    async def chat_socket(websocket: WebSocket):
        await websocket.accept()
        session = websocket.app.state.catalog.new_session()
        send_lock = asyncio.Lock()
        tasks: Set[asyncio.Task] = set()

        async def send(payload: Dict[str, Any]):
            async with send_lock:
                await websocket.send_json(payload)

        logger.info(f"WebSocket connected, session {session.session_id}")
        try:
            while True:
                raw = await websocket.receive_text()
                try:
                    command = InboundCommand.from_dict(json.loads(raw))
                except ValueError as e:
                    logger.warning(f"Rejected inbound message: {e}")
                    await send(error_reply("", UNKNOWN_ACTION, f"Invalid command: {e}").to_dict())
                    continue

                # Commands run concurrently so a reset can reach a room while it streams.
                task = asyncio.create_task(session.dispatch(command, send))
                tasks.add(task)
                task.add_done_callback(tasks.discard)
        except WebSocketDisconnect:
            logger.info(f"WebSocket disconnected, session {session.session_id}")
        finally:
            session.close()
            for task in list(tasks):
                task.cancel()

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("server:app", host="0.0.0.0", port=8000)
