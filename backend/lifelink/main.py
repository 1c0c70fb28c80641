from __future__ import annotations

from typing import Any, Dict

import socketio
from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from pymongo.errors import PyMongoError

from .database import ensure_indexes
from .engine.events import LifeLinkEvent
from .engine.lifelink import LifeLinkEngine
from .errors import LifeLinkError, ValidationError
from .routers import donor, notification, requisition
from .utils.logging import log_db_error


class LiveUpdateHub:
    def __init__(self, sio_server: socketio.AsyncServer) -> None:
        self.sio = sio_server
        self.websockets: set[WebSocket] = set()

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self.websockets.add(websocket)

    def disconnect(self, websocket: WebSocket) -> None:
        self.websockets.discard(websocket)

    async def notify(self, event: str, payload: Dict[str, Any]) -> None:
        message = {"event": event, "payload": payload}
        stale = []
        for connection in self.websockets:
            try:
                await connection.send_json(message)
            except Exception:
                stale.append(connection)
        for connection in stale:
            self.disconnect(connection)
        await self.sio.emit(event, payload)

    async def engine_event(self, event: LifeLinkEvent) -> None:
        await self.notify(event.type, event.serializable())


async def lifelink_error_handler(request: Request, exc: LifeLinkError) -> JSONResponse:
    return JSONResponse(jsonable_encoder(exc.to_dict()), status_code=exc.status_code)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [{key: err[key] for key in ("loc", "msg", "type") if key in err} for err in exc.errors()]
    error = ValidationError("Invalid request", errors=errors)
    return JSONResponse(jsonable_encoder(error.to_dict()), status_code=error.status_code)


async def database_error_handler(request: Request, exc: PyMongoError) -> JSONResponse:
    log_db_error(f"{request.method} {request.url.path}", exc)
    return JSONResponse(
        {"detail": "Database temporarily unavailable", "code": "DATABASE_UNAVAILABLE"}, status_code=503
    )


def create_app(engine: LifeLinkEngine | None = None, sio_server: socketio.AsyncServer | None = None) -> FastAPI:
    sio_server = sio_server or socketio.AsyncServer(async_mode="asgi", cors_allowed_origins="*")
    hub = LiveUpdateHub(sio_server)
    engine = engine or LifeLinkEngine(event_sink=hub.engine_event)

    application = FastAPI(title="LifeLink API", version="1.0.0")
    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    application.add_exception_handler(LifeLinkError, lifelink_error_handler)
    application.add_exception_handler(RequestValidationError, request_validation_handler)
    application.add_exception_handler(PyMongoError, database_error_handler)

    donor.init_router(engine)
    requisition.init_router(engine)
    notification.init_router(engine)
    application.include_router(donor.router)
    application.include_router(requisition.router)
    application.include_router(notification.router)
    application.state.engine = engine
    application.state.hub = hub

    @application.get("/health")
    async def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    @application.websocket("/ws/events")
    async def events_websocket(websocket: WebSocket) -> None:
        await hub.connect(websocket)
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            hub.disconnect(websocket)

    @application.on_event("startup")
    async def start_engine() -> None:
        try:
            await ensure_indexes(engine.database)
        except PyMongoError as exc:  # pragma: no cover - external service
            logger.warning("MongoDB unavailable; skipping index creation: {}", exc)
        if engine.settings.sweeper_enabled:
            engine.sweeper.start()

    @application.on_event("shutdown")
    async def stop_engine() -> None:
        await engine.sweeper.stop()

    return application


sio = socketio.AsyncServer(async_mode="asgi", cors_allowed_origins="*")
app = create_app(sio_server=sio)


@sio.event
async def connect(sid, environ):  # pragma: no cover - socket handshake
    await app.state.hub.notify("socket_connected", {"sid": sid})


@sio.event
async def disconnect(sid):  # pragma: no cover - socket handshake
    await app.state.hub.notify("socket_disconnected", {"sid": sid})


socket_app = socketio.ASGIApp(sio, other_asgi_app=app)
