from __future__ import annotations

from typing import Any, Dict, Optional

import socketio
from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from .database import db, settings
from .errors import (
    DonorIneligible,
    DuplicateMatch,
    InvalidTransition,
    InvalidUpdate,
    MatchingError,
    NotAuthorized,
    NotFound,
    RecordInUse,
    StaleState,
    StorageError,
)
from .lifecycle.coordinator import LifecycleCoordinator
from .models.donor import Donor
from .routers import auth, matches, requests
from .store.mongo import MongoStore
from .utils.notifications import NotificationEvent, NotificationRouter, NotificationService


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


ERROR_STATUS = {
    NotFound: status.HTTP_404_NOT_FOUND,
    NotAuthorized: status.HTTP_403_FORBIDDEN,
    InvalidTransition: status.HTTP_409_CONFLICT,
    DuplicateMatch: status.HTTP_409_CONFLICT,
    StaleState: status.HTTP_409_CONFLICT,
    RecordInUse: status.HTTP_409_CONFLICT,
    DonorIneligible: status.HTTP_422_UNPROCESSABLE_ENTITY,
    InvalidUpdate: status.HTTP_422_UNPROCESSABLE_ENTITY,
    StorageError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def error_status(exc: MatchingError) -> int:
    for error_type, code in ERROR_STATUS.items():
        if isinstance(exc, error_type):
            return code
    return status.HTTP_400_BAD_REQUEST


sio = socketio.AsyncServer(async_mode="asgi", cors_allowed_origins="*")
app = FastAPI(title="DonorMatch API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

hub = LiveUpdateHub(sio)
store = MongoStore(db)


async def lookup_phone(event: NotificationEvent) -> Optional[str]:
    if event.recipient_kind == "coordinators":
        return settings.coordinator_phone
    if event.recipient_kind == "donor":
        donor = await store.load(Donor.kind, event.recipient_id)
        return donor.phone
    return None


notifier = NotificationRouter(sms=NotificationService(), live=hub, phone_lookup=lookup_phone)
coordinator = LifecycleCoordinator(
    store,
    notifier,
    min_interval_days=settings.donation_interval_days,
    candidate_limit=settings.candidate_limit,
    chunk_size=settings.finder_chunk_size,
)
auth.init_coordinator(coordinator)

app.include_router(requests.router)
app.include_router(matches.router)


@app.exception_handler(MatchingError)
async def matching_error_handler(_: Request, exc: MatchingError) -> JSONResponse:
    code = error_status(exc)
    if code >= 500:
        logger.error("Request failed: {}", exc)
    return JSONResponse({"detail": str(exc), "error": type(exc).__name__}, status_code=code)


@app.get("/health")
async def healthcheck() -> Dict[str, str]:
    return {"status": "ok"}


@app.websocket("/ws/notifications")
async def notifications_websocket(websocket: WebSocket) -> None:
    await hub.connect(websocket)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        hub.disconnect(websocket)


@sio.event
async def connect(sid, environ):  # pragma: no cover - socket handshake
    logger.debug("Socket {} connected", sid)


@sio.event
async def disconnect(sid):  # pragma: no cover - socket handshake
    logger.debug("Socket {} disconnected", sid)


socket_app = socketio.ASGIApp(sio, other_asgi_app=app)


@app.on_event("startup")
async def ensure_indexes() -> None:
    try:
        await store.ensure_indexes()
    except Exception as exc:  # pragma: no cover - external service
        logger.warning("MongoDB unavailable; skipping index creation: {}", exc)
