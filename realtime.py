"""
Real-time chat over a WebSocket.

Frames are JSON objects {"event": <name>, "data": <payload>}.
Client -> server: sendMessage
Server -> client: connected, publicMessageReceived, privateMessageReceived,
                  messageFailed, authentication_failed
"""

import json
import logging
from collections import defaultdict
from typing import Any, Dict, Optional, Set

from fastapi import WebSocket, WebSocketDisconnect, status
from fastapi.encoders import jsonable_encoder
from pydantic import ValidationError
from pymongo.errors import PyMongoError
from starlette.concurrency import run_in_threadpool
from starlette.websockets import WebSocketState

from auth import Caller, resolve_caller
from errors import ApiError, TokenExpired
from messages import save_message
from schemas import SendMessagePayload

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Sockets grouped by user id; each user id acts as a private room."""

    def __init__(self):
        self.rooms: Dict[str, Set[WebSocket]] = defaultdict(set)

    def connect(self, user_id: str, websocket: WebSocket):
        self.rooms[user_id].add(websocket)
        logger.info("User connected: %s", user_id)

    def disconnect(self, user_id: str, websocket: WebSocket):
        sockets = self.rooms.get(user_id)
        if sockets is None:
            return
        sockets.discard(websocket)
        if not sockets:
            del self.rooms[user_id]
        logger.info("User disconnected: %s", user_id)

    def count(self) -> int:
        return sum(len(s) for s in self.rooms.values())

    async def _send(self, websocket: WebSocket, event: str, data: Any) -> bool:
        try:
            if websocket.application_state == WebSocketState.CONNECTED:
                await websocket.send_json({"event": event, "data": jsonable_encoder(data)})
                return True
        except (RuntimeError, WebSocketDisconnect) as e:
            logger.warning("Dropping %s for a closed socket: %s", event, e)
        return False

    async def broadcast(self, event: str, data: Any) -> int:
        sockets = [ws for room in list(self.rooms.values()) for ws in list(room)]
        delivered = 0
        for ws in sockets:
            if await self._send(ws, event, data):
                delivered += 1
        return delivered

    async def send_to_user(self, user_id: str, event: str, data: Any) -> int:
        delivered = 0
        for ws in list(self.rooms.get(user_id, ())):
            if await self._send(ws, event, data):
                delivered += 1
        return delivered


async def _fail(websocket: WebSocket, reason: str):
    await websocket.send_json({"event": "messageFailed", "data": {"reason": reason}})


async def handle_send_message(websocket: WebSocket, caller: Caller, data: Any):
    app_state = websocket.app.state
    try:
        payload = SendMessagePayload.model_validate(data or {})
    except ValidationError as e:
        logger.info("Rejected sendMessage from %s: %s", caller.id, e.errors())
        await _fail(websocket, "Invalid message payload.")
        return

    try:
        saved = await run_in_threadpool(
            save_message, app_state.db, caller.id, payload.message, payload.is_public, payload.receiver_id
        )
    except ApiError as e:
        logger.info("Rejected sendMessage from %s: %s", caller.id, e.custom_message)
        await _fail(websocket, e.custom_message or e.message)
        return
    except PyMongoError:
        logger.exception("Error saving message to DB")
        await _fail(websocket, "Message could not be saved.")
        return

    manager: ConnectionManager = app_state.connections
    if saved["is_public"]:
        await manager.broadcast("publicMessageReceived", saved)
    else:
        await manager.send_to_user(saved["receiver_id"], "privateMessageReceived", saved)


async def _reject(websocket: WebSocket):
    await websocket.send_json({"event": "authentication_failed", "data": "Failed to authenticate."})
    await websocket.close(code=status.WS_1008_POLICY_VIOLATION)


def _decode_frame(message: dict) -> Optional[dict]:
    """JSON object from a text frame; None for binary or malformed frames."""
    text = message.get("text")
    if text is None:
        return None
    try:
        frame = json.loads(text)
    except ValueError:
        return None
    return frame if isinstance(frame, dict) else None


async def chat_socket(websocket: WebSocket):
    await websocket.accept()
    app_state = websocket.app.state
    token = websocket.query_params.get("token")

    try:
        if not token:
            raise TokenExpired("No token provided.")
        caller = await run_in_threadpool(resolve_caller, token, app_state.db, app_state.settings)
    except TokenExpired as e:
        logger.info("Authentication error: %s", e.custom_message)
        await _reject(websocket)
        return
    except PyMongoError:
        logger.exception("Error loading the socket's user")
        await _reject(websocket)
        return

    manager: ConnectionManager = app_state.connections
    manager.connect(caller.id, websocket)
    try:
        await websocket.send_json({"event": "connected", "data": {"user_id": caller.id}})
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", status.WS_1000_NORMAL_CLOSURE))
            frame = _decode_frame(message)
            if frame is None:
                await _fail(websocket, "Malformed frame.")
                continue

            event = frame.get("event")
            if event == "sendMessage":
                await handle_send_message(websocket, caller, frame.get("data"))
            else:
                logger.debug("Ignoring unknown event %r from %s", event, caller.id)
    except WebSocketDisconnect:
        pass
    finally:
        manager.disconnect(caller.id, websocket)
