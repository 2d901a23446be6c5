import json
import logging
from typing import Callable, List

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from config import TEACHER_LEVEL
from database import get_db
from errors import ErrorKind, ServiceError
from notifications import NotificationHub, envelope, get_hub, push_snapshot
from security import authorize
from utils import get_clock

logger = logging.getLogger(__name__)

router = APIRouter(
    tags=["Live"],
)

TOKEN_EVENT = "token"


def error_event(kind: ErrorKind, message: str):
    return envelope("error", {"kind": kind.value, "message": message})


async def read_event(websocket: WebSocket):
    """Next JSON text frame. Binary or malformed frames give None."""
    frame = await websocket.receive()
    if frame["type"] == "websocket.disconnect":
        raise WebSocketDisconnect(frame.get("code", 1000))
    text = frame.get("text")
    if text is None:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return None


@router.websocket("/ws")
async def live_channel(
    websocket: WebSocket,
    db: AsyncSession = Depends(get_db),
    hub: NotificationHub = Depends(get_hub),
    clock: Callable = Depends(get_clock),
):
    """
    Teacher dashboards connect here and send {"event": "token", "data": "<token>"}.
    Accepted sessions get a snapshot of their current class and then every
    "student" event for the classes they teach.
    """
    await websocket.accept()
    registered: List[int] = []

    try:
        while True:
            message = await read_event(websocket)
            if message is None:
                await websocket.send_json(error_event(ErrorKind.BAD_REQUEST, "Messages must be JSON text."))
                continue

            if not isinstance(message, dict) or message.get("event") != TOKEN_EVENT:
                await websocket.send_json(error_event(ErrorKind.BAD_REQUEST, "Unknown event."))
                continue

            now = clock()
            try:
                auth = await authorize(db, message.get("data"), TEACHER_LEVEL, now)
                hub.register(auth.user_id, websocket)
                if auth.user_id not in registered:
                    registered.append(auth.user_id)
                await websocket.send_json(envelope("message", {"message": "Authenticated.", "user": auth.user_id}))
                await push_snapshot(db, hub, auth.user_id, websocket, now)
            except ServiceError as e:
                logger.info("Live session refused: %s", e.kind.value)
                await websocket.send_json(envelope("error", e.to_dict()))
            except SQLAlchemyError as e:
                logger.error("Storage failure on live channel: %s", e)
                await db.rollback()
                await websocket.send_json(error_event(
                    ErrorKind.UPSTREAM_FAILURE, "Storage is unavailable. Please try again later.",
                ))
    except WebSocketDisconnect:
        pass
    finally:
        for user_id in registered:
            hub.unregister(user_id, websocket)
