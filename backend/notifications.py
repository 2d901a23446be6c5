"""Live push channel to connected teacher dashboards.

The hub is process-wide state. Every connection is registered under the
teacher's user id; a teacher may have several dashboards open and all of
them receive each event.
"""
import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Protocol

from sqlalchemy.ext.asyncio import AsyncSession

import models
from presence import class_presence
from scheduling import current_teacher_subject
from utils import start_of_day

logger = logging.getLogger(__name__)

STUDENT_EVENT = "student"


class Connection(Protocol):
    async def send_json(self, data: Any) -> None:
        ...


def student_payload(
    student: models.User,
    record: Optional[models.Presence],
    day: date,
) -> Dict[str, Any]:
    """The body of a "student" event."""
    return {
        "user": {
            "id": student.id,
            "firstname": student.firstname,
            "middlename": student.middlename,
            "lastname": student.lastname,
            "short": student.short,
        },
        "present_from": record.present_from if record else None,
        "present_until": record.present_until if record else None,
        "date": day.isoformat(),
    }


def envelope(event: str, data: Any) -> Dict[str, Any]:
    return {"event": event, "data": data}


class NotificationHub:
    def __init__(self):
        self._connections: Dict[int, List[Connection]] = {}

    def register(self, user_id: int, conn: Connection) -> None:
        conns = self._connections.setdefault(user_id, [])
        if conn not in conns:
            conns.append(conn)
        logger.info("Teacher %s connected (%d session(s))", user_id, len(conns))

    def unregister(self, user_id: int, conn: Connection) -> None:
        conns = self._connections.get(user_id)
        if not conns or conn not in conns:
            return
        # Replace the list instead of mutating it; a fan-out may be iterating the old one
        remaining = [c for c in conns if c is not conn]
        if remaining:
            self._connections[user_id] = remaining
        else:
            del self._connections[user_id]
        logger.info("Teacher %s disconnected (%d session(s) left)", user_id, len(remaining))

    def connections(self, user_id: int) -> List[Connection]:
        return list(self._connections.get(user_id, ()))

    def connected_users(self) -> List[int]:
        return list(self._connections)

    async def send(self, user_id: int, conn: Connection, event: str, data: Any) -> bool:
        try:
            await conn.send_json(envelope(event, data))
            return True
        except Exception as e:
            logger.warning("Dropping dead connection of teacher %s: %s", user_id, e)
            self.unregister(user_id, conn)
            return False

    async def notify(self, teacher_id: int, payload: Dict[str, Any], event: str = STUDENT_EVENT) -> int:
        """Sends `payload` to every session of the teacher. Returns how many got it."""
        delivered = 0
        for conn in self.connections(teacher_id):
            if await self.send(teacher_id, conn, event, payload):
                delivered += 1
        logger.debug("Event %r for teacher %s delivered to %d session(s)", event, teacher_id, delivered)
        return delivered


async def push_snapshot(
    db: AsyncSession,
    hub: NotificationHub,
    teacher_id: int,
    conn: Connection,
    now: datetime,
) -> int:
    """Catch-up for a freshly connected dashboard: the presence of the class the teacher is in right now."""
    entry = await current_teacher_subject(db, teacher_id, now)
    if entry is None:
        return 0

    day = start_of_day(now)
    sent = 0
    for item in await class_presence(db, entry.class_id, day, entry.period_id):
        if not await hub.send(teacher_id, conn, STUDENT_EVENT, student_payload(item.student, item.record, day)):
            break
        sent += 1
    return sent


# Process-wide hub shared by the HTTP routes and the WebSocket endpoint
hub = NotificationHub()


def get_hub() -> NotificationHub:
    return hub
