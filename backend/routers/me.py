import logging
from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from config import ROLE_TEACHER, STUDENT_LEVEL
from database import get_db
from errors import NotFound
from notifications import NotificationHub, get_hub, student_payload
from presence import apply_action, get_presence, is_present, presence_state
from routers.auth import require_level
from scheduling import class_of_student, current_subject, locate, resolve_schedule, resolve_teacher_schedule
from security import AuthContext
import schemas
from utils import minutes_since_midnight, now_local

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/me",
    tags=["Me"],
)


async def _my_schedule(db: AsyncSession, auth: AuthContext, day: date):
    """Teachers see what they teach, everyone else the timetable of their class."""
    if auth.user.role >= ROLE_TEACHER:
        return await resolve_teacher_schedule(db, auth.user_id, day)

    class_id = await class_of_student(db, auth.user_id)
    if class_id is None:
        raise NotFound("You are not enrolled in a class.")
    return await resolve_schedule(db, class_id, day)


@router.get("", response_model=schemas.Me)
async def read_me(auth: AuthContext = Depends(require_level(STUDENT_LEVEL))):
    return schemas.Me(user=schemas.User.model_validate(auth.user), level=auth.level)


@router.get("/schedule/", response_model=schemas.Schedule)
async def read_my_schedule(
    day: Optional[date] = Query(None, alias="date"),
    auth: AuthContext = Depends(require_level(STUDENT_LEVEL)),
    db: AsyncSession = Depends(get_db),
    now: datetime = Depends(now_local),
):
    """Effective schedule for a date (default: today) with substitutions applied."""
    day = day or now.date()
    entries = await _my_schedule(db, auth, day)
    return schemas.Schedule(date=day, entries=[schemas.PeriodEntry.from_entry(e) for e in entries])


@router.get("/schedule/current_subject/", response_model=schemas.PeriodEntry)
async def read_my_current_subject(
    auth: AuthContext = Depends(require_level(STUDENT_LEVEL)),
    db: AsyncSession = Depends(get_db),
    now: datetime = Depends(now_local),
):
    entry = locate(await _my_schedule(db, auth, now.date()), minutes_since_midnight(now))
    if entry is None:
        raise NotFound("No subject is taking place right now.")
    return schemas.PeriodEntry.from_entry(entry)


@router.post("/present", response_model=schemas.Presence)
async def update_my_presence(
    data: schemas.PresenceActionInput,
    room_id: Optional[int] = Query(None),
    auth: AuthContext = Depends(require_level(STUDENT_LEVEL)),
    db: AsyncSession = Depends(get_db),
    now: datetime = Depends(now_local),
    hub: NotificationHub = Depends(get_hub),
):
    """
    Records a presence action for the period running now and pushes the new
    window to the teacher of that period.
    """
    class_id = await class_of_student(db, auth.user_id)
    if class_id is None:
        raise NotFound("You are not enrolled in a class.")

    entry = await current_subject(db, class_id, now)
    if entry is None:
        raise NotFound("No subject is taking place right now.")

    if room_id is None:
        room_id = entry.room_id
    record = await apply_action(db, auth.user_id, entry, data.action, now, room_id)
    logger.info("Student %s: %s during %s (period %s)", auth.user_id, data.action.value, entry.subject, entry.period_id)

    await hub.notify(entry.teacher_id, student_payload(auth.user, record, now.date()))
    return record


@router.get("/is_present", response_model=schemas.PresenceStatus)
async def read_my_presence(
    auth: AuthContext = Depends(require_level(STUDENT_LEVEL)),
    db: AsyncSession = Depends(get_db),
    now: datetime = Depends(now_local),
):
    record = open_record = await is_present(db, auth.user_id, now)
    if open_record is None:
        # Not present: still report the record, if any, so a lapsed window shows as such
        class_id = await class_of_student(db, auth.user_id)
        entry = await current_subject(db, class_id, now)
        if entry is not None:
            record = await get_presence(db, auth.user_id, now.date(), entry.period_id)

    return schemas.PresenceStatus(
        present=open_record is not None,
        state=presence_state(record, minutes_since_midnight(now)),
        record=schemas.Presence.model_validate(record) if record else None,
    )
