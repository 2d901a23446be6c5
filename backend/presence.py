import logging
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

import models
from errors import BadRequest, NotFound
from scheduling import PeriodEntry, class_of_student, current_subject
from utils import minutes_since_midnight, start_of_day

logger = logging.getLogger(__name__)


class PresenceAction(str, Enum):
    SET_PRESENT_FROM = "set_present_from"
    SET_PRESENT_UNTIL = "set_present_until"
    SET_ABSENT = "set_absent"


class PresenceState(str, Enum):
    ABSENT = "absent"      # no record for the period
    UPCOMING = "upcoming"  # window starts later
    PRESENT = "present"
    LAPSED = "lapsed"      # record kept, window is over


@dataclass(frozen=True)
class StudentPresence:
    """A student together with their record for one period (if any)."""
    student: models.User
    record: Optional[models.Presence]


def presence_state(record: Optional[models.Presence], minute: int) -> PresenceState:
    # The window counts through its last minute: until=560 is still present at 09:20
    if record is None:
        return PresenceState.ABSENT
    if minute > record.present_until:
        return PresenceState.LAPSED
    if minute < record.present_from:
        return PresenceState.UPCOMING
    return PresenceState.PRESENT


async def get_presence(db: AsyncSession, student_id: int, day: date, period_id: int) -> Optional[models.Presence]:
    result = await db.execute(
        select(models.Presence).where(
            models.Presence.student_id == student_id,
            models.Presence.date == day,
            models.Presence.period_id == period_id,
        )
    )
    return result.scalar_one_or_none()


async def set_presence(
    db: AsyncSession,
    student_id: int,
    day: date | datetime,
    period_id: int,
    present_from: int,
    present_until: int,
    room_id: Optional[int],
) -> models.Presence:
    """
    Upserts the presence window for (student, date, period).
    Only the bounds are updated on an existing record; the room stays what
    it was when the record was created.
    """
    day = start_of_day(day)
    if present_from < 0 or present_until < 0:
        raise BadRequest("Presence bounds must be minutes since midnight.")

    record = await get_presence(db, student_id, day, period_id)
    if record is None:
        record = models.Presence(
            student_id=student_id,
            date=day,
            period_id=period_id,
            present_from=present_from,
            present_until=present_until,
            room_id=room_id,
        )
        db.add(record)
        try:
            await db.commit()
            logger.info("Presence created: student=%s date=%s period=%s %s-%s",
                        student_id, day, period_id, present_from, present_until)
            return record
        except IntegrityError:
            # A concurrent request inserted the same key first; update it instead
            await db.rollback()
            record = await get_presence(db, student_id, day, period_id)
            if record is None:
                raise

    record.present_from = present_from
    record.present_until = present_until
    await db.commit()
    logger.info("Presence updated: student=%s date=%s period=%s %s-%s",
                student_id, day, period_id, present_from, present_until)
    return record


async def apply_action(
    db: AsyncSession,
    student_id: int,
    entry: PeriodEntry,
    action: PresenceAction,
    now: datetime,
    room_id: Optional[int],
) -> models.Presence:
    """Translates a presence action at `now` into a window for the running period."""
    minute = minutes_since_midnight(now)
    existing = await get_presence(db, student_id, now.date(), entry.period_id)

    if action == PresenceAction.SET_PRESENT_FROM:
        present_from, present_until = minute, entry.end
    elif action == PresenceAction.SET_PRESENT_UNTIL:
        present_from = existing.present_from if existing else entry.start
        present_until = minute
    elif action == PresenceAction.SET_ABSENT:
        # Absent = a window that has already ended
        present_until = minute - 1
        present_from = min(existing.present_from if existing else entry.start, present_until)
    else:
        raise BadRequest(f"Unknown action '{action}'.")

    if present_from > present_until and action != PresenceAction.SET_ABSENT:
        raise BadRequest("present_from must not be after present_until.")

    return await set_presence(db, student_id, now, entry.period_id, present_from, present_until, room_id)


async def is_present(db: AsyncSession, student_id: int, now: datetime) -> Optional[models.Presence]:
    """
    The student's record for the period running now, if its window is still open.
    Returns None when there is no lesson, no record, or the window has elapsed.
    """
    class_id = await class_of_student(db, student_id)
    if class_id is None:
        raise NotFound("Student is not enrolled in a class.")

    entry = await current_subject(db, class_id, now)
    if entry is None:
        return None

    record = await get_presence(db, student_id, now.date(), entry.period_id)
    if record is None or record.present_until < minutes_since_midnight(now):
        return None
    return record


async def class_presence(db: AsyncSession, class_id: int, day: date, period_id: int) -> List[StudentPresence]:
    """Every enrolled student of a class with their record for one period."""
    students = (await db.execute(
        select(models.User)
        .join(models.Enrollment, models.Enrollment.student_id == models.User.id)
        .where(models.Enrollment.class_id == class_id)
        .order_by(models.User.lastname, models.User.firstname)
    )).scalars().all()

    records = (await db.execute(
        select(models.Presence).where(
            models.Presence.date == day,
            models.Presence.period_id == period_id,
            models.Presence.student_id.in_([s.id for s in students]),
        )
    )).scalars().all()
    by_student = {r.student_id: r for r in records}

    return [StudentPresence(student=s, record=by_student.get(s.id)) for s in students]
