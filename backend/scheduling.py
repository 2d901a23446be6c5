import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

import models
from config import PERIOD_LENGTH_MINUTES
from errors import ScheduleConflict
from utils import day_of_week, format_minutes, minutes_since_midnight, start_of_day

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PeriodEntry:
    """One slot of an effective (already merged) schedule."""
    period_id: int
    class_id: int
    teacher_id: int
    room_id: Optional[int]
    subject: str
    day: int
    double_lesson: bool
    start: int
    end: int
    substituted: bool = False

    def contains(self, minute: int) -> bool:
        return self.start <= minute < self.end


def lesson_end(start: int, double_lesson: bool) -> int:
    return start + (2 * PERIOD_LENGTH_MINUTES if double_lesson else PERIOD_LENGTH_MINUTES)


def merge_schedule(
    recurring: Iterable[models.TimetableEntry],
    substitutions: Iterable[models.Substitution],
    period_starts: Dict[int, int],
) -> List[PeriodEntry]:
    """
    Merges the weekly timetable with the substitutions of one date.
    1. Start from the recurring entries, keyed by (class, period).
    2. A substitution replaces the entry with the same key,
       or adds a new period when the base timetable has none.
    3. Place every entry in time and sort by start.
    """
    by_slot: Dict[tuple, tuple] = {}
    for row in recurring:
        by_slot[(row.class_id, row.period_id)] = (row, False)
    for row in substitutions:
        by_slot[(row.class_id, row.period_id)] = (row, True)

    entries: List[PeriodEntry] = []
    for (_, period_id), (row, substituted) in by_slot.items():
        start = period_starts.get(period_id)
        if start is None:
            logger.warning("Timetable row for class %s references unknown period %s; skipped", row.class_id, period_id)
            continue
        double = bool(row.double_lesson)
        entries.append(PeriodEntry(
            period_id=period_id,
            class_id=row.class_id,
            teacher_id=row.teacher_id,
            room_id=row.room_id,
            subject=row.subject,
            day=row.day,
            double_lesson=double,
            start=start,
            end=lesson_end(start, double),
            substituted=substituted,
        ))

    entries.sort(key=lambda e: (e.start, e.period_id))
    return entries


def locate(entries: Sequence[PeriodEntry], minute: int) -> Optional[PeriodEntry]:
    """Finds the entry running at `minute`. None outside of lessons."""
    matches = [e for e in entries if e.contains(minute)]
    if not matches:
        return None
    if len(matches) > 1:
        clash = ", ".join(f"{e.subject} ({format_minutes(e.start)}-{format_minutes(e.end)})" for e in matches)
        raise ScheduleConflict(f"Overlapping timetable entries at {format_minutes(minute)}: {clash}")
    return matches[0]


async def _period_starts(db: AsyncSession) -> Dict[int, int]:
    result = await db.execute(select(models.Period.id, models.Period.start))
    return {period_id: start for period_id, start in result.all()}


async def _recurring(db: AsyncSession, day: date, condition) -> Sequence[models.TimetableEntry]:
    result = await db.execute(
        select(models.TimetableEntry).where(condition, models.TimetableEntry.day == day_of_week(day))
    )
    return result.scalars().all()


async def _substitutions(db: AsyncSession, day: date, condition) -> Sequence[models.Substitution]:
    result = await db.execute(
        select(models.Substitution).where(
            condition,
            models.Substitution.day == day_of_week(day),
            models.Substitution.date == day,
        )
    )
    return result.scalars().all()


async def resolve_schedule(db: AsyncSession, class_id: int, day: date | datetime) -> List[PeriodEntry]:
    """Effective schedule of a class on one date. Unknown classes yield []."""
    day = start_of_day(day)
    recurring = await _recurring(db, day, models.TimetableEntry.class_id == class_id)
    substitutions = await _substitutions(db, day, models.Substitution.class_id == class_id)
    if not recurring and not substitutions:
        return []
    return merge_schedule(recurring, substitutions, await _period_starts(db))


async def resolve_teacher_schedule(db: AsyncSession, teacher_id: int, day: date | datetime) -> List[PeriodEntry]:
    """
    Same merge, keyed by the teacher instead of the class.
    Substitutions of the teacher's own classes are fetched too, so a lesson
    handed to a colleague disappears from this teacher's day.
    """
    day = start_of_day(day)
    recurring = await _recurring(db, day, models.TimetableEntry.teacher_id == teacher_id)
    own_classes = {row.class_id for row in recurring}
    substitutions = await _substitutions(db, day, or_(
        models.Substitution.teacher_id == teacher_id,
        models.Substitution.class_id.in_(own_classes),
    ))
    if not recurring and not substitutions:
        return []
    merged = merge_schedule(recurring, substitutions, await _period_starts(db))
    return [e for e in merged if e.teacher_id == teacher_id]


async def current_subject(db: AsyncSession, class_id: int, now: datetime) -> Optional[PeriodEntry]:
    entries = await resolve_schedule(db, class_id, now)
    return locate(entries, minutes_since_midnight(now))


async def current_teacher_subject(db: AsyncSession, teacher_id: int, now: datetime) -> Optional[PeriodEntry]:
    entries = await resolve_teacher_schedule(db, teacher_id, now)
    return locate(entries, minutes_since_midnight(now))


async def class_of_student(db: AsyncSession, student_id: int) -> Optional[int]:
    result = await db.execute(
        select(models.Enrollment.class_id).where(models.Enrollment.student_id == student_id)
    )
    return result.scalar_one_or_none()
