from __future__ import annotations

from datetime import date

import pytest

import models
from errors import ScheduleConflict
from scheduling import (
    PeriodEntry,
    current_subject,
    current_teacher_subject,
    lesson_end,
    locate,
    merge_schedule,
    resolve_schedule,
    resolve_teacher_schedule,
)
from utils import day_of_week, format_minutes, minutes_since_midnight

from conftest import CLASS_10B, MONDAY, NEXT_MONDAY, TEACHER, TEACHER2, at

PERIODS = {1: 450, 2: 495, 3: 540, 4: 600, 5: 645}


def entry(period_id, subject, *, class_id=1, teacher_id=10, room_id=1, double=False):
    return models.TimetableEntry(class_id=class_id, room_id=room_id, period_id=period_id,
                                 teacher_id=teacher_id, subject=subject, day=0, double_lesson=double)


def substitution(period_id, subject, *, class_id=1, teacher_id=11, room_id=7, double=False):
    return models.Substitution(class_id=class_id, room_id=room_id, period_id=period_id, teacher_id=teacher_id,
                               subject=subject, day=0, double_lesson=double, date=MONDAY)


# --- Calendar helpers ---

def test_minutes_since_midnight_drops_seconds():
    assert minutes_since_midnight(at(MONDAY, 9, 10, 59)) == 550
    assert minutes_since_midnight(at(MONDAY, 0, 0)) == 0


def test_day_of_week_starts_on_monday():
    assert day_of_week(MONDAY) == 0
    assert day_of_week(date(2024, 3, 10)) == 6


def test_format_minutes():
    assert format_minutes(545) == "09:05"
    assert format_minutes(None) is None


# --- Merge ---

def test_merge_orders_by_start_time():
    merged = merge_schedule([entry(4, "Physics"), entry(1, "German"), entry(3, "Math")], [], PERIODS)
    assert [e.subject for e in merged] == ["German", "Math", "Physics"]
    assert [e.start for e in merged] == [450, 540, 600]


def test_substitution_replaces_recurring_period():
    merged = merge_schedule([entry(1, "German"), entry(3, "Math", room_id=3)], [substitution(3, "Art")], PERIODS)

    assert [e.period_id for e in merged] == [1, 3]
    art = merged[1]
    assert art.subject == "Art"
    assert art.room_id == 7
    assert art.teacher_id == 11
    assert art.substituted is True
    assert merged[0].substituted is False


def test_substitution_can_add_a_period():
    merged = merge_schedule([entry(1, "German")], [substitution(5, "Music")], PERIODS)
    assert [(e.period_id, e.subject) for e in merged] == [(1, "German"), (5, "Music")]


def test_merge_never_duplicates_period_ids():
    merged = merge_schedule(
        [entry(1, "German"), entry(2, "English"), entry(3, "Math")],
        [substitution(2, "Art"), substitution(3, "Sports"), substitution(5, "Music")],
        PERIODS,
    )
    period_ids = [e.period_id for e in merged]
    assert len(period_ids) == len(set(period_ids))
    assert [e.start for e in merged] == sorted(e.start for e in merged)


def test_end_time_single_and_double_lesson():
    merged = merge_schedule([entry(1, "German"), entry(4, "Physics", double=True)], [], PERIODS)
    assert (merged[0].start, merged[0].end) == (450, 495)
    assert (merged[1].start, merged[1].end) == (600, 690)
    assert lesson_end(540, False) == 585


def test_entry_with_unknown_period_is_skipped():
    merged = merge_schedule([entry(1, "German"), entry(99, "Ghost")], [], PERIODS)
    assert [e.subject for e in merged] == ["German"]


# --- Locate ---

def _day():
    return merge_schedule([entry(1, "German"), entry(3, "Math"), entry(4, "Physics", double=True)], [], PERIODS)


@pytest.mark.parametrize("minute, subject", [
    (450, "German"),   # first minute belongs to the lesson
    (494, "German"),
    (540, "Math"),
    (584, "Math"),
    (689, "Physics"),  # double lesson
])
def test_locate_inside_lesson(minute, subject):
    assert locate(_day(), minute).subject == subject


@pytest.mark.parametrize("minute", [
    0,
    449,
    495,  # German ended, period 2 is free
    585,  # gap between Math and Physics
    690,
    23 * 60,
])
def test_locate_outside_lessons(minute):
    assert locate(_day(), minute) is None


def test_locate_rejects_overlapping_entries():
    overlapping = [
        PeriodEntry(period_id=4, class_id=1, teacher_id=1, room_id=1, subject="Physics", day=0,
                    double_lesson=True, start=600, end=690),
        PeriodEntry(period_id=5, class_id=1, teacher_id=1, room_id=1, subject="Chemistry", day=0,
                    double_lesson=False, start=645, end=690),
    ]
    assert locate(overlapping, 620).subject == "Physics"
    with pytest.raises(ScheduleConflict) as exc:
        locate(overlapping, 650)
    assert exc.value.status_code == 409
    assert "Chemistry" in exc.value.message


# --- Storage backed ---

@pytest.mark.anyio
async def test_resolve_schedule_applies_substitutions_only_on_their_date(school_db):
    on_the_day = await resolve_schedule(school_db, CLASS_10B, MONDAY)
    assert [(e.period_id, e.subject) for e in on_the_day] == [
        (1, "German"), (3, "Art"), (4, "Physics"), (6, "Music"),
    ]

    week_later = await resolve_schedule(school_db, CLASS_10B, NEXT_MONDAY)
    assert [(e.period_id, e.subject) for e in week_later] == [(1, "German"), (3, "Math"), (4, "Physics")]


@pytest.mark.anyio
async def test_resolve_schedule_accepts_a_timestamp(school_db):
    entries = await resolve_schedule(school_db, CLASS_10B, at(MONDAY, 13, 37))
    assert [e.subject for e in entries][1] == "Art"


@pytest.mark.anyio
async def test_unknown_class_or_free_day_is_empty(school_db):
    assert await resolve_schedule(school_db, 999, MONDAY) == []
    assert await resolve_schedule(school_db, CLASS_10B, date(2024, 3, 5)) == []


@pytest.mark.anyio
async def test_teacher_schedule_follows_substitutions(school_db):
    tom = await resolve_teacher_schedule(school_db, TEACHER, MONDAY)
    # Math was handed to Tina; Music was added for Tom
    assert [(e.period_id, e.subject) for e in tom] == [(1, "German"), (6, "Music")]

    tina = await resolve_teacher_schedule(school_db, TEACHER2, MONDAY)
    assert [(e.period_id, e.subject) for e in tina] == [(3, "Art"), (4, "Physics")]

    tom_next_week = await resolve_teacher_schedule(school_db, TEACHER, NEXT_MONDAY)
    assert [e.subject for e in tom_next_week] == ["German", "Math"]


@pytest.mark.anyio
async def test_current_subject_prefers_substitution(school_db):
    art = await current_subject(school_db, CLASS_10B, at(MONDAY, 9, 10))
    assert art.subject == "Art"
    assert art.room_id == 7
    assert (art.start, art.end) == (540, 585)

    math = await current_subject(school_db, CLASS_10B, at(NEXT_MONDAY, 9, 10))
    assert math.subject == "Math"


@pytest.mark.anyio
async def test_current_subject_none_between_lessons(school_db):
    assert await current_subject(school_db, CLASS_10B, at(MONDAY, 9, 50)) is None
    assert await current_subject(school_db, CLASS_10B, at(MONDAY, 6, 0)) is None
    assert await current_subject(school_db, CLASS_10B, at(MONDAY, 15, 0)) is None


@pytest.mark.anyio
async def test_current_teacher_subject(school_db):
    entry = await current_teacher_subject(school_db, TEACHER2, at(MONDAY, 9, 10))
    assert (entry.class_id, entry.subject) == (CLASS_10B, "Art")
    assert await current_teacher_subject(school_db, TEACHER, at(MONDAY, 9, 10)) is None
