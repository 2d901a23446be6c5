from __future__ import annotations

import asyncio
import os
from datetime import date, datetime

# The app's own engine is never used in tests; keep it away from ./school.db
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

import models
from database import create_tables
from utils import hash_password

# 2024-03-04 is a Monday
MONDAY = date(2024, 3, 4)
NEXT_MONDAY = date(2024, 3, 11)

ADMIN, TEACHER, TEACHER2, STUDENT, STUDENT2, NEWCOMER = 1, 2, 3, 4, 5, 6
CLASS_10B = 1

TOKENS = {
    ADMIN: ("admin-token", 3),
    TEACHER: ("teacher-token", 2),
    TEACHER2: ("teacher2-token", 2),
    STUDENT: ("student-token", 1),
    STUDENT2: ("student2-token", 1),
    NEWCOMER: ("newcomer-token", 1),
}

PASSWORD = "correct horse"
_PASSWORD_HASH = hash_password(PASSWORD)


def at(day: date, hour: int, minute: int, second: int = 0) -> datetime:
    return datetime(day.year, day.month, day.day, hour, minute, second)


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def engine(tmp_path):
    # NullPool: no connection outlives the event loop that opened it
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool)
    run(create_tables(engine))
    yield engine
    run(engine.dispose())


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


async def _seed_school(session_factory):
    """
    Class 10B, Mondays:
      period 1 07:30 German (teacher 2)
      period 3 09:00 Math   (teacher 2, room 3)
      period 4 10:00 Physics, double lesson until 11:30 (teacher 3)
    On MONDAY only: period 3 becomes Art in room 7 with teacher 3,
    and an extra period 6 (11:45) Music is added.
    """
    async with session_factory() as s:
        s.add_all([
            models.User(id=ADMIN, firstname="Ada", lastname="Admin", short="ADM", role=3),
            models.User(id=TEACHER, firstname="Tom", lastname="Teacher", short="TEA", role=2),
            models.User(id=TEACHER2, firstname="Tina", lastname="Tutor", short="TUT", role=2),
            models.User(id=STUDENT, firstname="Sam", lastname="Student", short="SAM", role=1),
            models.User(id=STUDENT2, firstname="Alex", lastname="Able", short="ALX", role=1),
            models.User(id=NEWCOMER, firstname="Nia", lastname="New", short="NEW", role=1),
        ])
        await s.flush()
        for user_id in (ADMIN, TEACHER, TEACHER2, STUDENT, STUDENT2):
            s.add(models.Password(user_id=user_id, hash=_PASSWORD_HASH))
        s.add(models.Password(user_id=NEWCOMER, hash=None))
        for user_id, (token, level) in TOKENS.items():
            s.add(models.Token(user_id=user_id, token=token, level=level))

        s.add(models.SchoolClass(id=CLASS_10B, short="10B", description="Class 10B", teacher_id=TEACHER))
        await s.flush()
        s.add_all([
            models.Enrollment(student_id=STUDENT, class_id=CLASS_10B),
            models.Enrollment(student_id=STUDENT2, class_id=CLASS_10B),
        ])

        s.add_all([
            models.Period(id=1, start=450),
            models.Period(id=2, start=495),
            models.Period(id=3, start=540),
            models.Period(id=4, start=600),
            models.Period(id=5, start=645),
            models.Period(id=6, start=705),
        ])
        await s.flush()
        s.add_all([
            models.TimetableEntry(class_id=CLASS_10B, room_id=1, period_id=1, teacher_id=TEACHER, subject="German", day=0),
            models.TimetableEntry(class_id=CLASS_10B, room_id=3, period_id=3, teacher_id=TEACHER, subject="Math", day=0),
            models.TimetableEntry(class_id=CLASS_10B, room_id=4, period_id=4, teacher_id=TEACHER2, subject="Physics",
                                  day=0, double_lesson=True),
            models.Substitution(class_id=CLASS_10B, room_id=7, period_id=3, teacher_id=TEACHER2, subject="Art",
                                day=0, date=MONDAY),
            models.Substitution(class_id=CLASS_10B, room_id=8, period_id=6, teacher_id=TEACHER, subject="Music",
                                day=0, date=MONDAY),
        ])
        await s.commit()


@pytest.fixture
def school(session_factory):
    run(_seed_school(session_factory))
    return session_factory


@pytest.fixture
async def school_db(session_factory):
    await _seed_school(session_factory)
    async with session_factory() as session:
        yield session
