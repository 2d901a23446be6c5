import logging
from datetime import date, datetime
from io import BytesIO, StringIO
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd
from fastapi import APIRouter, Depends, Query, UploadFile, status
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from config import ADMIN_LEVEL, TEACHER_LEVEL
from database import get_db
from errors import BadRequest, NotFound, ServiceError
import models
from presence import class_presence, presence_state
from routers.auth import require_level
from scheduling import current_subject, resolve_schedule, resolve_teacher_schedule
import schemas
from utils import day_of_week, minutes_since_midnight, now_local

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/timetable",
    tags=["Timetable Management"],
)

WEEKDAYS = ['Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday', 'Sunday']
REQUIRED_COLUMNS = ["class_id", "period_id", "teacher_id", "subject"]


# --- Helper Functions ---
def parse_day(value: Any) -> Optional[int]:
    """Accepts 0-6, 'Monday' or 'Mon'. Returns None for anything else."""
    if value is None or pd.isna(value):
        return None
    if isinstance(value, (int, float)):
        day = int(value)
        return day if 0 <= day <= 6 else None
    text = str(value).strip()
    if text.isdigit():
        day = int(text)
        return day if 0 <= day <= 6 else None
    for idx, name in enumerate(WEEKDAYS):
        if name.lower().startswith(text.lower()) and len(text) >= 3:
            return idx
    return None


def parse_bool(value: Any) -> bool:
    if value is None or pd.isna(value):
        return False
    return str(value).strip().lower() in ("1", "true", "yes", "y", "x", "double")


def parse_int(value: Any) -> Optional[int]:
    if value is None or pd.isna(value) or str(value).strip() == "":
        return None
    return int(float(value))


def read_timetable_file(contents: bytes) -> pd.DataFrame:
    """Reads an Excel sheet, falling back to CSV."""
    try:
        df = pd.read_excel(BytesIO(contents))
    except Exception:
        try:
            df = pd.read_csv(StringIO(contents.decode('utf-8-sig')))
        except Exception as e:
            raise BadRequest(f"Could not read file. Error: {e}")

    df.columns = [str(c).strip().lower().replace(" ", "_") for c in df.columns]
    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise BadRequest(f"Missing column(s): {', '.join(missing)}")
    return df


def rows_from_frame(df: pd.DataFrame, kind: str) -> Tuple[List[Dict[str, Any]], int]:
    """
    Turns the sheet into timetable rows.
    Rows with missing ids, an unknown weekday or (for substitutions) no date are skipped.
    """
    rows: List[Dict[str, Any]] = []
    skipped = 0

    for record in df.to_dict(orient="records"):
        try:
            row = {
                "class_id": parse_int(record.get("class_id")),
                "period_id": parse_int(record.get("period_id")),
                "teacher_id": parse_int(record.get("teacher_id")),
                "room_id": parse_int(record.get("room_id")),
                "subject": str(record.get("subject") or "").strip(),
                "double_lesson": parse_bool(record.get("double_lesson")),
                "day": parse_day(record.get("day")),
            }
            if kind == "substitution":
                raw_date = record.get("date")
                row["date"] = None if raw_date is None or pd.isna(raw_date) else pd.to_datetime(raw_date).date()
                if row["date"] is not None:
                    row["day"] = day_of_week(row["date"])
        except (TypeError, ValueError):
            skipped += 1
            continue

        if None in (row["class_id"], row["period_id"], row["teacher_id"], row["day"]) or not row["subject"] \
                or (kind == "substitution" and row["date"] is None):
            skipped += 1
            continue
        rows.append(row)

    return rows, skipped


def _schedule_out(day: date, entries) -> schemas.Schedule:
    return schemas.Schedule(date=day, entries=[schemas.PeriodEntry.from_entry(e) for e in entries])


# --- Read Endpoints ---

@router.get("/classes/{class_id}", response_model=schemas.Schedule,
            dependencies=[Depends(require_level(TEACHER_LEVEL))])
async def get_class_schedule(
    class_id: int,
    day: Optional[date] = Query(None, alias="date"),
    db: AsyncSession = Depends(get_db),
    now: datetime = Depends(now_local),
):
    """Effective schedule of a class; unknown classes give an empty day."""
    day = day or now.date()
    return _schedule_out(day, await resolve_schedule(db, class_id, day))


@router.get("/teachers/{teacher_id}", response_model=schemas.Schedule,
            dependencies=[Depends(require_level(TEACHER_LEVEL))])
async def get_teacher_schedule(
    teacher_id: int,
    day: Optional[date] = Query(None, alias="date"),
    db: AsyncSession = Depends(get_db),
    now: datetime = Depends(now_local),
):
    day = day or now.date()
    return _schedule_out(day, await resolve_teacher_schedule(db, teacher_id, day))


@router.get("/classes/{class_id}/current_subject", response_model=schemas.PeriodEntry,
            dependencies=[Depends(require_level(TEACHER_LEVEL))])
async def get_class_current_subject(
    class_id: int,
    db: AsyncSession = Depends(get_db),
    now: datetime = Depends(now_local),
):
    entry = await current_subject(db, class_id, now)
    if entry is None:
        raise NotFound("No subject is taking place right now.")
    return schemas.PeriodEntry.from_entry(entry)


@router.get("/classes/{class_id}/presence", response_model=schemas.ClassPresence,
            dependencies=[Depends(require_level(TEACHER_LEVEL))])
async def get_class_presence(
    class_id: int,
    db: AsyncSession = Depends(get_db),
    now: datetime = Depends(now_local),
):
    """Who is in the lesson the class has right now."""
    entry = await current_subject(db, class_id, now)
    if entry is None:
        raise NotFound("No subject is taking place right now.")

    minute = minutes_since_midnight(now)
    students = [
        schemas.StudentPresence(
            user=schemas.User.model_validate(item.student),
            state=presence_state(item.record, minute),
            record=schemas.Presence.model_validate(item.record) if item.record else None,
        )
        for item in await class_presence(db, class_id, now.date(), entry.period_id)
    ]
    return schemas.ClassPresence(
        class_id=class_id,
        period_id=entry.period_id,
        subject=entry.subject,
        date=now.date(),
        students=students,
    )


# --- Admin Write Endpoints ---

@router.post("/periods", response_model=schemas.Period, status_code=status.HTTP_201_CREATED,
             dependencies=[Depends(require_level(ADMIN_LEVEL))])
async def upsert_period(data: schemas.PeriodCreate, db: AsyncSession = Depends(get_db)):
    period = await db.get(models.Period, data.id)
    if period is None:
        period = models.Period(id=data.id)
        db.add(period)
    period.start = data.start
    await db.commit()
    return period


@router.post("/entries", response_model=schemas.TimetableEntry, status_code=status.HTTP_201_CREATED,
             dependencies=[Depends(require_level(ADMIN_LEVEL))])
async def create_timetable_entry(data: schemas.TimetableEntryBase, db: AsyncSession = Depends(get_db)):
    if await db.get(models.Period, data.period_id) is None:
        raise NotFound(f"Period {data.period_id} not found.")

    entry = models.TimetableEntry(**data.model_dump())
    db.add(entry)
    await db.commit()
    return entry


@router.post("/substitutions", response_model=schemas.Substitution, status_code=status.HTTP_201_CREATED,
             dependencies=[Depends(require_level(ADMIN_LEVEL))])
async def create_substitution(data: schemas.SubstitutionCreate, db: AsyncSession = Depends(get_db)):
    """A date-specific override. The weekday must match the date."""
    if await db.get(models.Period, data.period_id) is None:
        raise NotFound(f"Period {data.period_id} not found.")

    weekday = day_of_week(data.date)
    if data.day is not None and data.day != weekday:
        raise BadRequest(f"{data.date} is a {WEEKDAYS[weekday]}, not a {WEEKDAYS[data.day]}.")

    # One override per (class, date, period): a newer one replaces the older one
    await db.execute(delete(models.Substitution).where(
        models.Substitution.class_id == data.class_id,
        models.Substitution.date == data.date,
        models.Substitution.period_id == data.period_id,
    ))
    substitution = models.Substitution(**data.model_dump(exclude={"day"}), day=weekday)
    db.add(substitution)
    await db.commit()
    return substitution


@router.post("/upload-master", response_model=schemas.ImportResult, status_code=status.HTTP_201_CREATED,
             dependencies=[Depends(require_level(ADMIN_LEVEL))])
async def upload_master_timetable(
    file: UploadFile,
    kind: str = Query("recurring", pattern="^(recurring|substitution)$"),
    db: AsyncSession = Depends(get_db),
):
    """
    Uploads a timetable sheet (CSV, XLS or XLSX).
    kind=recurring replaces the whole weekly timetable; kind=substitution
    replaces the substitutions of every date found in the sheet.
    """
    if not file.filename:
        raise BadRequest("No file provided.")

    if not file.filename.endswith(('.csv', '.xlsx', '.xls')):
        raise BadRequest("Invalid file type. Please upload a CSV, XLS, or XLSX file.")

    contents = await file.read()
    rows, skipped = rows_from_frame(read_timetable_file(contents), kind)
    if not rows:
        raise BadRequest(f"No usable rows found ({skipped} skipped).")

    known_periods = set((await db.execute(select(models.Period.id))).scalars().all())
    unknown = sorted({r["period_id"] for r in rows} - known_periods)
    if unknown:
        raise BadRequest(f"Unknown period id(s): {', '.join(map(str, unknown))}")

    try:
        if kind == "recurring":
            await db.execute(delete(models.TimetableEntry))
            db.add_all(models.TimetableEntry(**row) for row in rows)
        else:
            dates = {row["date"] for row in rows}
            await db.execute(delete(models.Substitution).where(models.Substitution.date.in_(dates)))
            db.add_all(models.Substitution(**row) for row in rows)
        await db.commit()
    except Exception as e:
        await db.rollback()
        logger.exception("Timetable import failed")
        raise ServiceError(f"Failed to process timetable. Error: {type(e).__name__}")

    logger.info("Imported %d %s timetable rows (%d skipped)", len(rows), kind, skipped)
    return {
        "message": f"{kind.capitalize()} timetable uploaded successfully.",
        "total_entries": len(rows),
        "skipped_rows": skipped,
    }
