from pydantic import BaseModel, Field
from datetime import date, datetime
from typing import Optional, List

from presence import PresenceAction, PresenceState
from utils import format_minutes

# --- 1. User Schemas ---

class UserBase(BaseModel):
    """Base schema for identity data (used for creation)."""
    firstname: str = Field(..., min_length=1)
    middlename: Optional[str] = None
    lastname: str = Field(..., min_length=1)
    short: Optional[str] = Field(None, max_length=10)
    role: int = Field(1, ge=1, le=3)

class UserCreate(UserBase):
    """Schema for creating a new user. The password is set by the user later."""
    pass

class User(UserBase):
    """Schema for reading user data."""
    id: int

    model_config = {
        "from_attributes": True
    }

class Me(BaseModel):
    user: User
    level: int

class LevelUpdate(BaseModel):
    level: int = Field(..., ge=0)

class EnrollmentUpdate(BaseModel):
    class_id: int

class Enrollment(BaseModel):
    student_id: int
    class_id: int

    model_config = {
        "from_attributes": True
    }

# --- 2. Class Schemas ---

class SchoolClassCreate(BaseModel):
    short: str = Field(..., min_length=1)
    description: Optional[str] = None
    teacher_id: int
    second_teacher_id: Optional[int] = None

class SchoolClass(SchoolClassCreate):
    id: int

    model_config = {
        "from_attributes": True
    }

# --- 3. Timetable Schemas ---

class PeriodCreate(BaseModel):
    """A daily time slot. start is minutes since midnight (540 = 09:00)."""
    id: int
    start: int = Field(..., ge=0, lt=24 * 60)

class Period(PeriodCreate):
    model_config = {
        "from_attributes": True
    }

class TimetableEntryBase(BaseModel):
    """Base schema for a single recurring timetable slot."""
    class_id: int
    room_id: Optional[int] = None
    period_id: int
    teacher_id: int
    subject: str = Field(..., min_length=1)
    day: int = Field(..., ge=0, le=6)
    double_lesson: bool = False

class TimetableEntry(TimetableEntryBase):
    id: int

    model_config = {
        "from_attributes": True
    }

class SubstitutionCreate(TimetableEntryBase):
    """Same slot shape plus the date it applies to. day is derived from date when omitted."""
    day: Optional[int] = Field(None, ge=0, le=6)
    date: date

class Substitution(TimetableEntryBase):
    id: int
    date: date

    model_config = {
        "from_attributes": True
    }

class PeriodEntry(BaseModel):
    """One slot of the effective schedule after substitutions are applied."""
    period_id: int
    class_id: int
    teacher_id: int
    room_id: Optional[int] = None
    subject: str
    day: int
    double_lesson: bool
    start: int
    end: int
    start_time: str
    end_time: str
    substituted: bool = False

    @classmethod
    def from_entry(cls, entry) -> "PeriodEntry":
        return cls(
            **{name: getattr(entry, name) for name in (
                "period_id", "class_id", "teacher_id", "room_id", "subject",
                "day", "double_lesson", "start", "end", "substituted",
            )},
            start_time=format_minutes(entry.start),
            end_time=format_minutes(entry.end),
        )

class Schedule(BaseModel):
    date: date
    entries: List[PeriodEntry]

# --- 4. Presence Schemas ---

class PresenceActionInput(BaseModel):
    action: PresenceAction

class Presence(BaseModel):
    student_id: int
    date: date
    period_id: int
    present_from: int
    present_until: int
    room_id: Optional[int] = None

    model_config = {
        "from_attributes": True
    }

class PresenceStatus(BaseModel):
    present: bool
    state: PresenceState
    record: Optional[Presence] = None

class StudentPresence(BaseModel):
    user: User
    state: PresenceState
    record: Optional[Presence] = None

class ClassPresence(BaseModel):
    class_id: int
    period_id: int
    subject: str
    date: date
    students: List[StudentPresence]

# --- 5. Auth Schemas ---

class LoginRequest(BaseModel):
    """PUT /login: trade an id and password for a token."""
    id: int
    password: str = Field("", max_length=72)

class PasswordSet(BaseModel):
    """POST /login: set or change the password of the token's user."""
    password: str = Field(..., min_length=1, max_length=72)

class Token(BaseModel):
    token: str
    level: int
    expires: Optional[datetime] = None
    password_required: bool = False

# --- 6. Misc ---

class Message(BaseModel):
    message: str

class ImportResult(BaseModel):
    message: str
    total_entries: int
    skipped_rows: int
