from sqlalchemy import Column, Integer, String, Boolean, Date, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from database import Base


# --- 1. Identity ---
class User(Base):
    """Students, teachers and admins share one identity table."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    firstname = Column(String, nullable=False)
    middlename = Column(String, nullable=True)
    lastname = Column(String, nullable=False)
    short = Column(String, unique=True, index=True)  # e.g. "WILF"
    role = Column(Integer, nullable=False, default=1)  # 1 student, 2 teacher, 3 admin

    password = relationship("Password", back_populates="user", uselist=False)
    token = relationship("Token", back_populates="user", uselist=False)


# --- 2. Credentials ---
class Password(Base):
    """A NULL hash means the user still has to set a password."""
    __tablename__ = "passwords"

    user_id = Column(Integer, ForeignKey("users.id"), primary_key=True)
    hash = Column(String, nullable=True)

    user = relationship("User", back_populates="password")


class Token(Base):
    """One token per user; logging in again overwrites it."""
    __tablename__ = "tokens"

    user_id = Column(Integer, ForeignKey("users.id"), primary_key=True)
    token = Column(String, unique=True, index=True, nullable=False)
    level = Column(Integer, nullable=False, default=1)
    expires = Column(DateTime, nullable=True)

    user = relationship("User", back_populates="token")


# --- 3. Classes & Enrollment ---
class SchoolClass(Base):
    __tablename__ = "classes"

    id = Column(Integer, primary_key=True, index=True)
    short = Column(String, index=True)  # e.g. "10B"
    description = Column(String, nullable=True)
    teacher_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    second_teacher_id = Column(Integer, ForeignKey("users.id"), nullable=True)


class Enrollment(Base):
    """A student belongs to exactly one current class."""
    __tablename__ = "student_classes"

    student_id = Column(Integer, ForeignKey("users.id"), primary_key=True)
    class_id = Column(Integer, ForeignKey("classes.id"), nullable=False, index=True)


# --- 4. Timetable ---
class Period(Base):
    """A daily time slot; start is minutes since midnight."""
    __tablename__ = "periods"

    id = Column(Integer, primary_key=True)
    start = Column(Integer, nullable=False)


class TimetableEntry(Base):
    """The recurring weekly timetable."""
    __tablename__ = "timetable"

    id = Column(Integer, primary_key=True, index=True)
    class_id = Column(Integer, ForeignKey("classes.id"), index=True)
    room_id = Column(Integer)
    period_id = Column(Integer, ForeignKey("periods.id"))
    teacher_id = Column(Integer, ForeignKey("users.id"), index=True)
    subject = Column(String)
    day = Column(Integer)  # 0 = Monday ... 6 = Sunday
    double_lesson = Column(Boolean, default=False)


class Substitution(Base):
    """Overrides the recurring timetable for one calendar date."""
    __tablename__ = "substitutions"

    id = Column(Integer, primary_key=True, index=True)
    class_id = Column(Integer, ForeignKey("classes.id"), index=True)
    room_id = Column(Integer)
    period_id = Column(Integer, ForeignKey("periods.id"))
    teacher_id = Column(Integer, ForeignKey("users.id"), index=True)
    subject = Column(String)
    day = Column(Integer)
    double_lesson = Column(Boolean, default=False)
    date = Column(Date, index=True)


# --- 5. Presence ---
class Presence(Base):
    """A student's presence window for one period on one date."""
    __tablename__ = "presence"
    __table_args__ = (
        UniqueConstraint("student_id", "date", "period_id", name="uq_presence_student_date_period"),
    )

    id = Column(Integer, primary_key=True, index=True)
    student_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    date = Column(Date, nullable=False)
    period_id = Column(Integer, ForeignKey("periods.id"), nullable=False)
    present_from = Column(Integer, nullable=False)
    present_until = Column(Integer, nullable=False)
    room_id = Column(Integer)  # fixed once the record exists
