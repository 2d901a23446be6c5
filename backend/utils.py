import secrets
import string
from datetime import date, datetime

import bcrypt

from config import TOKEN_LENGTH

TOKEN_ALPHABET = string.ascii_letters + string.digits + "!@#$%&*"


# --- Clock / Calendar ---

def now_local() -> datetime:
    """Current local time. Wrapped so routes and tests can pin it."""
    return datetime.now()


def get_clock():
    """For long-lived connections that need the time of each event, not of the connect."""
    return now_local


def minutes_since_midnight(moment: datetime) -> int:
    """09:10:59 -> 550. Seconds are dropped, never rounded up."""
    return moment.hour * 60 + moment.minute


def day_of_week(day: date) -> int:
    """0 = Monday ... 6 = Sunday, the convention used in the timetable tables."""
    return day.weekday()


def start_of_day(moment: datetime | date) -> date:
    if isinstance(moment, datetime):
        return moment.date()
    return moment


def format_minutes(minutes: int | None) -> str | None:
    if minutes is None:
        return None
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


# --- Tokens & Passwords ---

def generate_token(length: int = TOKEN_LENGTH) -> str:
    return "".join(secrets.choice(TOKEN_ALPHABET) for _ in range(length))


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed: str | None) -> bool:
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Not a bcrypt hash
        return False
