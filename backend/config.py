import os

ASYNC_DRIVERS = {
    "postgres://": "postgresql+asyncpg://",
    "postgresql://": "postgresql+asyncpg://",
    "sqlite:///": "sqlite+aiosqlite:///",
}


def async_database_url(url: str) -> str:
    """Adjust plain driver names to their asyncio drivers for SQLAlchemy."""
    for plain, driver in ASYNC_DRIVERS.items():
        if url.startswith(plain):
            return url.replace(plain, driver, 1)
    return url


# Load settings from the environment (set in docker-compose or .env)
DATABASE_URL = async_database_url(os.environ.get("DATABASE_URL", "sqlite+aiosqlite:///./school.db"))

SQL_ECHO = os.getenv("SQL_ECHO", "0") == "1"

# A single lesson; a double lesson occupies two of these
PERIOD_LENGTH_MINUTES = int(os.getenv("PERIOD_LENGTH_MINUTES", 45))

TOKEN_LENGTH = int(os.getenv("TOKEN_LENGTH", 36))
# Unset means tokens never expire
TOKEN_TTL_MINUTES = int(os.getenv("TOKEN_TTL_MINUTES")) if os.getenv("TOKEN_TTL_MINUTES") else None

STUDENT_LEVEL = 1
TEACHER_LEVEL = int(os.getenv("TEACHER_LEVEL", 2))
ADMIN_LEVEL = int(os.getenv("ADMIN_LEVEL", 3))

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",")
    if origin.strip()
]

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

ROLE_STUDENT = 1
ROLE_TEACHER = 2
