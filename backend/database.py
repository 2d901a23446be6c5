from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from config import DATABASE_URL, SQL_ECHO

# The engine handles the connection to the database; every call is awaited
engine = create_async_engine(
    DATABASE_URL,
    echo=SQL_ECHO,
)

# Each instance of the SessionLocal class will be a database session
SessionLocal = async_sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

# Base class which our models will inherit from
Base = declarative_base()


async def create_tables(bind=engine):
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


# Dependency function to get a database session
async def get_db():
    async with SessionLocal() as db:
        yield db
