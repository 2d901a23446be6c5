import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from config import CORS_ORIGINS, LOG_LEVEL
import models
from database import create_tables, get_db
from errors import ErrorKind, ServiceError
from routers import auth, live, me, timetable, users

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler()],
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Create all tables in the database (runs on startup)
    logger.info("Initializing database...")
    await create_tables()
    logger.info("Database initialized.")
    yield
    logger.info("Shutting down...")


# Initialize FastAPI app
app = FastAPI(
    title="School Attendance API",
    description="Timetables, substitutions and live student presence.",
    version="1.0.0",
    lifespan=lifespan,
)

# --- Add CORS Middleware for Frontend ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Error Boundary ---
# Every failure leaves the API as {"kind": ..., "message": ...}
@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    where = ".".join(str(part) for part in first.get("loc", ()))
    message = f"{where}: {first.get('msg', 'invalid request')}" if where else "Invalid request."
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"kind": ErrorKind.BAD_REQUEST.value, "message": message},
    )


@app.exception_handler(SQLAlchemyError)
async def storage_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error("Storage failure on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"kind": ErrorKind.UPSTREAM_FAILURE.value, "message": "Storage is unavailable. Please try again later."},
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"kind": ErrorKind.INTERNAL.value, "message": "Internal server error."},
    )


# --- Router Registration ---
for router_module in (auth, me, timetable, users, live):
    app.include_router(router_module.router)
    logger.info("%s router registered", router_module.__name__)


# --- Root Endpoint (Test & DB Status) ---
@app.get("/")
async def read_root(db: AsyncSession = Depends(get_db)):
    """Simple check to ensure the service is running and connected to DB."""
    user_count = (await db.execute(select(func.count()).select_from(models.User))).scalar_one()
    return {
        "message": "School Attendance API is running!",
        "db_status": f"Connected successfully. User count: {user_count}"
    }


# --- Healthcheck Endpoint ---
@app.get("/health")
async def health_check():
    return {"status": "ok"}
