from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config import ADMIN_LEVEL, ROLE_STUDENT, ROLE_TEACHER
from database import get_db
from errors import BadRequest, NotFound
import models
from routers.auth import require_level
from security import AuthContext, set_level
import schemas

router = APIRouter(
    prefix="/users",
    tags=["User Management"],
)


@router.post("", response_model=schemas.User, status_code=status.HTTP_201_CREATED,
             dependencies=[Depends(require_level(ADMIN_LEVEL))])
async def create_user(user: schemas.UserCreate, db: AsyncSession = Depends(get_db)):
    """Creates a new identity. The user sets their own password on first login."""

    # Check if the short code is already taken
    if user.short:
        existing = await db.execute(select(models.User).where(models.User.short == user.short))
        if existing.scalar_one_or_none():
            raise BadRequest("Short code already registered.")

    db_user = models.User(**user.model_dump())
    db.add(db_user)
    await db.flush()
    db.add(models.Password(user_id=db_user.id, hash=None))
    await db.commit()
    return db_user


@router.get("/{user_id}", response_model=schemas.User,
            dependencies=[Depends(require_level(ADMIN_LEVEL))])
async def get_user(user_id: int, db: AsyncSession = Depends(get_db)):
    user = await db.get(models.User, user_id)
    if not user:
        raise NotFound("User not found.")
    return user


@router.put("/{user_id}/level", response_model=schemas.Me)
async def update_level(
    user_id: int,
    data: schemas.LevelUpdate,
    auth: AuthContext = Depends(require_level(ADMIN_LEVEL)),
    db: AsyncSession = Depends(get_db),
):
    """Explicit elevation of a user's token level."""
    token = await set_level(db, user_id, data.level, granted_by=auth)
    user = await db.get(models.User, user_id)
    return schemas.Me(user=schemas.User.model_validate(user), level=token.level)


@router.put("/{user_id}/class", response_model=schemas.Enrollment,
            dependencies=[Depends(require_level(ADMIN_LEVEL))])
async def enroll_student(user_id: int, data: schemas.EnrollmentUpdate, db: AsyncSession = Depends(get_db)):
    """Puts a student into a class, replacing their current one."""
    student = await db.get(models.User, user_id)
    if not student or student.role != ROLE_STUDENT:
        raise NotFound("Student not found.")
    if await db.get(models.SchoolClass, data.class_id) is None:
        raise NotFound("Class not found.")

    enrollment = await db.get(models.Enrollment, user_id)
    if enrollment is None:
        enrollment = models.Enrollment(student_id=user_id)
        db.add(enrollment)
    enrollment.class_id = data.class_id
    await db.commit()
    return enrollment


@router.post("/classes", response_model=schemas.SchoolClass, status_code=status.HTTP_201_CREATED,
             dependencies=[Depends(require_level(ADMIN_LEVEL))])
async def create_class(data: schemas.SchoolClassCreate, db: AsyncSession = Depends(get_db)):
    for teacher_id in filter(None, (data.teacher_id, data.second_teacher_id)):
        teacher = await db.get(models.User, teacher_id)
        if not teacher or teacher.role < ROLE_TEACHER:
            raise NotFound(f"Teacher {teacher_id} not found.")

    school_class = models.SchoolClass(**data.model_dump())
    db.add(school_class)
    await db.commit()
    return school_class
