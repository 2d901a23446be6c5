import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

import models
from config import TOKEN_TTL_MINUTES
from errors import BadRequest, NotFound, PasswordRequired, Unauthorized
from utils import generate_token, hash_password, verify_password

logger = logging.getLogger(__name__)

DEFAULT_LEVEL = 1


@dataclass(frozen=True)
class AuthContext:
    """What a route gets once the token has been accepted."""
    user: models.User
    level: int
    needs_password: bool = False

    @property
    def user_id(self) -> int:
        return self.user.id


async def _password_hash(db: AsyncSession, user_id: int) -> Optional[str]:
    result = await db.execute(select(models.Password.hash).where(models.Password.user_id == user_id))
    return result.scalar_one_or_none()


async def authorize(
    db: AsyncSession,
    token: Optional[str],
    min_level: int,
    now: datetime,
    allow_bootstrap: bool = False,
) -> AuthContext:
    """
    Resolves a bearer token and checks it against a minimum level.
    Checks run in a fixed order: missing, unknown, expired, password not set,
    level too low. An expired token is rejected whatever its level.
    """
    if not token:
        raise Unauthorized.missing()

    result = await db.execute(
        select(models.Token, models.User)
        .join(models.User, models.User.id == models.Token.user_id)
        .where(models.Token.token == token)
    )
    row = result.first()
    if row is None:
        raise Unauthorized.unknown()
    db_token, user = row

    if db_token.expires is not None and db_token.expires < now:
        raise Unauthorized.expired()

    needs_password = await _password_hash(db, user.id) is None
    if needs_password and not allow_bootstrap:
        raise PasswordRequired("A password has to be set before continuing.")

    if db_token.level < min_level:
        raise Unauthorized.insufficient(min_level)

    return AuthContext(user=user, level=db_token.level, needs_password=needs_password)


async def issue_token(db: AsyncSession, user_id: int, now: datetime) -> models.Token:
    """
    Generates a fresh token for the user, overwriting the previous one.
    The level is DEFAULT_LEVEL on first creation and kept afterwards.
    """
    expires = now + timedelta(minutes=TOKEN_TTL_MINUTES) if TOKEN_TTL_MINUTES else None

    db_token = await db.get(models.Token, user_id)
    if db_token is None:
        db_token = models.Token(user_id=user_id, level=DEFAULT_LEVEL)
        db.add(db_token)
    db_token.token = generate_token()
    db_token.expires = expires

    try:
        await db.commit()
    except IntegrityError:
        # Token collision or a parallel first login; one retry with a new token
        await db.rollback()
        db_token = await db.get(models.Token, user_id) or models.Token(user_id=user_id, level=DEFAULT_LEVEL)
        db_token.token = generate_token()
        db_token.expires = expires
        db.add(db_token)
        await db.commit()

    logger.info("Issued token for user %s (level %s)", user_id, db_token.level)
    return db_token


async def login(db: AsyncSession, user_id: int, password: str, now: datetime) -> tuple[models.Token, bool]:
    """
    Checks the password and issues a token.
    Returns (token, password_missing). A user without a password still gets a
    token so they can set one.
    """
    user = await db.get(models.User, user_id)
    if user is None:
        raise NotFound("User not found.")

    hashed = await _password_hash(db, user_id)
    if hashed is None:
        logger.info("User %s has no password yet; issuing bootstrap token", user_id)
        return await issue_token(db, user_id, now), True

    if not verify_password(password, hashed):
        raise Unauthorized("Wrong user id or password.")
    return await issue_token(db, user_id, now), False


async def set_password(db: AsyncSession, user_id: int, password: str) -> None:
    if not password:
        raise BadRequest("Password must not be empty.")

    credential = await db.get(models.Password, user_id)
    if credential is None:
        credential = models.Password(user_id=user_id)
        db.add(credential)
    credential.hash = hash_password(password)
    await db.commit()
    logger.info("Password set for user %s", user_id)


async def set_level(db: AsyncSession, user_id: int, level: int, granted_by: AuthContext) -> models.Token:
    """Explicit elevation. Nobody can grant more than they hold."""
    if level < 0:
        raise BadRequest("Level must not be negative.")
    if level > granted_by.level:
        raise Unauthorized.insufficient(level)

    if await db.get(models.User, user_id) is None:
        raise NotFound("User not found.")

    # Users who never logged in get a token row now; their first login keeps the level
    db_token = await db.get(models.Token, user_id)
    if db_token is None:
        db_token = models.Token(user_id=user_id, token=generate_token())
        db.add(db_token)
    db_token.level = level
    await db.commit()
    logger.info("User %s set level of user %s to %s", granted_by.user_id, user_id, level)
    return db_token
