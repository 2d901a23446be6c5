# backend/routers/auth.py
from datetime import datetime

from fastapi import APIRouter, Depends, Response, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from config import STUDENT_LEVEL
from database import get_db
import schemas
from security import AuthContext, authorize, login, set_password
from utils import now_local

router = APIRouter(
    tags=["Authentication"],
)
# auto_error=False: a missing header is reported as missing_credentials by the gate
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="login", auto_error=False)


# --- Dependency to Get the Authorized User ---
def require_level(min_level: int, allow_bootstrap: bool = False):
    """Builds a dependency that only lets tokens of at least `min_level` through."""
    async def dependency(
        token: str | None = Depends(oauth2_scheme),
        db: AsyncSession = Depends(get_db),
        now: datetime = Depends(now_local),
    ) -> AuthContext:
        return await authorize(db, token, min_level, now, allow_bootstrap=allow_bootstrap)

    return dependency


# --- Endpoint Definitions ---

@router.put("/login", response_model=schemas.Token)
async def login_for_token(
    data: schemas.LoginRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
    now: datetime = Depends(now_local),
):
    """
    Trades id + password for a new token. The previous token stops working.
    Users without a password get a token anyway (202) so they can set one.
    """
    token, password_missing = await login(db, data.id, data.password, now)
    if password_missing:
        response.status_code = status.HTTP_202_ACCEPTED
    return schemas.Token(
        token=token.token,
        level=token.level,
        expires=token.expires,
        password_required=password_missing,
    )


@router.post("/login", response_model=schemas.Message)
async def set_own_password(
    data: schemas.PasswordSet,
    auth: AuthContext = Depends(require_level(STUDENT_LEVEL, allow_bootstrap=True)),
    db: AsyncSession = Depends(get_db),
):
    """Sets the password of the token's user; also the one-time bootstrap step."""
    await set_password(db, auth.user_id, data.password)
    return {"message": "Password set."}
