# starquest/auth.py
from datetime import datetime, timedelta, timezone
from jose import JWTError, jwt
from passlib.context import CryptContext
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from .models import Parent, Child
from .database import get_session

import os

SECRET_KEY = os.getenv("SECRET_KEY", "super-secret-key")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "30"))

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/token")


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


async def authenticate_parent(db: AsyncSession, email: str, password: str):
    result = await db.execute(select(Parent).where(Parent.email == email))
    parent = result.scalar_one_or_none()
    if not parent or not verify_password(password, parent.password_hash):
        return None
    return parent


def create_access_token(data: dict, expires_delta: timedelta | None = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def _credentials_exception() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
    )


def _decode_subject(token: str) -> str:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise _credentials_exception()
    sub = payload.get("sub")
    if not sub:
        raise _credentials_exception()
    return sub


async def get_current_parent(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_session),
) -> Parent:
    sub = _decode_subject(token)
    if sub.startswith("child:"):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Parent access required",
        )
    result = await db.execute(select(Parent).where(Parent.email == sub))
    parent = result.scalar_one_or_none()
    if parent is None:
        raise _credentials_exception()
    return parent


async def get_child_by_id(db: AsyncSession, child_id: int):
    result = await db.execute(select(Child).where(Child.id == child_id))
    return result.scalars().first()


async def get_current_child(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_session),
) -> Child:
    sub = _decode_subject(token)
    if not sub.startswith("child:"):
        raise _credentials_exception()
    try:
        child_id = int(sub.split(":", 1)[1])
    except ValueError:
        raise _credentials_exception()
    child = await get_child_by_id(db, child_id)
    if child is None:
        raise _credentials_exception()
    return child


async def get_current_identity(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_session),
) -> tuple[str, Parent | Child]:
    """Return ("parent", Parent) or ("child", Child) based on token subject."""
    sub = _decode_subject(token)
    if sub.startswith("child:"):
        try:
            child_id = int(sub.split(":", 1)[1])
        except ValueError:
            raise _credentials_exception()
        child = await get_child_by_id(db, child_id)
        if child is None:
            raise _credentials_exception()
        return "child", child
    result = await db.execute(select(Parent).where(Parent.email == sub))
    parent = result.scalar_one_or_none()
    if parent is None:
        raise _credentials_exception()
    return "parent", parent
