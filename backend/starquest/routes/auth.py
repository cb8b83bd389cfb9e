# starquest/routes/auth.py
"""Authentication endpoints: registration, login and token generation."""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth import authenticate_parent, create_access_token
from ..crud import create_family_with_parent, get_parent_by_email
from ..database import get_session
from ..models import Parent
from ..schemas import RegisterRequest, ParentLogin, ParentRead

logger = logging.getLogger(__name__)
router = APIRouter()


def _invalid_credentials() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={
            "code": "auth_invalid_credentials",
            "message": "Invalid email or password",
        },
    )


@router.post("/token")
async def login_for_access_token(
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: AsyncSession = Depends(get_session),
):
    """OAuth2 password flow used by interactive docs and external clients."""

    parent = await authenticate_parent(db, form_data.username, form_data.password)
    if not parent:
        logger.warning("Failed OAuth login for %s", form_data.username)
        raise _invalid_credentials()
    logger.info("Parent %s logged in via OAuth form", parent.email)
    access_token = create_access_token(data={"sub": parent.email})
    return {"access_token": access_token, "token_type": "bearer"}


@router.post("/login")
async def login(data: ParentLogin, db: AsyncSession = Depends(get_session)):
    """JSON-based login used by the frontend."""

    parent = await authenticate_parent(db, data.email, data.password)
    if not parent:
        logger.warning("Failed login for %s", data.email)
        raise _invalid_credentials()
    logger.info("Parent %s logged in", parent.email)
    access_token = create_access_token(data={"sub": parent.email})
    return {"access_token": access_token, "token_type": "bearer"}


@router.post("/register", response_model=ParentRead)
async def register(data: RegisterRequest, db: AsyncSession = Depends(get_session)):
    """Create a new family with its first parent."""

    if await get_parent_by_email(db, data.email):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "code": "auth_email_registered",
                "message": "Email is already registered.",
            },
        )
    parent = Parent(
        name=data.name,
        email=data.email,
        password_hash=data.password,
        family_id=0,
    )
    parent = await create_family_with_parent(
        db, data.family_name, parent, timezone=data.timezone
    )
    logger.info("Parent %s registered family %s", parent.email, parent.family_id)
    return parent
