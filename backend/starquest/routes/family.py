import logging
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth import get_current_parent
from ..crud import (
    add_parent_to_family,
    get_family,
    get_parent_by_email,
    get_parents_by_family,
    save_family,
)
from ..database import get_session
from ..errors import ValidationError
from ..models import Parent
from ..schemas import FamilyRead, FamilyUpdate, ParentCreate, ParentRead

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/family", tags=["family"])


@router.get("/", response_model=FamilyRead)
async def read_family(
    db: AsyncSession = Depends(get_session),
    parent: Parent = Depends(get_current_parent),
):
    return await get_family(db, parent.family_id)


@router.put("/", response_model=FamilyRead)
async def update_family(
    data: FamilyUpdate,
    db: AsyncSession = Depends(get_session),
    parent: Parent = Depends(get_current_parent),
):
    family = await get_family(db, parent.family_id)
    if data.timezone is not None:
        try:
            ZoneInfo(data.timezone)
        except (KeyError, ValueError) as exc:
            raise ValidationError(f"Unknown timezone {data.timezone!r}") from exc
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(family, field, value)
    updated = await save_family(db, family)
    logger.info("Family %s updated by parent %s", family.id, parent.id)
    return updated


@router.get("/parents", response_model=list[ParentRead])
async def list_parents(
    db: AsyncSession = Depends(get_session),
    parent: Parent = Depends(get_current_parent),
):
    return await get_parents_by_family(db, parent.family_id)


@router.post("/parents", response_model=ParentRead)
async def add_parent(
    data: ParentCreate,
    db: AsyncSession = Depends(get_session),
    parent: Parent = Depends(get_current_parent),
):
    """Add another parent to the caller's family."""

    if await get_parent_by_email(db, data.email):
        raise HTTPException(
            status_code=400,
            detail={
                "code": "auth_email_registered",
                "message": "Email is already registered.",
            },
        )
    new_parent = await add_parent_to_family(
        db,
        Parent(
            family_id=parent.family_id,
            name=data.name,
            email=data.email,
            password_hash=data.password,
        ),
    )
    logger.info("Parent %s added parent %s to family %s", parent.id, new_parent.id, parent.family_id)
    return new_parent
