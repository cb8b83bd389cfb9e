import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth import create_access_token, get_current_identity, get_current_parent
from ..crud import (
    create_child,
    get_child_by_access_code,
    get_children_by_family,
    require_family_child,
)
from ..database import get_session
from ..errors import Forbidden
from ..ledger import (
    get_credit_transactions_by_child,
    get_redemptions_by_child,
    get_star_transactions_by_child,
)
from ..models import Child, Parent
from ..schemas import ChildCreate, ChildLogin, ChildRead, HistoryResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/children", tags=["children"])


@router.post("/", response_model=ChildRead)
async def add_child(
    data: ChildCreate,
    db: AsyncSession = Depends(get_session),
    parent: Parent = Depends(get_current_parent),
):
    if await get_child_by_access_code(db, data.access_code):
        raise HTTPException(status_code=400, detail="Access code already in use")
    child = await create_child(
        db,
        Child(family_id=parent.family_id, name=data.name, access_code=data.access_code),
    )
    logger.info("Child %s created by parent %s", child.id, parent.id)
    return child


@router.get("/", response_model=list[ChildRead])
async def list_children(
    db: AsyncSession = Depends(get_session),
    parent: Parent = Depends(get_current_parent),
):
    return await get_children_by_family(db, parent.family_id)


@router.post("/login")
async def child_login(data: ChildLogin, db: AsyncSession = Depends(get_session)):
    child = await get_child_by_access_code(db, data.access_code)
    if not child:
        logger.warning("Failed child login")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid access code",
        )
    access_token = create_access_token(data={"sub": f"child:{child.id}"})
    return {"access_token": access_token, "token_type": "bearer"}


@router.get("/{child_id}/history", response_model=HistoryResponse)
async def child_history(
    child_id: int,
    db: AsyncSession = Depends(get_session),
    identity: tuple[str, Child | Parent] = Depends(get_current_identity),
):
    """Full ledger for a child, newest first."""

    kind, obj = identity
    if kind == "child":
        if obj.id != child_id:
            raise Forbidden("Children can only see their own history")
    else:
        await require_family_child(db, child_id, obj.family_id)
    return HistoryResponse(
        star_transactions=await get_star_transactions_by_child(db, child_id),
        redemptions=await get_redemptions_by_child(db, child_id),
        credit_transactions=await get_credit_transactions_by_child(db, child_id),
    )
