from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..approvals import fulfill_redemption
from ..auth import get_current_child, get_current_parent
from ..database import get_session
from ..ledger import (
    create_parent_redemption,
    create_redemption_request,
    get_pending_entries,
    get_redemptions_by_child,
)
from ..models import Child, EntryKind, Parent
from ..schemas import RedemptionCreate, RedemptionRead

router = APIRouter(prefix="/redemptions", tags=["redemptions"])


@router.post("/", response_model=RedemptionRead)
async def request_redemption(
    data: RedemptionCreate,
    db: AsyncSession = Depends(get_session),
    child: Child = Depends(get_current_child),
):
    return await create_redemption_request(db, child.id, data.reward_id, data.note)


@router.get("/mine", response_model=list[RedemptionRead])
async def my_redemptions(
    db: AsyncSession = Depends(get_session),
    child: Child = Depends(get_current_child),
):
    return await get_redemptions_by_child(db, child.id)


@router.post("/child/{child_id}", response_model=RedemptionRead)
async def redeem_for_child(
    child_id: int,
    data: RedemptionCreate,
    db: AsyncSession = Depends(get_session),
    parent: Parent = Depends(get_current_parent),
):
    return await create_parent_redemption(db, parent, child_id, data.reward_id, data.note)


@router.get("/pending", response_model=list[RedemptionRead])
async def pending_redemptions(
    db: AsyncSession = Depends(get_session),
    parent: Parent = Depends(get_current_parent),
):
    return await get_pending_entries(db, parent.family_id, EntryKind.redemption)


@router.post("/{redemption_id}/fulfill", response_model=RedemptionRead)
async def mark_fulfilled(
    redemption_id: int,
    db: AsyncSession = Depends(get_session),
    parent: Parent = Depends(get_current_parent),
):
    return await fulfill_redemption(db, redemption_id, parent)
