from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth import get_current_child, get_current_parent
from ..database import get_session
from ..ledger import (
    create_child_request,
    create_parent_record,
    get_pending_entries,
    get_star_transactions_by_child,
)
from ..models import Child, EntryKind, Parent
from ..schemas import StarRecordCreate, StarRequestCreate, StarTransactionRead

router = APIRouter(prefix="/stars", tags=["stars"])


@router.post("/requests", response_model=StarTransactionRead)
async def request_stars(
    data: StarRequestCreate,
    db: AsyncSession = Depends(get_session),
    child: Child = Depends(get_current_child),
):
    return await create_child_request(db, child.id, data.quest_id, data.note)


@router.get("/mine", response_model=list[StarTransactionRead])
async def my_transactions(
    db: AsyncSession = Depends(get_session),
    child: Child = Depends(get_current_child),
):
    return await get_star_transactions_by_child(db, child.id)


@router.post("/records", response_model=StarTransactionRead)
async def record_stars(
    data: StarRecordCreate,
    db: AsyncSession = Depends(get_session),
    parent: Parent = Depends(get_current_parent),
):
    return await create_parent_record(
        db,
        parent,
        data.child_id,
        stars=data.stars,
        quest_id=data.quest_id,
        custom_description=data.custom_description,
        note=data.note,
    )


@router.get("/pending", response_model=list[StarTransactionRead])
async def pending_requests(
    db: AsyncSession = Depends(get_session),
    parent: Parent = Depends(get_current_parent),
):
    return await get_pending_entries(db, parent.family_id, EntryKind.star_transaction)
