from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth import get_current_child, get_current_parent
from ..balance import get_balance, reconcile_balance
from ..crud import require_family_child
from ..database import get_session
from ..models import Child, Parent
from ..schemas import BalanceRead, ReconcileResponse

router = APIRouter(prefix="/balances", tags=["balances"])


@router.get("/mine", response_model=BalanceRead)
async def my_balance(
    db: AsyncSession = Depends(get_session),
    child: Child = Depends(get_current_child),
):
    return await get_balance(db, child.id)


@router.get("/{child_id}", response_model=BalanceRead)
async def child_balance(
    child_id: int,
    db: AsyncSession = Depends(get_session),
    parent: Parent = Depends(get_current_parent),
):
    await require_family_child(db, child_id, parent.family_id)
    return await get_balance(db, child_id)


@router.post("/{child_id}/reconcile", response_model=ReconcileResponse)
async def reconcile(
    child_id: int,
    db: AsyncSession = Depends(get_session),
    parent: Parent = Depends(get_current_parent),
):
    """Rebuild the cached balance from the ledger."""

    await require_family_child(db, child_id, parent.family_id)
    snapshot, matched = await reconcile_balance(db, child_id)
    return ReconcileResponse(
        balance=BalanceRead.model_validate(snapshot), cache_matched=matched
    )
