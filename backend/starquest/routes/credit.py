"""Credit settings, interest tiers and settlement endpoints."""

import logging
import os
from datetime import date

from fastapi import APIRouter, Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth import get_current_parent
from ..crud import (
    get_credit_settings,
    get_interest_tiers,
    get_settlements_by_child,
    get_settlements_by_family,
    replace_interest_tiers,
    require_family_child,
    update_credit_settings,
)
from ..database import get_session
from ..models import Parent
from ..schemas import (
    CreditSettingsRead,
    CreditSettingsUpdate,
    InterestTierRead,
    InterestTierTable,
    SettlementRead,
    SettlementRunRequest,
    SettlementRunResponse,
)
from ..settlement import (
    SettlementRunResult,
    run_due_settlements,
    run_family_settlement,
    run_settlement,
)

logger = logging.getLogger(__name__)

CRON_SECRET = os.getenv("CRON_SECRET")

router = APIRouter(prefix="/credit", tags=["credit"])


def _run_response(result: SettlementRunResult) -> SettlementRunResponse:
    return SettlementRunResponse(
        settlement_date=result.settlement_date,
        processed_count=result.processed_count,
        settlements=[SettlementRead.model_validate(s) for s in result.settlements],
        skipped=result.skipped,
        errors=result.errors,
    )


@router.get("/children/{child_id}/settings", response_model=CreditSettingsRead)
async def read_credit_settings(
    child_id: int,
    db: AsyncSession = Depends(get_session),
    parent: Parent = Depends(get_current_parent),
):
    await require_family_child(db, child_id, parent.family_id)
    return await get_credit_settings(db, child_id)


@router.put("/children/{child_id}/settings", response_model=CreditSettingsRead)
async def write_credit_settings(
    child_id: int,
    data: CreditSettingsUpdate,
    db: AsyncSession = Depends(get_session),
    parent: Parent = Depends(get_current_parent),
):
    await require_family_child(db, child_id, parent.family_id)
    return await update_credit_settings(
        db, child_id, credit_enabled=data.credit_enabled, credit_limit=data.credit_limit
    )


@router.get("/tiers", response_model=list[InterestTierRead])
async def read_tiers(
    db: AsyncSession = Depends(get_session),
    parent: Parent = Depends(get_current_parent),
):
    return await get_interest_tiers(db, parent.family_id)


@router.put("/tiers", response_model=list[InterestTierRead])
async def write_tiers(
    data: InterestTierTable,
    db: AsyncSession = Depends(get_session),
    parent: Parent = Depends(get_current_parent),
):
    return await replace_interest_tiers(
        db, parent.family_id, [t.model_dump() for t in data.tiers]
    )


@router.get("/settlements", response_model=list[SettlementRead])
async def family_settlements(
    db: AsyncSession = Depends(get_session),
    parent: Parent = Depends(get_current_parent),
):
    return await get_settlements_by_family(db, parent.family_id)


@router.get("/children/{child_id}/settlements", response_model=list[SettlementRead])
async def child_settlements(
    child_id: int,
    db: AsyncSession = Depends(get_session),
    parent: Parent = Depends(get_current_parent),
):
    await require_family_child(db, child_id, parent.family_id)
    return await get_settlements_by_child(db, child_id)


@router.post("/settle", response_model=SettlementRunResponse)
async def settle_family(
    data: SettlementRunRequest,
    db: AsyncSession = Depends(get_session),
    parent: Parent = Depends(get_current_parent),
):
    """Manual settlement of the parent's family, or a single child of it."""

    parent_id, family_id = parent.id, parent.family_id
    settlement_date = data.settlement_date or date.today()
    if data.child_id is not None:
        await require_family_child(db, data.child_id, family_id)
        result = SettlementRunResult(settlement_date=settlement_date)
        settlement = await run_settlement(db, data.child_id, settlement_date)
        if settlement is None:
            result.skipped.append(data.child_id)
        else:
            result.settlements.append(settlement)
    else:
        result = await run_family_settlement(db, family_id, settlement_date)
    logger.info("Parent %s ran settlement for %s", parent_id, settlement_date)
    return _run_response(result)


@router.post("/settlements/run", response_model=SettlementRunResponse)
async def scheduled_settlement(
    data: SettlementRunRequest | None = None,
    authorization: str | None = Header(default=None),
    db: AsyncSession = Depends(get_session),
):
    """Entry point for the external scheduler, authorised by ``CRON_SECRET``."""

    if not CRON_SECRET or authorization != f"Bearer {CRON_SECRET}":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized"
        )
    today = (data.settlement_date if data else None) or date.today()
    return _run_response(await run_due_settlements(db, today))
