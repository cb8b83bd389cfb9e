"""Review endpoints shared by star requests and redemptions."""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..approvals import approve_entry, batch_approve, batch_reject, reject_entry
from ..auth import get_current_parent
from ..database import get_session
from ..models import EntryKind, Parent
from ..schemas import (
    ApproveRequest,
    BatchApproveRequest,
    BatchRejectRequest,
    BatchResultRead,
    RejectRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/approvals", tags=["approvals"])


@router.post("/{kind}/batch/approve", response_model=BatchResultRead)
async def approve_many(
    kind: EntryKind,
    data: BatchApproveRequest,
    db: AsyncSession = Depends(get_session),
    parent: Parent = Depends(get_current_parent),
):
    return await batch_approve(db, kind, data.ids, parent, data.effective_date)


@router.post("/{kind}/batch/reject", response_model=BatchResultRead)
async def reject_many(
    kind: EntryKind,
    data: BatchRejectRequest,
    db: AsyncSession = Depends(get_session),
    parent: Parent = Depends(get_current_parent),
):
    return await batch_reject(db, kind, data.ids, parent, data.reason)


@router.post("/{kind}/{entry_id}/approve")
async def approve_one(
    kind: EntryKind,
    entry_id: int,
    data: ApproveRequest | None = None,
    db: AsyncSession = Depends(get_session),
    parent: Parent = Depends(get_current_parent),
):
    entry = await approve_entry(
        db, kind, entry_id, parent, data.effective_date if data else None
    )
    return {"id": entry.id, "status": entry.status}


@router.post("/{kind}/{entry_id}/reject")
async def reject_one(
    kind: EntryKind,
    entry_id: int,
    data: RejectRequest | None = None,
    db: AsyncSession = Depends(get_session),
    parent: Parent = Depends(get_current_parent),
):
    entry = await reject_entry(db, kind, entry_id, parent, data.reason if data else None)
    return {"id": entry.id, "status": entry.status, "parent_response": entry.parent_response}
