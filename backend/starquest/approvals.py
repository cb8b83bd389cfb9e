"""Parent review of pending ledger entries, one at a time or in batches.

Each approval or rejection runs in its own transaction. Batches are best
effort: an entry that fails (already reviewed, missing, another family) is
reported and the remaining entries are still processed.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime

from sqlalchemy.ext.asyncio import AsyncSession

from .balance import bump_ledger_version, compute_balance
from .crud import commit, rollback_on_error
from .errors import AlreadyReviewed, Forbidden, InsufficientBalance, LedgerError, NotFound
from .guard import child_lock, lock_child_row
from .ledger import (
    apply_earnings_to_debt,
    credit_needed,
    get_entry,
    record_credit_transaction,
    set_status,
)
from .models import (
    CreditTransactionType,
    EntryKind,
    EntryStatus,
    Parent,
    Redemption,
    StarTransaction,
    utcnow,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Reviewer:
    """Identity of the reviewing parent, detached from the session.

    A failed review rolls the session back, which expires every loaded
    row, so the parent's ids are read once up front.
    """

    id: int
    family_id: int

    @classmethod
    def of(cls, parent: "Parent | Reviewer") -> "Reviewer":
        if isinstance(parent, Reviewer):
            return parent
        return cls(id=parent.id, family_id=parent.family_id)


@dataclass
class BatchFailure:
    id: int
    code: str
    message: str


@dataclass
class BatchResult:
    succeeded: list[int] = field(default_factory=list)
    failed: list[BatchFailure] = field(default_factory=list)


def review_timestamp(effective_date: date | None = None) -> datetime:
    """Review time, moved onto ``effective_date`` when a parent backdates."""
    now = utcnow()
    if effective_date is None:
        return now
    return datetime.combine(effective_date, now.time())


async def _load_pending(
    db: AsyncSession, kind: EntryKind, entry_id: int, reviewer: Reviewer
) -> StarTransaction | Redemption:
    entry = await get_entry(db, kind, entry_id, for_update=True)
    if entry is None:
        raise NotFound(f"{kind.value} {entry_id} not found")
    if entry.family_id != reviewer.family_id:
        raise Forbidden(f"{kind.value} {entry_id} belongs to another family")
    if entry.status != EntryStatus.pending:
        raise AlreadyReviewed(
            f"{kind.value} {entry_id} was already {entry.status.value}"
        )
    return entry


async def _child_id_for(db: AsyncSession, kind: EntryKind, entry_id: int) -> int:
    entry = await get_entry(db, kind, entry_id)
    if entry is None:
        raise NotFound(f"{kind.value} {entry_id} not found")
    return entry.child_id


async def approve_entry(
    db: AsyncSession,
    kind: EntryKind,
    entry_id: int,
    reviewer: Parent | Reviewer,
    effective_date: date | None = None,
) -> StarTransaction | Redemption:
    """Approve a pending entry and write its balance side effects."""

    reviewer = Reviewer.of(reviewer)
    child_id = await _child_id_for(db, kind, entry_id)
    reviewed_at = review_timestamp(effective_date)
    async with child_lock(child_id):
        async with rollback_on_error(db, "approve the entry"):
            child = await lock_child_row(db, child_id)
            entry = await _load_pending(db, kind, entry_id, reviewer)

            if kind == EntryKind.redemption:
                # Credit is checked against the ledger as it is now, not as
                # it was when the child asked.
                balance = await compute_balance(db, child_id)
                need = credit_needed(entry.stars_spent, balance.current_stars)
                if need > balance.available_credit:
                    raise InsufficientBalance(
                        f"Redemption {entry_id} needs {need} stars of credit, "
                        f"{balance.available_credit} available"
                    )
                entry = await set_status(
                    db, kind, entry_id, EntryStatus.approved, reviewer.id,
                    reviewed_at=reviewed_at,
                )
                entry.credit_amount = need
                entry.uses_credit = need > 0
                db.add(entry)
                if need > 0:
                    await record_credit_transaction(
                        db,
                        child,
                        CreditTransactionType.credit_used,
                        need,
                        balance_after=balance.credit_used + need,
                        redemption_id=entry.id,
                    )
            else:
                entry = await set_status(
                    db, kind, entry_id, EntryStatus.approved, reviewer.id,
                    reviewed_at=reviewed_at,
                )
                await apply_earnings_to_debt(db, child, entry)

            await bump_ledger_version(db, child_id)
            await commit(db)
    await db.refresh(entry)
    logger.info("%s %s approved by parent %s", kind.value, entry_id, reviewer.id)
    return entry


async def reject_entry(
    db: AsyncSession,
    kind: EntryKind,
    entry_id: int,
    reviewer: Parent | Reviewer,
    reason: str | None = None,
) -> StarTransaction | Redemption:
    """Reject a pending entry. Rejected entries never touch the balance."""

    reviewer = Reviewer.of(reviewer)
    child_id = await _child_id_for(db, kind, entry_id)
    async with child_lock(child_id):
        async with rollback_on_error(db, "reject the entry"):
            await _load_pending(db, kind, entry_id, reviewer)
            entry = await set_status(
                db, kind, entry_id, EntryStatus.rejected, reviewer.id,
                response=reason or "",
            )
            await commit(db)
    await db.refresh(entry)
    logger.info("%s %s rejected by parent %s", kind.value, entry_id, reviewer.id)
    return entry


async def fulfill_redemption(
    db: AsyncSession, redemption_id: int, reviewer: Parent | Reviewer
) -> Redemption:
    """Mark an approved redemption as handed over."""

    reviewer = Reviewer.of(reviewer)
    entry = await get_entry(db, EntryKind.redemption, redemption_id)
    if entry is None:
        raise NotFound(f"redemption {redemption_id} not found")
    if entry.family_id != reviewer.family_id:
        raise Forbidden(f"redemption {redemption_id} belongs to another family")
    async with child_lock(entry.child_id):
        async with rollback_on_error(db, "fulfil the redemption"):
            entry = await set_status(
                db, EntryKind.redemption, redemption_id, EntryStatus.fulfilled, reviewer.id
            )
            await commit(db)
    await db.refresh(entry)
    logger.info("Redemption %s fulfilled by parent %s", redemption_id, reviewer.id)
    return entry


async def _run_batch(ids: list[int], operation) -> BatchResult:
    result = BatchResult()
    for entry_id in dict.fromkeys(ids):
        try:
            await operation(entry_id)
        except LedgerError as exc:
            result.failed.append(BatchFailure(id=entry_id, code=exc.code, message=exc.message))
        else:
            result.succeeded.append(entry_id)
    return result


async def batch_approve(
    db: AsyncSession,
    kind: EntryKind,
    entry_ids: list[int],
    reviewer: Parent | Reviewer,
    effective_date: date | None = None,
) -> BatchResult:
    """Approve every id independently and report what failed."""

    reviewer = Reviewer.of(reviewer)
    result = await _run_batch(
        entry_ids,
        lambda entry_id: approve_entry(db, kind, entry_id, reviewer, effective_date),
    )
    logger.info(
        "Batch approve of %s %s by parent %s: %s ok, %s failed",
        len(entry_ids), kind.value, reviewer.id, len(result.succeeded), len(result.failed),
    )
    return result


async def batch_reject(
    db: AsyncSession,
    kind: EntryKind,
    entry_ids: list[int],
    reviewer: Parent | Reviewer,
    reason: str | None = None,
) -> BatchResult:
    """Reject every id independently and report what failed."""

    reviewer = Reviewer.of(reviewer)
    result = await _run_batch(
        entry_ids,
        lambda entry_id: reject_entry(db, kind, entry_id, reviewer, reason),
    )
    logger.info(
        "Batch reject of %s %s by parent %s: %s ok, %s failed",
        len(entry_ids), kind.value, reviewer.id, len(result.succeeded), len(result.failed),
    )
    return result
