"""Balance projection over the star ledger.

Balances are never stored as the source of truth. ``compute_balance`` sums
the ledger tables directly; ``get_balance`` serves the ``ChildBalance``
cache when it was written at the child's current ``ledger_version`` and
recomputes it otherwise. Anything that authorizes spending must call
``compute_balance`` inside its own write transaction.
"""

import logging
from dataclasses import dataclass

from sqlalchemy import func, case, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from .crud import commit, get_credit_settings, require_child
from .models import (
    Child,
    ChildBalance,
    ChildCreditSettings,
    CreditTransaction,
    CreditTransactionType,
    EntryStatus,
    Redemption,
    StarTransaction,
    utcnow,
)

logger = logging.getLogger(__name__)

# Statuses whose entries count towards the balance.
APPLIED_STATUSES = (EntryStatus.approved, EntryStatus.fulfilled)


@dataclass
class LedgerTotals:
    """Raw sums over one child's ledger."""

    current_stars: int = 0
    lifetime_stars: int = 0
    credit_used: int = 0


@dataclass
class BalanceSnapshot:
    child_id: int
    current_stars: int
    lifetime_stars: int
    credit_enabled: bool
    credit_limit: int
    original_credit_limit: int
    credit_used: int
    available_credit: int
    spendable_stars: int


def available_credit(credit_limit: int, credit_used: int, credit_enabled: bool) -> int:
    if not credit_enabled:
        return 0
    return max(credit_limit - credit_used, 0)


def spendable_stars(current_stars: int, credit_enabled: bool, available: int) -> int:
    """Most a child could put towards a reward right now."""
    if not credit_enabled:
        return max(current_stars, 0)
    return max(current_stars, 0) + available


def build_snapshot(
    child_id: int, totals: LedgerTotals, settings: ChildCreditSettings
) -> BalanceSnapshot:
    available = available_credit(
        settings.credit_limit, totals.credit_used, settings.credit_enabled
    )
    return BalanceSnapshot(
        child_id=child_id,
        current_stars=totals.current_stars,
        lifetime_stars=totals.lifetime_stars,
        credit_enabled=settings.credit_enabled,
        credit_limit=settings.credit_limit,
        original_credit_limit=settings.original_credit_limit,
        credit_used=totals.credit_used,
        available_credit=available,
        spendable_stars=spendable_stars(
            totals.current_stars, settings.credit_enabled, available
        ),
    )


async def compute_totals(db: AsyncSession, child_id: int) -> LedgerTotals:
    """Sum the ledger for a child. Pure read, no caching."""

    tx_result = await db.execute(
        select(
            func.coalesce(func.sum(StarTransaction.stars), 0),
            func.coalesce(
                func.sum(
                    case((StarTransaction.stars > 0, StarTransaction.stars), else_=0)
                ),
                0,
            ),
        ).where(
            StarTransaction.child_id == child_id,
            StarTransaction.status == EntryStatus.approved,
        )
    )
    earned, lifetime = tx_result.one()

    spent_result = await db.execute(
        select(func.coalesce(func.sum(Redemption.stars_spent), 0)).where(
            Redemption.child_id == child_id,
            Redemption.status.in_(APPLIED_STATUSES),
        )
    )
    spent = spent_result.scalar_one()

    credit_result = await db.execute(
        select(CreditTransaction.type, func.sum(CreditTransaction.amount))
        .where(CreditTransaction.child_id == child_id)
        .group_by(CreditTransaction.type)
    )
    credit = {CreditTransactionType(t): int(total or 0) for t, total in credit_result.all()}
    used = credit.get(CreditTransactionType.credit_used, 0)
    repaid = credit.get(CreditTransactionType.credit_repaid, 0)
    interest = credit.get(CreditTransactionType.interest_charged, 0)

    return LedgerTotals(
        # Interest is both added debt and a deduction from the balance.
        current_stars=int(earned) - int(spent) - interest,
        lifetime_stars=int(lifetime),
        credit_used=max(used - repaid + interest, 0),
    )


async def compute_balance(db: AsyncSession, child_id: int) -> BalanceSnapshot:
    """Authoritative balance straight from the ledger tables."""
    totals = await compute_totals(db, child_id)
    settings = await get_credit_settings(db, child_id)
    return build_snapshot(child_id, totals, settings)


async def current_ledger_version(db: AsyncSession, child_id: int) -> int:
    result = await db.execute(
        select(Child.ledger_version).where(Child.id == child_id)
    )
    return result.scalar_one()


async def bump_ledger_version(db: AsyncSession, child_id: int) -> None:
    """Invalidate the balance cache; runs inside the caller's transaction."""
    await db.execute(
        update(Child)
        .where(Child.id == child_id)
        .values(ledger_version=Child.ledger_version + 1)
    )


async def _store_cache(
    db: AsyncSession, child_id: int, totals: LedgerTotals, version: int
) -> None:
    cache = await db.get(ChildBalance, child_id, populate_existing=True)
    if cache is None:
        cache = ChildBalance(child_id=child_id)
    cache.current_stars = totals.current_stars
    cache.lifetime_stars = totals.lifetime_stars
    cache.credit_used = totals.credit_used
    cache.ledger_version = version
    cache.updated_at = utcnow()
    db.add(cache)
    await commit(db)


async def get_balance(db: AsyncSession, child_id: int) -> BalanceSnapshot:
    """Balance for display, served from the cache when it is current."""

    await require_child(db, child_id)
    # Read the version before summing so a concurrent write leaves the
    # cache marked stale rather than current.
    version = await current_ledger_version(db, child_id)
    cache = await db.get(ChildBalance, child_id, populate_existing=True)
    if cache is not None and cache.ledger_version == version:
        totals = LedgerTotals(
            current_stars=cache.current_stars,
            lifetime_stars=cache.lifetime_stars,
            credit_used=cache.credit_used,
        )
    else:
        totals = await compute_totals(db, child_id)
        await _store_cache(db, child_id, totals, version)
        logger.debug("Balance cache refreshed for child %s at v%s", child_id, version)
    settings = await get_credit_settings(db, child_id)
    return build_snapshot(child_id, totals, settings)


async def reconcile_balance(
    db: AsyncSession, child_id: int
) -> tuple[BalanceSnapshot, bool]:
    """Rebuild the cache from the ledger and report whether it had drifted."""

    await require_child(db, child_id)
    version = await current_ledger_version(db, child_id)
    cache = await db.get(ChildBalance, child_id, populate_existing=True)
    totals = await compute_totals(db, child_id)
    matched = cache is not None and (
        cache.current_stars == totals.current_stars
        and cache.lifetime_stars == totals.lifetime_stars
        and cache.credit_used == totals.credit_used
    )
    if not matched:
        logger.warning("Balance cache for child %s did not match the ledger", child_id)
    await _store_cache(db, child_id, totals, version)
    settings = await get_credit_settings(db, child_id)
    return build_snapshot(child_id, totals, settings), matched
