"""Periodic credit settlement: tiered interest and credit limit adjustment.

Interest is progressive. Each tier ``[min_debt, max_debt)`` charges its
rate only on the slice of debt that falls inside it, and every slice is
rounded half up to a whole star on its own, so the breakdown always adds
up to the total charged.

A child's settlement (interest transaction, settlement row, new credit
limit) is committed as a unit or not at all.
"""

import logging
import os
import calendar
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from .balance import bump_ledger_version, compute_totals
from .crud import (
    commit,
    get_all_families,
    get_children_by_family,
    get_credit_settings,
    get_interest_tiers,
    rollback_on_error,
)
from .errors import LedgerError
from .guard import child_lock, lock_child_row
from .ledger import record_credit_transaction
from .models import (
    CreditInterestTier,
    CreditSettlement,
    CreditTransaction,
    CreditTransactionType,
    Family,
    utcnow,
)

logger = logging.getLogger(__name__)

INCLUDE_EMPTY_TIERS = os.getenv("SETTLEMENT_INCLUDE_EMPTY_TIERS", "false").lower() == "true"

STAR = Decimal("1")


@dataclass
class InterestCalculation:
    total_interest: int
    breakdown: list[dict]


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(STAR, rounding=ROUND_HALF_UP))


def calculate_interest(
    debt: int,
    tiers: list[CreditInterestTier],
    include_empty_tiers: bool = False,
) -> InterestCalculation:
    """Split ``debt`` across ``tiers`` and charge each slice its rate.

    Tiers the debt does not reach are left out of the breakdown unless
    ``include_empty_tiers`` is set, in which case they appear with
    ``debt_in_tier`` and ``interest_amount`` of zero.
    """
    breakdown = []
    total = 0
    for tier in sorted(tiers, key=lambda t: t.tier_order):
        if debt > tier.min_debt:
            upper = debt if tier.max_debt is None else min(debt, tier.max_debt)
            debt_in_tier = min(max(upper - tier.min_debt, 0), debt - tier.min_debt)
        else:
            debt_in_tier = 0
        if debt_in_tier == 0 and not include_empty_tiers:
            continue
        interest = round_half_up(Decimal(debt_in_tier) * Decimal(str(tier.interest_rate)))
        total += interest
        breakdown.append(
            {
                "tier_order": tier.tier_order,
                "min_debt": tier.min_debt,
                "max_debt": tier.max_debt,
                "interest_rate": tier.interest_rate,
                "debt_in_tier": debt_in_tier,
                "interest_amount": interest,
            }
        )
    return InterestCalculation(total_interest=total, breakdown=breakdown)


# --- Credit limit policies ------------------------------------------------


@dataclass
class SettlementContext:
    """What a credit limit policy gets to see about a child's period."""

    child_id: int
    credit_limit: int
    original_credit_limit: int
    debt_amount: int
    interest: int
    repaid_in_period: int


CreditLimitPolicy = Callable[[SettlementContext], int]


def keep_credit_limit(context: SettlementContext) -> int:
    return context.credit_limit


def repayment_history_policy(step: int = 10) -> CreditLimitPolicy:
    """Reward repayment with a higher limit, punish none with a lower one.

    The limit grows by ``step`` up to the original limit when the child
    repaid at least the interest charged during the period, and otherwise
    shrinks by ``step`` down to zero.
    """

    def policy(context: SettlementContext) -> int:
        if context.repaid_in_period >= context.interest:
            return min(context.credit_limit + step, context.original_credit_limit)
        return max(context.credit_limit - step, 0)

    return policy


# --- Settlement -----------------------------------------------------------


async def get_settlement(
    db: AsyncSession, child_id: int, settlement_date: date
) -> CreditSettlement | None:
    result = await db.execute(
        select(CreditSettlement).where(
            CreditSettlement.child_id == child_id,
            CreditSettlement.settlement_date == settlement_date,
        )
    )
    return result.scalar_one_or_none()


async def _repaid_since_last_settlement(
    db: AsyncSession, child_id: int, period_end: date
) -> int:
    last = await db.execute(
        select(func.max(CreditSettlement.settled_at)).where(
            CreditSettlement.child_id == child_id,
            CreditSettlement.settlement_date < period_end,
        )
    )
    since = last.scalar_one_or_none()
    stmt = select(func.coalesce(func.sum(CreditTransaction.amount), 0)).where(
        CreditTransaction.child_id == child_id,
        CreditTransaction.type == CreditTransactionType.credit_repaid,
    )
    if since is not None:
        stmt = stmt.where(CreditTransaction.created_at > since)
    result = await db.execute(stmt)
    return int(result.scalar_one())


async def run_settlement(
    db: AsyncSession,
    child_id: int,
    period_end: date,
    policy: CreditLimitPolicy = keep_credit_limit,
    include_empty_tiers: bool | None = None,
) -> CreditSettlement | None:
    """Settle one child's debt for the period ending ``period_end``.

    Returns ``None`` when credit is disabled or nothing is owed, and the
    existing row when the child was already settled for this period.
    """
    if include_empty_tiers is None:
        include_empty_tiers = INCLUDE_EMPTY_TIERS

    async with child_lock(child_id):
        async with rollback_on_error(db, f"settle child {child_id}"):
            child = await lock_child_row(db, child_id)
            settings = await get_credit_settings(db, child_id)
            if not settings.credit_enabled:
                await commit(db)
                return None
            existing = await get_settlement(db, child_id, period_end)
            if existing is not None:
                logger.info("Child %s already settled for %s", child_id, period_end)
                await commit(db)
                return existing

            totals = await compute_totals(db, child_id)
            debt = totals.credit_used
            if debt <= 0:
                await commit(db)
                return None

            tiers = await get_interest_tiers(db, child.family_id)
            calculation = calculate_interest(debt, tiers, include_empty_tiers)
            context = SettlementContext(
                child_id=child_id,
                credit_limit=settings.credit_limit,
                original_credit_limit=settings.original_credit_limit,
                debt_amount=debt,
                interest=calculation.total_interest,
                repaid_in_period=await _repaid_since_last_settlement(
                    db, child_id, period_end
                ),
            )
            limit_after = max(int(policy(context)), 0)

            settlement = CreditSettlement(
                family_id=child.family_id,
                child_id=child_id,
                settlement_date=period_end,
                balance_before=totals.current_stars,
                debt_amount=debt,
                interest_calculated=calculation.total_interest,
                interest_breakdown=calculation.breakdown,
                credit_limit_before=settings.credit_limit,
                credit_limit_after=limit_after,
                credit_limit_adjustment=limit_after - settings.credit_limit,
            )
            db.add(settlement)
            await db.flush()

            if calculation.total_interest > 0:
                await record_credit_transaction(
                    db,
                    child,
                    CreditTransactionType.interest_charged,
                    calculation.total_interest,
                    balance_after=debt + calculation.total_interest,
                    settlement_id=settlement.id,
                )
                await bump_ledger_version(db, child_id)

            settings.credit_limit = limit_after
            settings.updated_at = utcnow()
            db.add(settings)
            await commit(db)
    await db.refresh(settlement)
    logger.info(
        "Settled child %s for %s: debt %s, interest %s, limit %s -> %s",
        child_id,
        period_end,
        debt,
        calculation.total_interest,
        settlement.credit_limit_before,
        settlement.credit_limit_after,
    )
    return settlement


@dataclass
class SettlementRunResult:
    settlement_date: date
    settlements: list[CreditSettlement] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def processed_count(self) -> int:
        return len(self.settlements)


async def run_family_settlement(
    db: AsyncSession,
    family_id: int,
    period_end: date,
    policy: CreditLimitPolicy = keep_credit_limit,
    result: SettlementRunResult | None = None,
) -> SettlementRunResult:
    """Settle every child of a family; one child's failure does not stop the rest."""
    result = result or SettlementRunResult(settlement_date=period_end)
    # A failed child rolls the session back and expires what it holds, so
    # work from plain ids and detach each finished settlement.
    child_ids = [child.id for child in await get_children_by_family(db, family_id)]
    for child_id in child_ids:
        try:
            settlement = await run_settlement(db, child_id, period_end, policy)
        except LedgerError as exc:
            logger.error("Settlement failed for child %s: %s", child_id, exc)
            result.errors.append(f"child {child_id}: {exc.message}")
            continue
        if settlement is None:
            result.skipped.append(child_id)
        else:
            db.expunge(settlement)
            result.settlements.append(settlement)
    return result


def is_settlement_day(family: Family, today: date) -> bool:
    """``settlement_day`` 0 means the last day of the month."""
    last_day = calendar.monthrange(today.year, today.month)[1]
    if family.settlement_day == 0:
        return today.day == last_day
    return family.settlement_day == today.day


async def run_due_settlements(
    db: AsyncSession,
    today: date,
    policy: CreditLimitPolicy = keep_credit_limit,
) -> SettlementRunResult:
    """Settle every family whose settlement day is ``today``."""
    result = SettlementRunResult(settlement_date=today)
    due = [f.id for f in await get_all_families(db) if is_settlement_day(f, today)]
    for family_id in due:
        await run_family_settlement(db, family_id, today, policy, result)
    logger.info(
        "Settlement run for %s: %s settled, %s skipped, %s errors",
        today,
        result.processed_count,
        len(result.skipped),
        len(result.errors),
    )
    return result
