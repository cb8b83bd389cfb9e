"""Ledger store: star transactions, redemptions and credit transactions.

Entries are appended and only ever change ``status`` along the edges in
``TRANSITIONS``; nothing is deleted. Writes that change a balance bump the
child's ``ledger_version`` in the same transaction so cached balances are
recomputed on the next read.
"""

import logging
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from .balance import bump_ledger_version, compute_balance, compute_totals
from .crud import (
    commit,
    get_family,
    get_quest,
    get_reward,
    require_family_child,
    rollback_on_error,
)
from .errors import (
    InsufficientBalance,
    InvalidTransition,
    NotFound,
    ValidationError,
)
from .guard import check_child_request, child_lock, lock_child_row
from .models import (
    Child,
    CreditTransaction,
    CreditTransactionType,
    EntryKind,
    EntryStatus,
    Parent,
    Redemption,
    StarTransaction,
    TransactionSource,
    utcnow,
)

logger = logging.getLogger(__name__)

ENTRY_MODELS = {
    EntryKind.star_transaction: StarTransaction,
    EntryKind.redemption: Redemption,
}

TRANSITIONS = {
    EntryKind.star_transaction: {
        EntryStatus.pending: {EntryStatus.approved, EntryStatus.rejected},
    },
    EntryKind.redemption: {
        EntryStatus.pending: {EntryStatus.approved, EntryStatus.rejected},
        EntryStatus.approved: {EntryStatus.fulfilled},
    },
}


def _clean_text(value: str | None) -> str | None:
    if value is None:
        return None
    return value.strip() or None


def is_terminal(kind: EntryKind, status: EntryStatus) -> bool:
    return not TRANSITIONS[kind].get(status)


async def get_entry(
    db: AsyncSession, kind: EntryKind, entry_id: int, for_update: bool = False
) -> StarTransaction | Redemption | None:
    """Load an entry, bypassing any stale copy held by the session."""
    model = ENTRY_MODELS[kind]
    stmt = select(model).where(model.id == entry_id).execution_options(
        populate_existing=True
    )
    if for_update:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def set_status(
    db: AsyncSession,
    kind: EntryKind,
    entry_id: int,
    new_status: EntryStatus,
    reviewer_id: int,
    response: str | None = None,
    reviewed_at: datetime | None = None,
) -> StarTransaction | Redemption:
    """Move an entry along one edge of its state machine.

    Runs inside the caller's transaction; the caller commits together with
    any side entries it writes.
    """
    entry = await get_entry(db, kind, entry_id, for_update=True)
    if entry is None:
        raise NotFound(f"{kind.value} {entry_id} not found")
    if is_terminal(kind, entry.status):
        raise InvalidTransition(f"{kind.value} {entry_id} is already final ({entry.status.value})")
    allowed = TRANSITIONS[kind].get(entry.status, set())
    if new_status not in allowed:
        raise InvalidTransition(
            f"{kind.value} {entry_id} cannot move from {entry.status.value} to {new_status.value}"
        )

    when = reviewed_at or utcnow()
    entry.status = new_status
    if new_status == EntryStatus.fulfilled:
        entry.fulfilled_at = when
    else:
        entry.reviewed_by = reviewer_id
        entry.reviewed_at = when
    if response is not None:
        entry.parent_response = _clean_text(response)
    db.add(entry)
    await db.flush()
    return entry


async def record_credit_transaction(
    db: AsyncSession,
    child: Child,
    type: CreditTransactionType,
    amount: int,
    balance_after: int,
    redemption_id: int | None = None,
    settlement_id: int | None = None,
) -> CreditTransaction:
    """Append a credit accounting row inside the caller's transaction."""
    tx = CreditTransaction(
        family_id=child.family_id,
        child_id=child.id,
        type=type,
        amount=amount,
        balance_after=balance_after,
        redemption_id=redemption_id,
        settlement_id=settlement_id,
    )
    db.add(tx)
    await db.flush()
    return tx


async def apply_earnings_to_debt(
    db: AsyncSession, child: Child, entry: StarTransaction
) -> CreditTransaction | None:
    """Pay down outstanding credit from an approved positive transaction."""
    if entry.stars <= 0:
        return None
    totals = await compute_totals(db, child.id)
    if totals.credit_used <= 0:
        return None
    repaid = min(entry.stars, totals.credit_used)
    logger.info("Child %s repaid %s stars of credit", child.id, repaid)
    return await record_credit_transaction(
        db,
        child,
        CreditTransactionType.credit_repaid,
        repaid,
        balance_after=totals.credit_used - repaid,
    )


async def create_star_transaction(
    db: AsyncSession, entry: StarTransaction, role: str
) -> StarTransaction:
    """Validate the role/source/status combination and persist the entry.

    Children may only create pending requests; parents only pre-approved
    records, reviewed by themselves at creation time.
    """
    if role == "child":
        if entry.source != TransactionSource.child_request or entry.status != EntryStatus.pending:
            raise ValidationError("Children can only create pending requests")
    elif role == "parent":
        if entry.source != TransactionSource.parent_record or entry.status != EntryStatus.approved:
            raise ValidationError("Parents can only create approved records")
        entry.reviewed_by = entry.created_by
        entry.reviewed_at = entry.created_at
    else:
        raise ValidationError(f"Unknown role {role!r}")
    if entry.stars == 0:
        raise ValidationError("stars must not be zero")

    db.add(entry)
    await db.flush()
    if entry.status == EntryStatus.approved:
        child = await lock_child_row(db, entry.child_id)
        await apply_earnings_to_debt(db, child, entry)
        await bump_ledger_version(db, entry.child_id)
    await commit(db)
    await db.refresh(entry)
    return entry


async def create_child_request(
    db: AsyncSession,
    child_id: int,
    quest_id: int,
    note: str | None = None,
    now: datetime | None = None,
    tz_name: str | None = None,
) -> StarTransaction:
    """Accept a child's request for a quest's stars, subject to the guard."""

    now = now or utcnow()
    async with child_lock(child_id):
        async with rollback_on_error(db, "record the star request"):
            child = await lock_child_row(db, child_id)
            quest = await get_quest(db, quest_id)
            if not quest or quest.family_id != child.family_id:
                raise NotFound(f"Quest {quest_id} not found")
            if not quest.active:
                raise ValidationError("Quest is not active")
            if tz_name is None:
                family = await get_family(db, child.family_id)
                tz_name = family.timezone
            await check_child_request(db, child_id, quest_id, now, tz_name)
            entry = StarTransaction(
                family_id=child.family_id,
                child_id=child_id,
                quest_id=quest_id,
                stars=quest.stars,
                source=TransactionSource.child_request,
                status=EntryStatus.pending,
                child_note=_clean_text(note),
                created_by=child_id,
                created_at=now,
            )
            entry = await create_star_transaction(db, entry, role="child")
    logger.info("Child %s requested stars for quest %s", child_id, quest_id)
    return entry


async def create_parent_record(
    db: AsyncSession,
    parent: Parent,
    child_id: int,
    stars: int | None = None,
    quest_id: int | None = None,
    custom_description: str | None = None,
    note: str | None = None,
) -> StarTransaction:
    """Record an already-approved award or deduction for a child.

    ``stars`` defaults to the quest's value when a quest is given.
    """

    child = await require_family_child(db, child_id, parent.family_id)
    description = _clean_text(custom_description)
    if quest_id is not None:
        quest = await get_quest(db, quest_id)
        if not quest or quest.family_id != parent.family_id:
            raise NotFound(f"Quest {quest_id} not found")
        if stars is None:
            stars = quest.stars
    elif description is None:
        raise ValidationError("Either a quest or a description is required")
    if stars is None:
        raise ValidationError("stars is required for a custom record")

    now = utcnow()
    entry = StarTransaction(
        family_id=child.family_id,
        child_id=child.id,
        quest_id=quest_id,
        custom_description=description,
        stars=stars,
        source=TransactionSource.parent_record,
        status=EntryStatus.approved,
        parent_response=_clean_text(note),
        created_by=parent.id,
        created_at=now,
    )
    async with child_lock(child.id):
        async with rollback_on_error(db, "record the stars"):
            entry = await create_star_transaction(db, entry, role="parent")
    logger.info(
        "Parent %s recorded %s stars for child %s", parent.id, entry.stars, child.id
    )
    return entry


def credit_needed(stars_cost: int, current_stars: int) -> int:
    """Part of a cost that the child's own stars do not cover."""
    return max(stars_cost - max(current_stars, 0), 0)


async def create_redemption_request(
    db: AsyncSession,
    child_id: int,
    reward_id: int,
    note: str | None = None,
) -> Redemption:
    """Child asks to spend stars on a reward, borrowing if credit allows."""

    async with child_lock(child_id):
        async with rollback_on_error(db, "record the redemption request"):
            child = await lock_child_row(db, child_id)
            reward = await get_reward(db, reward_id)
            if not reward or reward.family_id != child.family_id:
                raise NotFound(f"Reward {reward_id} not found")
            if not reward.active:
                raise ValidationError("Reward is not available")
            balance = await compute_balance(db, child_id)
            if reward.stars_cost > balance.spendable_stars:
                raise InsufficientBalance(
                    f"Reward costs {reward.stars_cost} stars, "
                    f"{balance.spendable_stars} available"
                )
            credit_amount = credit_needed(reward.stars_cost, balance.current_stars)
            if credit_amount > balance.available_credit:
                raise InsufficientBalance("Not enough credit available")
            redemption = Redemption(
                family_id=child.family_id,
                child_id=child_id,
                reward_id=reward_id,
                stars_spent=reward.stars_cost,
                status=EntryStatus.pending,
                child_note=_clean_text(note),
                uses_credit=credit_amount > 0,
                credit_amount=credit_amount,
            )
            db.add(redemption)
            await commit(db)
    await db.refresh(redemption)
    logger.info(
        "Child %s requested reward %s (credit %s)", child_id, reward_id, credit_amount
    )
    return redemption


async def create_parent_redemption(
    db: AsyncSession,
    parent: Parent,
    child_id: int,
    reward_id: int,
    note: str | None = None,
) -> Redemption:
    """Redeem on a child's behalf; approved immediately and never on credit."""

    child = await require_family_child(db, child_id, parent.family_id)
    async with child_lock(child.id):
        async with rollback_on_error(db, "record the redemption"):
            child = await lock_child_row(db, child.id)
            reward = await get_reward(db, reward_id)
            if not reward or reward.family_id != parent.family_id:
                raise NotFound(f"Reward {reward_id} not found")
            balance = await compute_balance(db, child.id)
            if reward.stars_cost > max(balance.current_stars, 0):
                raise InsufficientBalance(
                    f"Reward costs {reward.stars_cost} stars, "
                    f"{max(balance.current_stars, 0)} available"
                )
            now = utcnow()
            redemption = Redemption(
                family_id=child.family_id,
                child_id=child.id,
                reward_id=reward_id,
                stars_spent=reward.stars_cost,
                status=EntryStatus.approved,
                parent_response=_clean_text(note),
                created_by=parent.id,
                reviewed_by=parent.id,
                reviewed_at=now,
                created_at=now,
            )
            db.add(redemption)
            await db.flush()
            await bump_ledger_version(db, child.id)
            await commit(db)
    await db.refresh(redemption)
    logger.info("Parent %s redeemed reward %s for child %s", parent.id, reward_id, child.id)
    return redemption


# --- Listings -------------------------------------------------------------


async def get_pending_entries(
    db: AsyncSession, family_id: int, kind: EntryKind
) -> list[StarTransaction | Redemption]:
    """Pending entries of one kind for a family, oldest first."""
    model = ENTRY_MODELS[kind]
    result = await db.execute(
        select(model)
        .where(model.family_id == family_id, model.status == EntryStatus.pending)
        .order_by(model.created_at, model.id)
    )
    return result.scalars().all()


async def get_star_transactions_by_child(
    db: AsyncSession, child_id: int
) -> list[StarTransaction]:
    result = await db.execute(
        select(StarTransaction)
        .where(StarTransaction.child_id == child_id)
        .order_by(StarTransaction.created_at.desc(), StarTransaction.id.desc())
    )
    return result.scalars().all()


async def get_redemptions_by_child(db: AsyncSession, child_id: int) -> list[Redemption]:
    result = await db.execute(
        select(Redemption)
        .where(Redemption.child_id == child_id)
        .order_by(Redemption.created_at.desc(), Redemption.id.desc())
    )
    return result.scalars().all()


async def get_credit_transactions_by_child(
    db: AsyncSession, child_id: int
) -> list[CreditTransaction]:
    result = await db.execute(
        select(CreditTransaction)
        .where(CreditTransaction.child_id == child_id)
        .order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc())
    )
    return result.scalars().all()
