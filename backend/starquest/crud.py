"""Asynchronous CRUD helpers for families, members, quests and rewards.

Each function in this module encapsulates a specific database operation
using SQLModel and SQLAlchemy. The ledger, approval and settlement modules
build on these lookups; keeping them here keeps route handlers light.
"""

import logging
from contextlib import asynccontextmanager

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select, delete

from .auth import get_password_hash
from .errors import LedgerError, NotFound, StorageError, ValidationError, Forbidden
from .models import (
    Family,
    Parent,
    Child,
    Quest,
    Reward,
    ChildBalance,
    ChildCreditSettings,
    CreditInterestTier,
    CreditSettlement,
    utcnow,
)

logger = logging.getLogger(__name__)

# Tiers seeded for every new family. Bounds are half-open: [min_debt, max_debt).
DEFAULT_INTEREST_TIERS = [
    {"tier_order": 1, "min_debt": 0, "max_debt": 20, "interest_rate": 0.05},
    {"tier_order": 2, "min_debt": 20, "max_debt": 50, "interest_rate": 0.10},
    {"tier_order": 3, "min_debt": 50, "max_debt": None, "interest_rate": 0.15},
]


async def commit(db: AsyncSession) -> None:
    """Commit the session, surfacing store failures as :class:`StorageError`.

    Nothing is retried here: a retry after a partially applied write could
    double-credit or double-charge a child.
    """
    try:
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("Ledger store commit failed: %s", exc)
        raise StorageError(f"Could not save changes: {exc.__class__.__name__}") from exc


@asynccontextmanager
async def rollback_on_error(db: AsyncSession, action: str):
    """Discard the session's work if the block fails.

    Ledger errors propagate unchanged; store errors raised by a flush or
    query inside the block become :class:`StorageError`. Rolling back
    expires every object in the session, so callers must not read ORM
    attributes they loaded before the failure.
    """
    try:
        yield
    except LedgerError:
        await db.rollback()
        raise
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("Ledger store failed during %s: %s", action, exc)
        raise StorageError(f"Could not {action}: {exc.__class__.__name__}") from exc


# --- Families and parents -------------------------------------------------


async def create_family_with_parent(
    db: AsyncSession, family_name: str, parent: Parent, timezone: str = "UTC"
) -> Parent:
    """Create a family, its first parent and the default interest tiers."""

    family = Family(name=family_name, timezone=timezone)
    db.add(family)
    await db.flush()  # ensure family.id is populated

    for tier in DEFAULT_INTEREST_TIERS:
        db.add(CreditInterestTier(family_id=family.id, **tier))

    parent.family_id = family.id
    if not parent.password_hash.startswith("$2b$"):
        parent.password_hash = get_password_hash(parent.password_hash)
    db.add(parent)
    await commit(db)
    await db.refresh(parent)
    return parent


async def add_parent_to_family(db: AsyncSession, parent: Parent) -> Parent:
    """Persist an additional parent for an existing family."""

    if not parent.password_hash.startswith("$2b$"):
        parent.password_hash = get_password_hash(parent.password_hash)
    db.add(parent)
    await commit(db)
    await db.refresh(parent)
    return parent


async def get_family(db: AsyncSession, family_id: int) -> Family | None:
    result = await db.execute(select(Family).where(Family.id == family_id))
    return result.scalar_one_or_none()


async def get_all_families(db: AsyncSession) -> list[Family]:
    result = await db.execute(select(Family).order_by(Family.id))
    return result.scalars().all()


async def save_family(db: AsyncSession, family: Family) -> Family:
    db.add(family)
    await commit(db)
    await db.refresh(family)
    return family


async def get_parent(db: AsyncSession, parent_id: int) -> Parent | None:
    result = await db.execute(select(Parent).where(Parent.id == parent_id))
    return result.scalar_one_or_none()


async def get_parent_by_email(db: AsyncSession, email: str) -> Parent | None:
    """Return a parent by email or ``None`` if not found."""
    result = await db.execute(select(Parent).where(Parent.email == email))
    return result.scalar_one_or_none()


async def get_parents_by_family(db: AsyncSession, family_id: int) -> list[Parent]:
    result = await db.execute(
        select(Parent).where(Parent.family_id == family_id).order_by(Parent.id)
    )
    return result.scalars().all()


# --- Children -------------------------------------------------------------


async def create_child(db: AsyncSession, child: Child) -> Child:
    """Create a child with disabled credit settings and an empty balance row."""

    db.add(child)
    await db.flush()  # ensure child.id is populated
    db.add(ChildCreditSettings(family_id=child.family_id, child_id=child.id))
    db.add(ChildBalance(child_id=child.id))
    await commit(db)
    await db.refresh(child)
    return child


async def get_child(db: AsyncSession, child_id: int) -> Child | None:
    """Fetch a child by id or ``None`` if not found."""
    result = await db.execute(select(Child).where(Child.id == child_id))
    return result.scalar_one_or_none()


async def require_child(db: AsyncSession, child_id: int) -> Child:
    child = await get_child(db, child_id)
    if not child:
        raise NotFound(f"Child {child_id} not found")
    return child


async def require_family_child(
    db: AsyncSession, child_id: int, family_id: int
) -> Child:
    """Load a child and check it belongs to ``family_id``."""
    child = await require_child(db, child_id)
    if child.family_id != family_id:
        raise Forbidden(f"Child {child_id} belongs to another family")
    return child


async def get_child_by_access_code(db: AsyncSession, access_code: str) -> Child | None:
    """Return a child by their unique access code."""
    result = await db.execute(select(Child).where(Child.access_code == access_code))
    return result.scalars().first()


async def get_children_by_family(db: AsyncSession, family_id: int) -> list[Child]:
    result = await db.execute(
        select(Child).where(Child.family_id == family_id).order_by(Child.id)
    )
    return result.scalars().all()


# --- Quests and rewards ---------------------------------------------------


async def create_quest(db: AsyncSession, quest: Quest) -> Quest:
    """Persist a new quest."""
    if not quest.name.strip():
        raise ValidationError("Quest name is required")
    db.add(quest)
    await commit(db)
    await db.refresh(quest)
    return quest


async def get_quest(db: AsyncSession, quest_id: int) -> Quest | None:
    result = await db.execute(select(Quest).where(Quest.id == quest_id))
    return result.scalar_one_or_none()


async def get_quests_by_family(db: AsyncSession, family_id: int) -> list[Quest]:
    result = await db.execute(
        select(Quest).where(Quest.family_id == family_id).order_by(Quest.id)
    )
    return result.scalars().all()


async def create_reward(db: AsyncSession, reward: Reward) -> Reward:
    """Persist a new reward after checking its cost."""
    if reward.stars_cost <= 0:
        raise ValidationError("stars_cost must be greater than zero")
    if not reward.name.strip():
        raise ValidationError("Reward name is required")
    db.add(reward)
    await commit(db)
    await db.refresh(reward)
    return reward


async def get_reward(db: AsyncSession, reward_id: int) -> Reward | None:
    result = await db.execute(select(Reward).where(Reward.id == reward_id))
    return result.scalar_one_or_none()


async def get_rewards_by_family(db: AsyncSession, family_id: int) -> list[Reward]:
    result = await db.execute(
        select(Reward).where(Reward.family_id == family_id).order_by(Reward.id)
    )
    return result.scalars().all()


# --- Credit settings and interest tiers -----------------------------------


async def get_credit_settings(db: AsyncSession, child_id: int) -> ChildCreditSettings:
    """Fetch a child's credit settings, creating a disabled row if missing."""
    result = await db.execute(
        select(ChildCreditSettings).where(ChildCreditSettings.child_id == child_id)
    )
    settings = result.scalar_one_or_none()
    if not settings:
        child = await require_child(db, child_id)
        settings = ChildCreditSettings(family_id=child.family_id, child_id=child_id)
        db.add(settings)
        await commit(db)
        await db.refresh(settings)
    return settings


async def update_credit_settings(
    db: AsyncSession,
    child_id: int,
    credit_enabled: bool | None = None,
    credit_limit: int | None = None,
) -> ChildCreditSettings:
    """Update a child's credit facility.

    A limit set by a parent also becomes the new ``original_credit_limit``,
    the ceiling that settlement policies restore towards.
    """
    settings = await get_credit_settings(db, child_id)
    if credit_limit is not None:
        if credit_limit < 0:
            raise ValidationError("credit_limit must be zero or greater")
        settings.credit_limit = credit_limit
        settings.original_credit_limit = credit_limit
    if credit_enabled is not None:
        settings.credit_enabled = credit_enabled
    settings.updated_at = utcnow()
    db.add(settings)
    await commit(db)
    await db.refresh(settings)
    logger.info(
        "Credit settings for child %s: enabled=%s limit=%s",
        child_id,
        settings.credit_enabled,
        settings.credit_limit,
    )
    return settings


async def get_interest_tiers(db: AsyncSession, family_id: int) -> list[CreditInterestTier]:
    """Return a family's interest tiers ordered by ``tier_order``."""
    result = await db.execute(
        select(CreditInterestTier)
        .where(CreditInterestTier.family_id == family_id)
        .order_by(CreditInterestTier.tier_order)
    )
    return result.scalars().all()


def validate_interest_tiers(tiers: list[dict]) -> list[dict]:
    """Check tier order is unique and debt ranges do not overlap."""
    ordered = sorted(tiers, key=lambda t: t["tier_order"])
    orders = [t["tier_order"] for t in ordered]
    if len(set(orders)) != len(orders):
        raise ValidationError("tier_order values must be unique")
    previous_max = None
    for index, tier in enumerate(ordered):
        if tier["min_debt"] < 0:
            raise ValidationError("min_debt must be zero or greater")
        if tier.get("max_debt") is not None and tier["max_debt"] <= tier["min_debt"]:
            raise ValidationError("max_debt must be greater than min_debt")
        if tier["interest_rate"] < 0:
            raise ValidationError("interest_rate must be zero or greater")
        if index > 0:
            if previous_max is None:
                raise ValidationError("Only the last tier may be unbounded")
            if tier["min_debt"] < previous_max:
                raise ValidationError("Interest tiers must not overlap")
        previous_max = tier.get("max_debt")
    return ordered


async def replace_interest_tiers(
    db: AsyncSession, family_id: int, tiers: list[dict]
) -> list[CreditInterestTier]:
    """Replace a family's interest tier table in one transaction."""
    ordered = validate_interest_tiers(tiers)
    await db.execute(
        delete(CreditInterestTier).where(CreditInterestTier.family_id == family_id)
    )
    for tier in ordered:
        db.add(
            CreditInterestTier(
                family_id=family_id,
                tier_order=tier["tier_order"],
                min_debt=tier["min_debt"],
                max_debt=tier.get("max_debt"),
                interest_rate=tier["interest_rate"],
            )
        )
    await commit(db)
    logger.info("Interest tiers replaced for family %s", family_id)
    return await get_interest_tiers(db, family_id)


async def get_settlements_by_child(
    db: AsyncSession, child_id: int
) -> list[CreditSettlement]:
    """Return a child's settlement history, newest first."""
    result = await db.execute(
        select(CreditSettlement)
        .where(CreditSettlement.child_id == child_id)
        .order_by(CreditSettlement.settlement_date.desc())
    )
    return result.scalars().all()


async def get_settlements_by_family(
    db: AsyncSession, family_id: int
) -> list[CreditSettlement]:
    result = await db.execute(
        select(CreditSettlement)
        .where(CreditSettlement.family_id == family_id)
        .order_by(CreditSettlement.settlement_date.desc(), CreditSettlement.child_id)
    )
    return result.scalars().all()
