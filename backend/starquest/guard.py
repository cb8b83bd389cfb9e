"""Duplicate and rate-limit checks for child star requests.

The checks are only meaningful when they run in the same transaction as
the insert they protect and while no other request for the same child can
interleave. ``child_lock`` serialises callers within this process and
``lock_child_row`` takes a row lock for databases that support
``SELECT ... FOR UPDATE``; the ledger wraps both around the check and the
insert.
"""

import asyncio
import logging
import weakref
from contextlib import asynccontextmanager
from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from .errors import DuplicatePending, NotFound, RateLimited, ValidationError
from .models import Child, EntryStatus, StarTransaction, TransactionSource

logger = logging.getLogger(__name__)

SAME_QUEST_COOLDOWN = timedelta(minutes=2)
GLOBAL_COOLDOWN = timedelta(minutes=1)
GLOBAL_COOLDOWN_LIMIT = 2

# asyncio locks belong to one event loop, so keep a registry per loop.
# Each entry is [lock, holders]; it is dropped when the last holder leaves.
_locks: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, dict[int, list]]" = (
    weakref.WeakKeyDictionary()
)


@asynccontextmanager
async def child_lock(child_id: int):
    """Serialise ledger writes for one child within this process."""
    per_loop = _locks.setdefault(asyncio.get_running_loop(), {})
    slot = per_loop.setdefault(child_id, [asyncio.Lock(), 0])
    slot[1] += 1
    try:
        async with slot[0]:
            yield
    finally:
        slot[1] -= 1
        if slot[1] == 0:
            del per_loop[child_id]


async def lock_child_row(db: AsyncSession, child_id: int) -> Child:
    """Load the child with a row lock held until the transaction ends."""
    result = await db.execute(
        select(Child).where(Child.id == child_id).with_for_update()
    )
    child = result.scalar_one_or_none()
    if child is None:
        raise NotFound(f"Child {child_id} not found")
    return child


def local_day_bounds(now: datetime, tz_name: str) -> tuple[datetime, datetime]:
    """Naive UTC bounds of the calendar day containing ``now`` in ``tz_name``.

    ``now`` is naive UTC, as stored in the database.
    """
    try:
        tz = ZoneInfo(tz_name)
    except (KeyError, ValueError) as exc:
        raise ValidationError(f"Unknown timezone {tz_name!r}") from exc
    local_now = now.replace(tzinfo=timezone.utc).astimezone(tz)
    start_local = datetime.combine(local_now.date(), time.min, tzinfo=tz)
    end_local = datetime.combine(local_now.date() + timedelta(days=1), time.min, tzinfo=tz)
    start = start_local.astimezone(timezone.utc).replace(tzinfo=None)
    end = end_local.astimezone(timezone.utc).replace(tzinfo=None)
    return start, end


async def check_child_request(
    db: AsyncSession,
    child_id: int,
    quest_id: int,
    now: datetime,
    tz_name: str = "UTC",
) -> None:
    """Raise a :class:`GuardError` if the request must not be accepted.

    Cooldowns are checked before the duplicate rule, so a quick resubmit
    is reported as rate limited and an older pending one as a duplicate.
    """

    recent_same_quest = await db.execute(
        select(func.count())
        .select_from(StarTransaction)
        .where(
            StarTransaction.child_id == child_id,
            StarTransaction.quest_id == quest_id,
            StarTransaction.created_at > now - SAME_QUEST_COOLDOWN,
        )
    )
    if recent_same_quest.scalar_one() > 0:
        logger.warning("Child %s hit the cooldown for quest %s", child_id, quest_id)
        raise RateLimited("Please wait a couple of minutes before asking again")

    recent_any = await db.execute(
        select(func.count())
        .select_from(StarTransaction)
        .where(
            StarTransaction.child_id == child_id,
            StarTransaction.source == TransactionSource.child_request,
            StarTransaction.created_at > now - GLOBAL_COOLDOWN,
        )
    )
    if recent_any.scalar_one() >= GLOBAL_COOLDOWN_LIMIT:
        logger.warning("Child %s hit the global request cooldown", child_id)
        raise RateLimited("Too many requests, please wait a minute")

    day_start, day_end = local_day_bounds(now, tz_name)
    pending_today = await db.execute(
        select(func.count())
        .select_from(StarTransaction)
        .where(
            StarTransaction.child_id == child_id,
            StarTransaction.quest_id == quest_id,
            StarTransaction.status == EntryStatus.pending,
            StarTransaction.created_at >= day_start,
            StarTransaction.created_at < day_end,
        )
    )
    if pending_today.scalar_one() > 0:
        logger.warning("Child %s already has a pending request for quest %s", child_id, quest_id)
        raise DuplicatePending("This quest is already waiting for approval today")
