"""Tests for single and batch review of pending entries."""

import asyncio
import pathlib
import sys
from datetime import date, datetime, timedelta

import pytest
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlmodel import SQLModel

# Allow importing the starquest package
sys.path.append(str(pathlib.Path(__file__).resolve().parents[2]))

import starquest.approvals as approvals_module
from starquest.approvals import (
    Reviewer,
    approve_entry,
    batch_approve,
    batch_reject,
    review_timestamp,
)
from starquest.balance import get_balance
from starquest.crud import (
    add_parent_to_family,
    create_child,
    create_family_with_parent,
    create_quest,
    create_reward,
)
from starquest.errors import AlreadyReviewed, Forbidden, StorageError
from starquest.ledger import (
    create_child_request,
    create_parent_record,
    create_redemption_request,
    get_pending_entries,
)
from starquest.models import Child, EntryKind, EntryStatus, Parent, Quest, Reward

T0 = datetime(2026, 5, 4, 8, 0, 0)


async def _setup_test_db():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    TestSession = async_sessionmaker(engine, expire_on_commit=False)

    async with TestSession() as session:
        mum = await create_family_with_parent(
            session,
            "Review Family",
            Parent(name="Mum", email="mum@example.com", password_hash="$2b$12$fake", family_id=0),
        )
        dad = await add_parent_to_family(
            session,
            Parent(name="Dad", email="dad@example.com", password_hash="$2b$12$fake", family_id=mum.family_id),
        )
        child = await create_child(
            session, Child(family_id=mum.family_id, name="Kid", access_code="KID")
        )
        quests = []
        for index, stars in enumerate((3, 4, 5)):
            quests.append(
                await create_quest(
                    session, Quest(family_id=mum.family_id, name=f"Quest {index}", stars=stars)
                )
            )
    return TestSession, mum, dad, child, quests


async def _three_requests(session, child, quests):
    entries = []
    for index, quest in enumerate(quests):
        entries.append(
            await create_child_request(
                session, child.id, quest.id, now=T0 + timedelta(minutes=5 * index)
            )
        )
    return entries


def test_batch_approve_reports_already_reviewed():
    async def run():
        TestSession, mum, dad, child, quests = await _setup_test_db()
        async with TestSession() as session:
            entries = await _three_requests(session, child, quests)
            ids = [e.id for e in entries]

            # Another parent got to the second one first.
            await approve_entry(session, EntryKind.star_transaction, ids[1], dad)

            result = await batch_approve(session, EntryKind.star_transaction, ids, mum)
            assert result.succeeded == [ids[0], ids[2]]
            assert len(result.failed) == 1
            assert result.failed[0].id == ids[1]
            assert result.failed[0].code == "already_reviewed"

            balance = await get_balance(session, child.id)
            assert balance.current_stars == 12
            assert await get_pending_entries(session, mum.family_id, EntryKind.star_transaction) == []

    asyncio.run(run())


def test_batch_reports_missing_and_foreign_entries():
    async def run():
        TestSession, mum, _, child, quests = await _setup_test_db()
        async with TestSession() as session:
            entries = await _three_requests(session, child, quests)
            ids = [e.id for e in entries]
            stranger = await create_family_with_parent(
                session,
                "Stranger Family",
                Parent(name="Stranger", email="stranger@example.com", password_hash="$2b$12$fake", family_id=0),
            )

            result = await batch_reject(
                session, EntryKind.star_transaction, [ids[0], 999], stranger
            )
            assert result.succeeded == []
            assert [(f.id, f.code) for f in result.failed] == [
                (ids[0], "forbidden"),
                (999, "not_found"),
            ]

            # Duplicated ids are reviewed once.
            result = await batch_reject(
                session,
                EntryKind.star_transaction,
                [ids[0], ids[0], ids[1]],
                mum,
                reason="Try again tomorrow",
            )
            assert result.succeeded == [ids[0], ids[1]]
            assert result.failed == []

            pending = await get_pending_entries(session, mum.family_id, EntryKind.star_transaction)
            assert [p.id for p in pending] == [ids[2]]
            assert (await get_balance(session, child.id)).current_stars == 0

    asyncio.run(run())


def test_single_review_checks_family_and_status():
    async def run():
        TestSession, mum, dad, child, quests = await _setup_test_db()
        async with TestSession() as session:
            entry = (await _three_requests(session, child, quests[:1]))[0]
            entry_id = entry.id
            stranger = await create_family_with_parent(
                session,
                "Stranger Family",
                Parent(name="Stranger", email="stranger@example.com", password_hash="$2b$12$fake", family_id=0),
            )
            with pytest.raises(Forbidden):
                await approve_entry(session, EntryKind.star_transaction, entry_id, stranger)

            approved = await approve_entry(session, EntryKind.star_transaction, entry_id, mum)
            assert approved.reviewed_by == mum.id
            with pytest.raises(AlreadyReviewed):
                await approve_entry(session, EntryKind.star_transaction, entry_id, dad)

    asyncio.run(run())


def test_effective_date_backdates_the_review():
    async def run():
        TestSession, mum, _, child, quests = await _setup_test_db()
        async with TestSession() as session:
            entry = (await _three_requests(session, child, quests[:1]))[0]
            approved = await approve_entry(
                session,
                EntryKind.star_transaction,
                entry.id,
                mum,
                effective_date=date(2026, 5, 1),
            )
            assert approved.reviewed_at.date() == date(2026, 5, 1)

    asyncio.run(run())

    assert review_timestamp(date(2025, 12, 31)).date() == date(2025, 12, 31)


def test_batch_approve_redemptions_stops_at_credit_limit():
    async def run():
        TestSession, mum, _, child, _ = await _setup_test_db()
        async with TestSession() as session:
            reward = await create_reward(
                session, Reward(family_id=mum.family_id, name="Comic", stars_cost=10)
            )
            await create_parent_record(session, mum, child.id, stars=25, custom_description="Pocket money")
            ids = [
                (await create_redemption_request(session, child.id, reward.id)).id
                for _ in range(3)
            ]

            result = await batch_approve(session, EntryKind.redemption, ids, mum)
            assert result.succeeded == ids[:2]
            assert [(f.id, f.code) for f in result.failed] == [(ids[2], "insufficient_balance")]

            pending = await get_pending_entries(session, mum.family_id, EntryKind.redemption)
            assert [p.status for p in pending] == [EntryStatus.pending]
            assert (await get_balance(session, child.id)).current_stars == 5

    asyncio.run(run())


def test_batch_with_session_bound_reviewer_survives_a_failure():
    async def run():
        TestSession, mum, dad, child, quests = await _setup_test_db()
        async with TestSession() as session:
            entries = await _three_requests(session, child, quests)
            ids = [e.id for e in entries]
            await approve_entry(session, EntryKind.star_transaction, ids[0], dad)

            # Loaded in the same session, so a failed review expires it.
            reviewer = await session.get(Parent, mum.id)
            result = await batch_approve(session, EntryKind.star_transaction, ids, reviewer)
            assert result.succeeded == ids[1:]
            assert [(f.id, f.code) for f in result.failed] == [(ids[0], "already_reviewed")]

            reviewer = await session.get(Parent, mum.id)
            result = await batch_reject(session, EntryKind.star_transaction, ids, reviewer)
            assert result.succeeded == []
            assert {f.code for f in result.failed} == {"already_reviewed"}
            assert (await get_balance(session, child.id)).current_stars == 12

    asyncio.run(run())


def test_reviewer_snapshot():
    parent = Parent(id=7, name="Mum", email="m@example.com", password_hash="x", family_id=3)
    reviewer = Reviewer.of(parent)
    assert reviewer == Reviewer(id=7, family_id=3)
    assert Reviewer.of(reviewer) is reviewer


def test_store_failure_during_approval_is_a_storage_error(monkeypatch):
    async def broken_bump(*args, **kwargs):
        raise SQLAlchemyError("database is locked")

    monkeypatch.setattr(approvals_module, "bump_ledger_version", broken_bump)

    async def run():
        TestSession, mum, _, child, quests = await _setup_test_db()
        async with TestSession() as session:
            entry_id = (await _three_requests(session, child, quests[:1]))[0].id
            with pytest.raises(StorageError):
                await approve_entry(session, EntryKind.star_transaction, entry_id, mum)

            pending = await get_pending_entries(session, mum.family_id, EntryKind.star_transaction)
            assert [p.id for p in pending] == [entry_id]
            assert (await get_balance(session, child.id)).current_stars == 0

    asyncio.run(run())
