"""Database models used by the StarQuest ledger.

The models are defined with SQLModel (built on SQLAlchemy and Pydantic)
and represent families, parents, children, the star ledger and the credit
facility. Comments are kept concise to avoid distracting from the field
definitions.
"""

from enum import Enum
from typing import Optional, List
from datetime import datetime, date, timezone
from sqlmodel import SQLModel, Field, Relationship
from sqlalchemy import Column, JSON, UniqueConstraint


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every datetime column is stored in."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class EntryStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    fulfilled = "fulfilled"


class TransactionSource(str, Enum):
    parent_record = "parent_record"
    child_request = "child_request"


class CreditTransactionType(str, Enum):
    credit_used = "credit_used"
    credit_repaid = "credit_repaid"
    interest_charged = "interest_charged"


class EntryKind(str, Enum):
    """Reviewable ledger entry kinds, as used in URLs and batch payloads."""

    star_transaction = "star_transaction"
    redemption = "redemption"


class Family(SQLModel, table=True):
    """Household owning children, quests, rewards and credit policy."""
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    timezone: str = "UTC"  # IANA name, defines the calendar day for the guard
    settlement_day: int = 0  # 1-28, or 0 for the last day of the month
    created_at: datetime = Field(default_factory=utcnow)

    parents: List["Parent"] = Relationship(back_populates="family")
    children: List["Child"] = Relationship(back_populates="family")


class Parent(SQLModel, table=True):
    """Adult family member allowed to record and review entries."""
    id: Optional[int] = Field(default=None, primary_key=True)
    family_id: int = Field(foreign_key="family.id", index=True)
    name: str
    email: str = Field(unique=True, index=True)
    password_hash: str
    created_at: datetime = Field(default_factory=utcnow)

    family: Family = Relationship(back_populates="parents")


class Child(SQLModel, table=True):
    """Child earning and spending stars."""
    id: Optional[int] = Field(default=None, primary_key=True)
    family_id: int = Field(foreign_key="family.id", index=True)
    name: str
    access_code: str = Field(unique=True)
    # Bumped on every balance-affecting write; keys the ChildBalance cache.
    ledger_version: int = 0
    created_at: datetime = Field(default_factory=utcnow)

    family: Family = Relationship(back_populates="children")


class Quest(SQLModel, table=True):
    """Chore or behaviour with a default star value (negative for deductions)."""
    id: Optional[int] = Field(default=None, primary_key=True)
    family_id: int = Field(foreign_key="family.id", index=True)
    name: str
    stars: int
    active: bool = True


class Reward(SQLModel, table=True):
    """Something a child can spend stars on."""
    id: Optional[int] = Field(default=None, primary_key=True)
    family_id: int = Field(foreign_key="family.id", index=True)
    name: str
    stars_cost: int
    active: bool = True


class StarTransaction(SQLModel, table=True):
    """Signed star delta, either recorded by a parent or requested by a child."""

    id: Optional[int] = Field(default=None, primary_key=True)
    family_id: int = Field(foreign_key="family.id", index=True)
    child_id: int = Field(foreign_key="child.id", index=True)
    quest_id: Optional[int] = Field(default=None, foreign_key="quest.id")
    custom_description: Optional[str] = None
    stars: int
    source: TransactionSource
    status: EntryStatus = EntryStatus.pending
    child_note: Optional[str] = None
    parent_response: Optional[str] = None
    created_by: int  # parent id for records, child id for requests
    reviewed_by: Optional[int] = Field(default=None, foreign_key="parent.id")
    reviewed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow, index=True)


class Redemption(SQLModel, table=True):
    """Reward redemption; ``stars_spent`` is positive and applied negatively."""

    id: Optional[int] = Field(default=None, primary_key=True)
    family_id: int = Field(foreign_key="family.id", index=True)
    child_id: int = Field(foreign_key="child.id", index=True)
    reward_id: int = Field(foreign_key="reward.id")
    stars_spent: int
    status: EntryStatus = EntryStatus.pending
    child_note: Optional[str] = None
    parent_response: Optional[str] = None
    uses_credit: bool = False
    credit_amount: int = 0
    created_by: Optional[int] = None  # parent id for parent-initiated redemptions
    reviewed_by: Optional[int] = Field(default=None, foreign_key="parent.id")
    reviewed_at: Optional[datetime] = None
    fulfilled_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow, index=True)


class CreditTransaction(SQLModel, table=True):
    """Accounting record for the credit facility. Never reviewed or mutated."""

    id: Optional[int] = Field(default=None, primary_key=True)
    family_id: int = Field(foreign_key="family.id", index=True)
    child_id: int = Field(foreign_key="child.id", index=True)
    redemption_id: Optional[int] = Field(default=None, foreign_key="redemption.id")
    settlement_id: Optional[int] = Field(
        default=None, foreign_key="creditsettlement.id"
    )
    type: CreditTransactionType
    amount: int
    balance_after: int  # outstanding debt after this transaction
    created_at: datetime = Field(default_factory=utcnow)


class ChildCreditSettings(SQLModel, table=True):
    """Per-child credit facility configuration."""
    id: Optional[int] = Field(default=None, primary_key=True)
    family_id: int = Field(foreign_key="family.id", index=True)
    child_id: int = Field(foreign_key="child.id", unique=True)
    credit_limit: int = 0
    original_credit_limit: int = 0
    credit_enabled: bool = False
    updated_at: datetime = Field(default_factory=utcnow)


class CreditInterestTier(SQLModel, table=True):
    """Debt range ``[min_debt, max_debt)`` charged at ``interest_rate``."""
    id: Optional[int] = Field(default=None, primary_key=True)
    family_id: int = Field(foreign_key="family.id", index=True)
    tier_order: int
    min_debt: int
    max_debt: Optional[int] = None  # None means unbounded
    interest_rate: float


class CreditSettlement(SQLModel, table=True):
    """Immutable result of settling one child's debt for one period."""

    __table_args__ = (UniqueConstraint("child_id", "settlement_date"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    family_id: int = Field(foreign_key="family.id", index=True)
    child_id: int = Field(foreign_key="child.id", index=True)
    settlement_date: date
    balance_before: int
    debt_amount: int
    interest_calculated: int
    interest_breakdown: List[dict] = Field(sa_column=Column(JSON), default_factory=list)
    credit_limit_before: int
    credit_limit_after: int
    credit_limit_adjustment: int
    settled_at: datetime = Field(default_factory=utcnow)


class ChildBalance(SQLModel, table=True):
    """Materialised balance cache; always rebuildable from the ledger tables."""

    child_id: int = Field(foreign_key="child.id", primary_key=True)
    current_stars: int = 0
    lifetime_stars: int = 0
    credit_used: int = 0
    ledger_version: int = 0
    updated_at: datetime = Field(default_factory=utcnow)
