"""Request and response models for star transactions and redemptions."""

from typing import Optional
from datetime import datetime
from pydantic import BaseModel

from ..models import CreditTransactionType, EntryStatus, TransactionSource


class StarRequestCreate(BaseModel):
    quest_id: int
    note: Optional[str] = None


class StarRecordCreate(BaseModel):
    child_id: int
    quest_id: Optional[int] = None
    custom_description: Optional[str] = None
    stars: Optional[int] = None
    note: Optional[str] = None


class StarTransactionRead(BaseModel):
    id: int
    family_id: int
    child_id: int
    quest_id: Optional[int] = None
    custom_description: Optional[str] = None
    stars: int
    source: TransactionSource
    status: EntryStatus
    child_note: Optional[str] = None
    parent_response: Optional[str] = None
    created_by: int
    reviewed_by: Optional[int] = None
    reviewed_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class RedemptionCreate(BaseModel):
    reward_id: int
    note: Optional[str] = None


class RedemptionRead(BaseModel):
    id: int
    family_id: int
    child_id: int
    reward_id: int
    stars_spent: int
    status: EntryStatus
    child_note: Optional[str] = None
    parent_response: Optional[str] = None
    uses_credit: bool
    credit_amount: int
    created_by: Optional[int] = None
    reviewed_by: Optional[int] = None
    reviewed_at: Optional[datetime] = None
    fulfilled_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class CreditTransactionRead(BaseModel):
    id: int
    child_id: int
    redemption_id: Optional[int] = None
    settlement_id: Optional[int] = None
    type: CreditTransactionType
    amount: int
    balance_after: int
    created_at: datetime

    class Config:
        from_attributes = True


class HistoryResponse(BaseModel):
    star_transactions: list[StarTransactionRead]
    redemptions: list[RedemptionRead]
    credit_transactions: list[CreditTransactionRead]
