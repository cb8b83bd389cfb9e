"""Schemas for credit settings, interest tiers and settlements."""

from typing import Optional
from datetime import date, datetime
from pydantic import BaseModel, Field


class CreditSettingsRead(BaseModel):
    child_id: int
    credit_enabled: bool
    credit_limit: int
    original_credit_limit: int
    updated_at: datetime

    class Config:
        from_attributes = True


class CreditSettingsUpdate(BaseModel):
    credit_enabled: Optional[bool] = None
    credit_limit: Optional[int] = None


class InterestTierIn(BaseModel):
    tier_order: int
    min_debt: int
    max_debt: Optional[int] = None
    interest_rate: float


class InterestTierRead(InterestTierIn):
    id: int

    class Config:
        from_attributes = True


class InterestTierTable(BaseModel):
    tiers: list[InterestTierIn] = Field(min_length=1)


class InterestBreakdownItem(BaseModel):
    tier_order: int
    min_debt: int
    max_debt: Optional[int] = None
    interest_rate: float
    debt_in_tier: int
    interest_amount: int


class SettlementRead(BaseModel):
    id: int
    child_id: int
    settlement_date: date
    balance_before: int
    debt_amount: int
    interest_calculated: int
    interest_breakdown: list[InterestBreakdownItem]
    credit_limit_before: int
    credit_limit_after: int
    credit_limit_adjustment: int
    settled_at: datetime

    class Config:
        from_attributes = True


class SettlementRunRequest(BaseModel):
    settlement_date: Optional[date] = None
    child_id: Optional[int] = None


class SettlementRunResponse(BaseModel):
    settlement_date: date
    processed_count: int
    settlements: list[SettlementRead]
    skipped: list[int]
    errors: list[str]

    class Config:
        from_attributes = True
