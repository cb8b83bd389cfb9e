from pydantic import BaseModel


class BalanceRead(BaseModel):
    child_id: int
    current_stars: int
    lifetime_stars: int
    credit_enabled: bool
    credit_limit: int
    original_credit_limit: int
    credit_used: int
    available_credit: int
    spendable_stars: int

    class Config:
        from_attributes = True


class ReconcileResponse(BaseModel):
    balance: BalanceRead
    cache_matched: bool
