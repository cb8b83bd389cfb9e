"""Payloads for reviewing pending entries."""

from typing import Optional
from datetime import date
from pydantic import BaseModel, Field


class ApproveRequest(BaseModel):
    effective_date: Optional[date] = None


class RejectRequest(BaseModel):
    reason: Optional[str] = None


class BatchApproveRequest(ApproveRequest):
    ids: list[int] = Field(min_length=1)


class BatchRejectRequest(RejectRequest):
    ids: list[int] = Field(min_length=1)


class BatchFailureRead(BaseModel):
    id: int
    code: str
    message: str

    class Config:
        from_attributes = True


class BatchResultRead(BaseModel):
    succeeded: list[int]
    failed: list[BatchFailureRead]

    class Config:
        from_attributes = True
