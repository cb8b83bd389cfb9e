"""Schemas for families, parent registration and login."""

from typing import Optional
from datetime import datetime
from pydantic import BaseModel, Field


class RegisterRequest(BaseModel):
    family_name: str
    name: str
    email: str
    password: str
    timezone: str = "UTC"


class ParentCreate(BaseModel):
    name: str
    email: str
    password: str


class ParentLogin(BaseModel):
    email: str
    password: str


class ParentRead(BaseModel):
    id: int
    family_id: int
    name: str
    email: str

    class Config:
        from_attributes = True


class FamilyRead(BaseModel):
    id: int
    name: str
    timezone: str
    settlement_day: int
    created_at: datetime

    class Config:
        from_attributes = True


class FamilyUpdate(BaseModel):
    name: Optional[str] = None
    timezone: Optional[str] = None
    settlement_day: Optional[int] = Field(default=None, ge=0, le=28)
