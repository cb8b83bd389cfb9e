"""Quests children can ask stars for and rewards they can spend them on."""

from typing import Optional
from pydantic import BaseModel


class QuestCreate(BaseModel):
    name: str
    stars: int
    active: bool = True


class QuestRead(QuestCreate):
    id: int
    family_id: int

    class Config:
        from_attributes = True


class QuestUpdate(BaseModel):
    name: Optional[str] = None
    stars: Optional[int] = None
    active: Optional[bool] = None


class RewardCreate(BaseModel):
    name: str
    stars_cost: int
    active: bool = True


class RewardRead(RewardCreate):
    id: int
    family_id: int

    class Config:
        from_attributes = True


class RewardUpdate(BaseModel):
    name: Optional[str] = None
    stars_cost: Optional[int] = None
    active: Optional[bool] = None
