import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth import get_current_identity, get_current_parent
from ..crud import commit, create_reward, get_reward, get_rewards_by_family
from ..database import get_session
from ..errors import NotFound, ValidationError
from ..models import Child, Parent, Reward
from ..schemas import RewardCreate, RewardRead, RewardUpdate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/rewards", tags=["rewards"])


@router.post("/", response_model=RewardRead)
async def add_reward(
    data: RewardCreate,
    db: AsyncSession = Depends(get_session),
    parent: Parent = Depends(get_current_parent),
):
    reward = await create_reward(db, Reward(family_id=parent.family_id, **data.model_dump()))
    logger.info("Reward %s created by parent %s", reward.id, parent.id)
    return reward


@router.get("/", response_model=list[RewardRead])
async def list_rewards(
    db: AsyncSession = Depends(get_session),
    identity: tuple[str, Child | Parent] = Depends(get_current_identity),
):
    _, obj = identity
    rewards = await get_rewards_by_family(db, obj.family_id)
    if isinstance(obj, Child):
        rewards = [r for r in rewards if r.active]
    return rewards


@router.put("/{reward_id}", response_model=RewardRead)
async def update_reward(
    reward_id: int,
    data: RewardUpdate,
    db: AsyncSession = Depends(get_session),
    parent: Parent = Depends(get_current_parent),
):
    reward = await get_reward(db, reward_id)
    if not reward or reward.family_id != parent.family_id:
        raise NotFound("Reward not found")
    if data.stars_cost is not None and data.stars_cost <= 0:
        raise ValidationError("stars_cost must be greater than zero")
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(reward, field, value)
    db.add(reward)
    await commit(db)
    await db.refresh(reward)
    logger.info("Reward %s updated by parent %s", reward_id, parent.id)
    return reward
