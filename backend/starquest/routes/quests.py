import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth import get_current_identity, get_current_parent
from ..crud import commit, create_quest, get_quest, get_quests_by_family
from ..database import get_session
from ..errors import NotFound
from ..models import Child, Parent, Quest
from ..schemas import QuestCreate, QuestRead, QuestUpdate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/quests", tags=["quests"])


@router.post("/", response_model=QuestRead)
async def add_quest(
    data: QuestCreate,
    db: AsyncSession = Depends(get_session),
    parent: Parent = Depends(get_current_parent),
):
    quest = await create_quest(db, Quest(family_id=parent.family_id, **data.model_dump()))
    logger.info("Quest %s created by parent %s", quest.id, parent.id)
    return quest


@router.get("/", response_model=list[QuestRead])
async def list_quests(
    db: AsyncSession = Depends(get_session),
    identity: tuple[str, Child | Parent] = Depends(get_current_identity),
):
    _, obj = identity
    quests = await get_quests_by_family(db, obj.family_id)
    if isinstance(obj, Child):
        quests = [q for q in quests if q.active]
    return quests


@router.put("/{quest_id}", response_model=QuestRead)
async def update_quest(
    quest_id: int,
    data: QuestUpdate,
    db: AsyncSession = Depends(get_session),
    parent: Parent = Depends(get_current_parent),
):
    quest = await get_quest(db, quest_id)
    if not quest or quest.family_id != parent.family_id:
        raise NotFound("Quest not found")
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(quest, field, value)
    db.add(quest)
    await commit(db)
    await db.refresh(quest)
    logger.info("Quest %s updated by parent %s", quest_id, parent.id)
    return quest
