from fastapi import APIRouter, Depends

from app.core.deps import get_store
from app.engine.achievements import ACHIEVEMENTS, get_unlocked_achievements
from app.services.store import WorkoutStore

router = APIRouter(prefix="/achievements", tags=["achievements"])


@router.get("")
async def list_achievements(store: WorkoutStore = Depends(get_store)):
    unlocked = await get_unlocked_achievements(store)
    return {
        "unlocked": unlocked,
        "total": len(ACHIEVEMENTS),
    }


@router.get("/catalog")
async def achievement_catalog():
    return [
        {"id": a.id, "name": a.name, "description": a.description, "icon": a.icon}
        for a in ACHIEVEMENTS
    ]
