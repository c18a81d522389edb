"""Race read endpoints."""

from fastapi import APIRouter, Depends, Path, Query

from ratracer.api.dependencies import get_uow_factory
from ratracer.services.exceptions import NotFoundError


router = APIRouter(prefix="/api/races", tags=["races"])


@router.get("")
async def list_races(
    completed_limit: int = Query(default=10, ge=0, le=100, alias="completedLimit"),
    uow_factory=Depends(get_uow_factory),
):
    """List open races and the most recently completed ones.

    Response 200:
        {"success": true, "active": [...], "completed": [...]}
    """
    async with await uow_factory() as uow:
        active = await uow.races.list_active()
        completed = await uow.races.list_completed(limit=completed_limit)

    return {
        "success": True,
        "active": [race.to_public_dict() for race in active],
        "completed": [race.to_public_dict() for race in completed],
    }


@router.get("/{race_id}")
async def get_race(
    race_id: int = Path(..., ge=0),
    uow_factory=Depends(get_uow_factory),
):
    async with await uow_factory() as uow:
        race = await uow.races.get(race_id)

    if race is None:
        raise NotFoundError(f"Race {race_id} not found", reason="race_not_found")

    return {"success": True, "race": race.to_public_dict()}
