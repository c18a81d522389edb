"""Rat read endpoints."""

from fastapi import APIRouter, Depends, Path

from ratracer.api.dependencies import get_uow_factory
from ratracer.services.exceptions import NotFoundError


router = APIRouter(prefix="/api/rats", tags=["rats"])


@router.get("/{token_id}")
async def get_rat(
    token_id: int = Path(..., ge=0, description="On-chain token ID"),
    uow_factory=Depends(get_uow_factory),
):
    """Get a rat by token ID.

    Returns 404 until the rat's mint event has been processed.
    """
    async with await uow_factory() as uow:
        rat = await uow.rats.get_by_token_id(token_id)

    if rat is None:
        raise NotFoundError(f"Rat {token_id} not found", reason="rat_not_found")

    return {"success": True, "rat": rat.to_public_dict()}
