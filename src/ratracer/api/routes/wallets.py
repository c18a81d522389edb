"""Wallet read endpoints."""

from fastapi import APIRouter, Depends
from web3 import Web3

from ratracer.api.dependencies import get_uow_factory
from ratracer.services.exceptions import NotFoundError, ValidationError


router = APIRouter(prefix="/api/wallets", tags=["wallets"])


@router.get("/{address}")
async def get_wallet(address: str, uow_factory=Depends(get_uow_factory)):
    """Get a wallet's record, the rats it owns and the races it entered.

    The address is accepted in any case and normalized to checksum form.
    """
    try:
        address = Web3.to_checksum_address(address)
    except (ValueError, TypeError) as e:
        raise ValidationError(
            f"Invalid Ethereum address: {address}", reason="invalid_address"
        ) from e

    async with await uow_factory() as uow:
        wallet = await uow.wallets.get(address)
        if wallet is None:
            raise NotFoundError(f"Wallet {address} not found", reason="wallet_not_found")
        rats = await uow.rats.list_by_owner(address)
        races = await uow.races.list_by_ids(wallet.race_history)

    return {
        "success": True,
        "wallet": wallet.to_public_dict(),
        "rats": [rat.to_public_dict() for rat in rats],
        "races": [race.to_public_dict() for race in races],
    }
