"""Wallet repository for the rat racer backend.

Wallets are created lazily with zeroed counters the first time an event
references an address.
"""

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ratracer.core.timezone import utcnow
from ratracer.models.wallet import Wallet
from ratracer.repositories.dialect import insert_ignore


class WalletRepository:
    """Repository for Wallet entities.

    List-valued columns (rat ids, race history) are read under a row lock
    (FOR UPDATE on PostgreSQL) before being rewritten. Counters use atomic
    increments.
    """

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def get(self, address: str) -> Wallet | None:
        """Retrieve wallet by checksummed address.

        Args:
            address: Wallet address

        Returns:
            Wallet if found, None otherwise
        """
        result = await self.session.execute(
            select(Wallet)
            .where(Wallet.address == address)  # type: ignore[arg-type]
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_or_create(self, address: str) -> Wallet:
        """Retrieve wallet, creating it with zeroed counters if absent.

        Uses INSERT ... ON CONFLICT (address) DO NOTHING, so concurrent
        first references to the same address never fail.

        Args:
            address: Wallet address

        Returns:
            Existing or newly created wallet
        """
        await insert_ignore(
            self.session,
            Wallet,
            {
                "address": address,
                "rat_ids": [],
                "race_history": [],
                "total_wins": 0,
                "total_races": 0,
                "created_at": utcnow(),
            },
            index_elements=["address"],
        )
        return await self._get_for_update(address)

    async def add_rat(self, address: str, token_id: int) -> Wallet:
        """Add a rat to the wallet's owned list (no-op if already present)."""
        wallet = await self.get_or_create(address)
        if token_id not in wallet.rat_ids:
            wallet.rat_ids = [*wallet.rat_ids, token_id]
            await self.session.flush()
        return wallet

    async def remove_rat(self, address: str, token_id: int) -> Wallet:
        """Remove a rat from the wallet's owned list (no-op if absent)."""
        wallet = await self.get_or_create(address)
        if token_id in wallet.rat_ids:
            wallet.rat_ids = [rid for rid in wallet.rat_ids if rid != token_id]
            await self.session.flush()
        return wallet

    async def record_race_entry(self, address: str, race_id: int) -> Wallet:
        """Append a race to the wallet's history (no-op if already present)."""
        wallet = await self.get_or_create(address)
        if race_id not in wallet.race_history:
            wallet.race_history = [*wallet.race_history, race_id]
            await self.session.flush()
        return wallet

    async def record_race_result(self, address: str, won: bool) -> None:
        """Count a finished race, and a win if ``won``.

        Args:
            address: Wallet address of the participant
            won: Whether this wallet's rat finished first
        """
        await self.get_or_create(address)
        await self.session.execute(
            update(Wallet)
            .where(Wallet.address == address)  # type: ignore[arg-type]
            .values(
                total_races=Wallet.total_races + 1,
                total_wins=Wallet.total_wins + (1 if won else 0),
            )
            .execution_options(synchronize_session=False)
        )

    async def _get_for_update(self, address: str) -> Wallet:
        result = await self.session.execute(
            select(Wallet)
            .where(Wallet.address == address)  # type: ignore[arg-type]
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()
