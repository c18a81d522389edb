"""Rat repository for the rat racer backend.

Provides data access methods for Rat entities: idempotent creation keyed by
token id, ownership transfer and atomic race-record increments.
"""

from dataclasses import dataclass

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ratracer.models.rat import XP_AWARDS, RaceOutcome, Rat, compute_level
from ratracer.repositories.dialect import insert_ignore
from ratracer.repositories.race import MAX_CAS_ATTEMPTS
from ratracer.services.exceptions import ConflictError, NotFoundError

logger = structlog.get_logger()


@dataclass
class OwnerChange:
    """Result of applying a Transfer to a stored rat."""

    rat: Rat
    previous_owner: str
    stale: bool = False


class RatRepository:
    """Repository for Rat entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def get_by_token_id(self, token_id: int, refresh: bool = False) -> Rat | None:
        """Retrieve rat by on-chain token ID.

        Args:
            token_id: On-chain token ID (unique)
            refresh: Overwrite any cached instance with the current row

        Returns:
            Rat if found, None otherwise
        """
        stmt = select(Rat).where(Rat.token_id == token_id)  # type: ignore[arg-type]
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def exists(self, token_id: int) -> bool:
        """Check whether a rat with this token ID has been minted."""
        result = await self.session.execute(
            select(Rat.id).where(Rat.token_id == token_id)  # type: ignore[arg-type]
        )
        return result.first() is not None

    async def list_by_owner(self, owner: str) -> list[Rat]:
        """Retrieve all rats owned by an address, ordered by token ID."""
        result = await self.session.execute(
            select(Rat)
            .where(Rat.owner == owner)  # type: ignore[arg-type]
            .order_by(Rat.token_id.asc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())

    async def list_by_token_ids(self, token_ids: list[int]) -> list[Rat]:
        if not token_ids:
            return []
        result = await self.session.execute(
            select(Rat).where(Rat.token_id.in_(token_ids))  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())

    async def create_rat(self, rat: Rat) -> Rat:
        """Persist a newly minted rat.

        Uses INSERT ... ON CONFLICT (token_id) DO NOTHING so two concurrent
        deliveries of the same mint cannot both create the rat.

        Args:
            rat: Rat entity built from generated metadata

        Returns:
            The stored rat

        Raises:
            ConflictError: If a rat with this token ID already exists
        """
        inserted = await insert_ignore(
            self.session, Rat, rat.model_dump(), index_elements=["token_id"]
        )
        if not inserted:
            raise ConflictError(f"Rat {rat.token_id} already exists", reason="rat_exists")

        stored = await self.get_by_token_id(rat.token_id)
        assert stored is not None
        return stored

    async def transfer_owner(
        self,
        token_id: int,
        new_owner: str,
        block_number: int | None = None,
        log_index: int | None = None,
    ) -> OwnerChange:
        """Move a rat to a new owner unless a later transfer already applied.

        Deliveries can arrive out of order. The chain position of the event
        that set the current owner is stored with the rat; a transfer at or
        before that position is stale and leaves the rat untouched. The write
        is conditional on the owner and position read, so two concurrent
        transfers cannot both apply from the same starting point.

        Args:
            token_id: On-chain token ID
            new_owner: Checksummed recipient address
            block_number: Block of the Transfer event (None if unknown)
            log_index: Log index of the Transfer event (None if unknown)

        Returns:
            OwnerChange with the current rat, the owner before this call and
            whether the transfer was stale

        Raises:
            NotFoundError: If the token has not been minted in the store yet
            ConflictError: If the row kept changing across all attempts
        """
        for attempt in range(1, MAX_CAS_ATTEMPTS + 1):
            rat = await self.get_by_token_id(token_id, refresh=True)
            if rat is None:
                raise NotFoundError(f"Rat {token_id} not found", reason="rat_not_found")

            previous_owner = rat.owner
            if not rat.is_newer_position(block_number, log_index):
                logger.info(
                    "rat.transfer_stale",
                    token_id=token_id,
                    owner=previous_owner,
                    owner_block=rat.owner_block_number,
                    event_block=block_number,
                    event_log_index=log_index,
                )
                return OwnerChange(rat=rat, previous_owner=previous_owner, stale=True)

            values: dict = {"owner": new_owner}
            if block_number is not None:
                values.update(owner_block_number=block_number, owner_log_index=log_index)

            result = await self.session.execute(
                update(Rat)
                .where(
                    Rat.token_id == token_id,  # type: ignore[arg-type]
                    Rat.owner == previous_owner,  # type: ignore[arg-type]
                    Rat.owner_block_number.is_not_distinct_from(  # type: ignore[union-attr]
                        rat.owner_block_number
                    ),
                    Rat.owner_log_index.is_not_distinct_from(  # type: ignore[union-attr]
                        rat.owner_log_index
                    ),
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:  # type: ignore[attr-defined]
                rat = await self.get_by_token_id(token_id, refresh=True)
                assert rat is not None
                if previous_owner != new_owner:
                    logger.info(
                        "rat.transferred",
                        token_id=token_id,
                        from_owner=previous_owner,
                        to_owner=new_owner,
                        block_number=block_number,
                    )
                return OwnerChange(rat=rat, previous_owner=previous_owner)

            logger.debug("rat.cas_retry", token_id=token_id, attempt=attempt)

        raise ConflictError(
            f"Rat {token_id} kept changing concurrently", reason="concurrent_update"
        )

    async def apply_race_result(self, token_id: int, outcome: RaceOutcome) -> Rat | None:
        """Record one race outcome for a rat.

        Counters and XP are incremented in a single UPDATE so concurrent
        settlements cannot lose an increment; the level is then recomputed
        from the updated row.

        Args:
            token_id: On-chain token ID
            outcome: Win, placed or loss

        Returns:
            Updated rat, or None if the rat is not in the store
        """
        counter = {
            RaceOutcome.WIN: Rat.wins,
            RaceOutcome.PLACED: Rat.placed,
            RaceOutcome.LOSS: Rat.losses,
        }[outcome]

        result = await self.session.execute(
            update(Rat)
            .where(Rat.token_id == token_id)  # type: ignore[arg-type]
            .values({counter: counter + 1, Rat.xp: Rat.xp + XP_AWARDS[outcome]})
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:  # type: ignore[attr-defined]
            logger.warning("rat.result_skipped", token_id=token_id, reason="rat_not_found")
            return None

        rat = await self.get_by_token_id(token_id, refresh=True)
        assert rat is not None
        level = compute_level(rat.wins, rat.placed)
        if level != rat.level:
            await self.session.execute(
                update(Rat)
                .where(Rat.token_id == token_id)  # type: ignore[arg-type]
                .values(level=level)
                .execution_options(synchronize_session=False)
            )
            rat = await self.get_by_token_id(token_id, refresh=True)
            logger.info("rat.level_up", token_id=token_id, level=level)

        return rat
