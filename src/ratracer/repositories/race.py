"""Race repository for the rat racer backend.

Every status or roster change is a compare-and-set UPDATE guarded by the
race's ``version`` and ``status`` columns. A write that matches zero rows lost
a race against a concurrent writer; the race is re-read and the operation
re-validated against the fresh state before retrying.
"""

from datetime import datetime

import structlog
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ratracer.core.timezone import utcnow
from ratracer.models.race import TERMINAL_STATUSES, Race, RaceStatus, RatLock
from ratracer.repositories.dialect import insert_ignore
from ratracer.services.exceptions import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)

logger = structlog.get_logger()

MAX_CAS_ATTEMPTS = 10


class RaceRepository:
    """Repository for Race entities and rat locks."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def get(self, race_id: int) -> Race | None:
        """Retrieve race by on-chain race ID, always reading the current row.

        Args:
            race_id: On-chain race ID

        Returns:
            Race if found, None otherwise
        """
        result = await self.session.execute(
            select(Race)
            .where(Race.race_id == race_id)  # type: ignore[arg-type]
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def exists(self, race_id: int) -> bool:
        result = await self.session.execute(
            select(Race.race_id).where(Race.race_id == race_id)  # type: ignore[arg-type]
        )
        return result.first() is not None

    async def list_active(self) -> list[Race]:
        """Retrieve all non-terminal races, newest first."""
        result = await self.session.execute(
            select(Race)
            .where(Race.status.not_in(list(TERMINAL_STATUSES)))  # type: ignore[attr-defined]
            .order_by(Race.created_at.desc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())

    async def list_completed(self, limit: int = 10) -> list[Race]:
        """Retrieve the most recently completed races.

        Args:
            limit: Maximum number of races to return (default: 10)

        Returns:
            Completed races ordered by completion time (newest first)
        """
        result = await self.session.execute(
            select(Race)
            .where(Race.status == RaceStatus.COMPLETED)  # type: ignore[arg-type]
            .order_by(Race.completed_at.desc())  # type: ignore[union-attr]
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_by_ids(self, race_ids: list[int]) -> list[Race]:
        if not race_ids:
            return []
        result = await self.session.execute(
            select(Race)
            .where(Race.race_id.in_(race_ids))  # type: ignore[attr-defined]
            .order_by(Race.race_id.desc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())

    async def create_race(self, race: Race) -> Race:
        """Persist a newly created race.

        Args:
            race: Race entity in pending status

        Returns:
            The stored race

        Raises:
            ConflictError: If a race with this ID already exists
        """
        inserted = await insert_ignore(
            self.session, Race, race.model_dump(), index_elements=["race_id"]
        )
        if not inserted:
            raise ConflictError(f"Race {race.race_id} already exists", reason="race_exists")

        stored = await self.get(race.race_id)
        assert stored is not None
        return stored

    async def append_participant(
        self,
        race_id: int,
        wallet_address: str,
        rat_token_id: int,
        entered_at: datetime | None = None,
    ) -> Race:
        """Enter a rat into a pending race.

        The rat lock is taken first (unique primary key on rat_locks), then the
        participant is appended, the entry fee added to the prize pool and the
        status moved to ``full`` at capacity, all in one conditional UPDATE on
        the pre-update version and participant count. A failure anywhere rolls
        back the enclosing transaction, releasing the lock row with it.

        Args:
            race_id: On-chain race ID
            wallet_address: Checksummed address of the entrant
            rat_token_id: Token ID of the entered rat
            entered_at: Entry time (defaults to now)

        Returns:
            Race after the entry

        Raises:
            NotFoundError: If the race is unknown
            ConflictError: If this rat is already entered (``duplicate_entry``),
                the race is at capacity (``race_full``) or the rat is racing
                elsewhere (``rat_locked``)
            InvalidStateError: If the race is not pending
        """
        entered_at = entered_at or utcnow()
        lock_checked = False

        for attempt in range(1, MAX_CAS_ATTEMPTS + 1):
            race = await self.get(race_id)
            if race is None:
                raise NotFoundError(f"Race {race_id} not found", reason="race_not_found")

            if race.has_rat(rat_token_id):
                raise ConflictError(
                    f"Rat {rat_token_id} already entered race {race_id}",
                    reason="duplicate_entry",
                )
            if race.participant_count >= race.max_participants:
                raise ConflictError(
                    f"Race {race_id} already has {race.participant_count} participants",
                    reason="race_full",
                )
            if race.status != RaceStatus.PENDING:
                raise InvalidStateError(
                    f"Race {race_id} is {race.status.value}, entries require pending",
                    reason="race_not_pending",
                )

            if not lock_checked:
                await self._acquire_lock(rat_token_id, race_id)
                lock_checked = True

            new_count = race.participant_count + 1
            values: dict = {
                "participants": [
                    *race.participants,
                    {
                        "address": wallet_address,
                        "ratTokenId": rat_token_id,
                        "enteredAt": entered_at.isoformat(),
                    },
                ],
                "participant_count": new_count,
                "prize_pool": str(int(race.prize_pool) + int(race.entry_fee)),
            }
            if new_count >= race.max_participants:
                race.ensure_transition(RaceStatus.FULL)
                values["status"] = RaceStatus.FULL
                values["filled_at"] = utcnow()

            applied = await self._compare_and_set(
                race, Race.participant_count == race.participant_count, **values
            )
            if applied:
                logger.info(
                    "race.participant_added",
                    race_id=race_id,
                    rat_token_id=rat_token_id,
                    participant_count=new_count,
                )
                if new_count >= race.max_participants:
                    logger.info("race.full", race_id=race_id)
                updated = await self.get(race_id)
                assert updated is not None
                return updated

            logger.debug("race.cas_retry", race_id=race_id, attempt=attempt)

        raise ConflictError(
            f"Race {race_id} kept changing concurrently", reason="concurrent_update"
        )

    async def start_race(
        self, race_id: int, started_by: str | None = None, tx_hash: str | None = None
    ) -> Race:
        """Move a full race to running.

        Raises:
            NotFoundError: If the race is unknown
            InvalidStateTransition: Unless the race is full
        """
        return await self.transition(
            race_id,
            RaceStatus.RUNNING,
            started_by=started_by,
            start_tx_hash=tx_hash,
            started_at=utcnow(),
        )

    async def cancel_race(
        self, race_id: int, cancelled_by: str | None = None, tx_hash: str | None = None
    ) -> Race:
        """Cancel a pending or full race regardless of fill level.

        Raises:
            NotFoundError: If the race is unknown
            InvalidStateTransition: If the race is running or already terminal
        """
        race = await self.transition(
            race_id,
            RaceStatus.CANCELLED,
            cancelled_by=cancelled_by,
            settlement_tx_hash=tx_hash,
            cancelled_at=utcnow(),
        )
        await self.release_locks(race_id)
        return race

    async def finish_race(
        self,
        race_id: int,
        winner_token_ids: list[int],
        prizes: list[str],
        tx_hash: str | None = None,
    ) -> Race:
        """Complete a race with its finishing order.

        Args:
            race_id: On-chain race ID
            winner_token_ids: Rat token IDs in finishing order (1st first)
            prizes: Prize amounts (uint256 decimal strings) aligned with winners
            tx_hash: Settlement transaction hash

        Returns:
            Completed race with results and winner recorded

        Raises:
            NotFoundError: If the race is unknown
            InvalidStateTransition: If the race is already terminal
            ValidationError: If the winner list has duplicates, is longer than
                the roster, names rats that did not enter, or prizes do not align
        """
        if len(set(winner_token_ids)) != len(winner_token_ids):
            raise ValidationError(
                "Winner list contains duplicate rat ids", reason="duplicate_winner"
            )
        if prizes and len(prizes) != len(winner_token_ids):
            raise ValidationError("Prize list does not match winner list", reason="prize_mismatch")

        for attempt in range(1, MAX_CAS_ATTEMPTS + 1):
            race = await self.get(race_id)
            if race is None:
                raise NotFoundError(f"Race {race_id} not found", reason="race_not_found")
            race.ensure_transition(RaceStatus.COMPLETED)

            if len(winner_token_ids) > race.participant_count:
                raise ValidationError(
                    f"{len(winner_token_ids)} winners for {race.participant_count} participants",
                    reason="too_many_winners",
                )
            owners = {int(p["ratTokenId"]): p["address"] for p in race.participants}
            unknown = [tid for tid in winner_token_ids if tid not in owners]
            if unknown:
                raise ValidationError(
                    f"Rats {unknown} did not enter race {race_id}", reason="unknown_winner"
                )

            results = [
                {
                    "position": position,
                    "ratTokenId": token_id,
                    "owner": owners[token_id],
                    "prize": prizes[position - 1] if prizes else "0",
                }
                for position, token_id in enumerate(winner_token_ids, start=1)
            ]
            winner = (
                {k: results[0][k] for k in ("ratTokenId", "owner", "prize")} if results else None
            )

            applied = await self._compare_and_set(
                race,
                status=RaceStatus.COMPLETED,
                results=results,
                winner=winner,
                on_chain_prizes=list(prizes),
                settlement_tx_hash=tx_hash,
                completed_at=utcnow(),
            )
            if applied:
                await self.release_locks(race_id)
                updated = await self.get(race_id)
                assert updated is not None
                return updated

            logger.debug("race.cas_retry", race_id=race_id, attempt=attempt)

        raise ConflictError(
            f"Race {race_id} kept changing concurrently", reason="concurrent_update"
        )

    async def transition(self, race_id: int, target: RaceStatus, **values) -> Race:
        """Apply a status transition with compare-and-set semantics.

        Args:
            race_id: On-chain race ID
            target: Desired status
            **values: Additional columns to write with the transition

        Returns:
            Race after the transition

        Raises:
            NotFoundError: If the race is unknown
            InvalidStateTransition: If the transition table rejects the move
            ConflictError: If the row kept changing across all attempts
        """
        for attempt in range(1, MAX_CAS_ATTEMPTS + 1):
            race = await self.get(race_id)
            if race is None:
                raise NotFoundError(f"Race {race_id} not found", reason="race_not_found")
            race.ensure_transition(target)

            if await self._compare_and_set(race, status=target, **values):
                logger.info(
                    "race.transitioned",
                    race_id=race_id,
                    from_status=race.status.value,
                    to_status=target.value,
                )
                updated = await self.get(race_id)
                assert updated is not None
                return updated

            logger.debug("race.cas_retry", race_id=race_id, attempt=attempt)

        raise ConflictError(
            f"Race {race_id} kept changing concurrently", reason="concurrent_update"
        )

    async def get_lock(self, rat_token_id: int) -> RatLock | None:
        """Return the open-race lock held by a rat, if any."""
        result = await self.session.execute(
            select(RatLock)
            .where(RatLock.rat_token_id == rat_token_id)  # type: ignore[arg-type]
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def release_locks(self, race_id: int) -> int:
        """Release every rat lock held by a race.

        Returns:
            Number of locks released
        """
        result = await self.session.execute(
            delete(RatLock).where(RatLock.race_id == race_id)  # type: ignore[arg-type]
        )
        released = result.rowcount or 0  # type: ignore[attr-defined]
        logger.info("race.locks_released", race_id=race_id, count=released)
        return released

    async def _acquire_lock(self, rat_token_id: int, race_id: int) -> None:
        inserted = await insert_ignore(
            self.session,
            RatLock,
            {"rat_token_id": rat_token_id, "race_id": race_id, "locked_at": utcnow()},
            index_elements=["rat_token_id"],
        )
        if inserted:
            return

        lock = await self.get_lock(rat_token_id)
        if lock is not None and lock.race_id != race_id:
            raise ConflictError(
                f"Rat {rat_token_id} is already racing in race {lock.race_id}",
                reason="rat_locked",
            )

    async def _compare_and_set(self, race: Race, *conditions, **values) -> bool:
        """UPDATE the race only if nobody changed it since ``race`` was read."""
        result = await self.session.execute(
            update(Race)
            .where(
                Race.race_id == race.race_id,  # type: ignore[arg-type]
                Race.version == race.version,  # type: ignore[arg-type]
                Race.status == race.status,  # type: ignore[arg-type]
                *conditions,
            )
            .values(version=Race.version + 1, **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1  # type: ignore[attr-defined]
