"""Race lifecycle orchestration.

Drives race status transitions through the repository's compare-and-set
writes and applies their side effects on rats and wallets in the same unit
of work.
"""

from dataclasses import dataclass, field
from datetime import datetime

import structlog

from ratracer.models.race import Race
from ratracer.models.rat import RaceOutcome, outcome_for_position
from ratracer.uow import UnitOfWork

logger = structlog.get_logger()


@dataclass
class FinishSummary:
    """Outcome of settling a race."""

    race: Race
    outcomes: dict[int, RaceOutcome] = field(default_factory=dict)
    missing_rats: list[int] = field(default_factory=list)


class RaceLifecycleService:
    """Applies race lifecycle events inside one unit of work."""

    def __init__(self, uow: UnitOfWork):
        """Initialize service.

        Args:
            uow: Unit of work for the current delivery
        """
        self.uow = uow

    async def create(
        self,
        race_id: int,
        creator: str,
        track_id: int,
        entry_token: str,
        entry_fee: int,
        tx_hash: str | None = None,
        created_at: datetime | None = None,
    ) -> Race:
        """Create a pending race and record it in the creator's wallet.

        Raises:
            ConflictError: If the race already exists
        """
        race = Race(
            race_id=race_id,
            creator=creator,
            track_id=track_id,
            entry_token=entry_token,
            entry_fee=str(entry_fee),
            created_tx_hash=tx_hash,
        )
        if created_at is not None:
            race.created_at = created_at

        stored = await self.uow.races.create_race(race)
        await self.uow.wallets.get_or_create(creator)
        logger.info("race.created", race_id=race_id, creator=creator, entry_fee=str(entry_fee))
        return stored

    async def enter(
        self,
        race_id: int,
        racer: str,
        rat_token_id: int,
        entered_at: datetime | None = None,
    ) -> Race:
        """Enter a rat into a pending race.

        The rat is locked to the race by token id. A later transfer of the rat
        does not change the entry.

        Raises:
            NotFoundError: If the race is unknown
            ConflictError: On duplicate entry, full race or locked rat
            InvalidStateError: If the race is not pending
        """
        race = await self.uow.races.append_participant(race_id, racer, rat_token_id, entered_at)
        await self.uow.wallets.record_race_entry(racer, race_id)
        return race

    async def start(
        self, race_id: int, started_by: str | None = None, tx_hash: str | None = None
    ) -> Race:
        """Mark a full race as running.

        Raises:
            NotFoundError: If the race is unknown
            InvalidStateTransition: Unless the race is full
        """
        return await self.uow.races.start_race(race_id, started_by=started_by, tx_hash=tx_hash)

    async def cancel(
        self, race_id: int, cancelled_by: str | None = None, tx_hash: str | None = None
    ) -> Race:
        """Cancel a pending or full race and free its rats.

        Raises:
            NotFoundError: If the race is unknown
            InvalidStateTransition: If the race is running or already terminal
        """
        race = await self.uow.races.cancel_race(
            race_id, cancelled_by=cancelled_by, tx_hash=tx_hash
        )
        logger.info(
            "race.cancelled",
            race_id=race_id,
            cancelled_by=cancelled_by,
            participant_count=race.participant_count,
        )
        return race

    async def finish(
        self,
        race_id: int,
        winner_token_ids: list[int],
        prizes: list[int],
        tx_hash: str | None = None,
    ) -> FinishSummary:
        """Settle a race: record results, free rats, update rat and wallet records.

        Positions follow ``winner_token_ids`` (1st wins, 2nd and 3rd place).
        Participants absent from the list finished out of the places and take
        a loss. Rats missing from the store (mint not yet delivered) are
        skipped and reported.

        Raises:
            NotFoundError: If the race is unknown
            InvalidStateTransition: If the race is already terminal
            ValidationError: If the winner list is inconsistent with the roster
        """
        race = await self.uow.races.finish_race(
            race_id, winner_token_ids, [str(p) for p in prizes], tx_hash=tx_hash
        )

        summary = FinishSummary(race=race)
        positions = {token_id: pos for pos, token_id in enumerate(winner_token_ids, start=1)}
        winner_token_id = winner_token_ids[0] if winner_token_ids else None

        for participant in race.participants:
            token_id = int(participant["ratTokenId"])
            position = positions.get(token_id)
            outcome = outcome_for_position(position) if position else RaceOutcome.LOSS
            summary.outcomes[token_id] = outcome

            rat = await self.uow.rats.apply_race_result(token_id, outcome)
            if rat is None:
                summary.missing_rats.append(token_id)

            await self.uow.wallets.record_race_result(
                participant["address"], won=token_id == winner_token_id
            )

        logger.info(
            "race.finished",
            race_id=race_id,
            winner=winner_token_id,
            participants=len(race.participants),
            missing_rats=summary.missing_rats,
        )
        return summary

