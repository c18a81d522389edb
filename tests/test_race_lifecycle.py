"""Race lifecycle service tests.

Covers the side effects of each lifecycle step on rats and wallets, applied
through one unit of work per step.
"""

import pytest
from conftest import ENTRY_TOKEN, OWNER_A, make_rat, wallet

from ratracer.models.race import InvalidStateTransition, RaceStatus
from ratracer.models.rat import RaceOutcome
from ratracer.services.race_lifecycle import RaceLifecycleService

FINISH_ORDER = [7, 3, 9, 1, 5, 2]


async def _create_full_race(uow_factory, race_id: int = 1, mint: bool = True):
    async with await uow_factory() as uow:
        service = RaceLifecycleService(uow)
        await service.create(race_id, OWNER_A, 2, ENTRY_TOKEN, 10**18, tx_hash="0xcreate")
        for token_id in FINISH_ORDER:
            if mint:
                await uow.rats.create_rat(make_rat(token_id, owner=wallet(token_id)))
            await service.enter(race_id, wallet(token_id), token_id)


class TestRaceLifecycleService:
    @pytest.mark.asyncio
    async def test_create_registers_creator_wallet(self, uow_factory):
        async with await uow_factory() as uow:
            race = await RaceLifecycleService(uow).create(
                1, OWNER_A, 2, ENTRY_TOKEN, 5 * 10**17, tx_hash="0xcreate"
            )

        assert race.status == RaceStatus.PENDING
        assert race.entry_fee == str(5 * 10**17)
        assert race.created_tx_hash == "0xcreate"

        async with await uow_factory() as uow:
            assert await uow.wallets.get(OWNER_A) is not None

    @pytest.mark.asyncio
    async def test_enter_records_wallet_history(self, uow_factory):
        await _create_full_race(uow_factory)

        async with await uow_factory() as uow:
            race = await uow.races.get(1)
            entrant = await uow.wallets.get(wallet(7))

        assert race.status == RaceStatus.FULL
        assert race.prize_pool == str(6 * 10**18)
        assert entrant.race_history == [1]

    @pytest.mark.asyncio
    async def test_finish_applies_outcomes(self, uow_factory):
        await _create_full_race(uow_factory)

        async with await uow_factory() as uow:
            summary = await RaceLifecycleService(uow).finish(
                1, FINISH_ORDER, [300, 200, 100, 0, 0, 0], tx_hash="0xsettle"
            )

        assert summary.missing_rats == []
        assert summary.outcomes == {
            7: RaceOutcome.WIN,
            3: RaceOutcome.PLACED,
            9: RaceOutcome.PLACED,
            1: RaceOutcome.LOSS,
            5: RaceOutcome.LOSS,
            2: RaceOutcome.LOSS,
        }

        async with await uow_factory() as uow:
            winner = await uow.rats.get_by_token_id(7)
            second = await uow.rats.get_by_token_id(3)
            last = await uow.rats.get_by_token_id(2)
            winner_wallet = await uow.wallets.get(wallet(7))
            loser_wallet = await uow.wallets.get(wallet(2))
            race = await uow.races.get(1)

        assert (winner.wins, winner.xp) == (1, 100)
        assert (second.placed, second.xp) == (1, 50)
        assert (last.losses, last.xp) == (1, 10)
        assert (winner_wallet.total_wins, winner_wallet.total_races) == (1, 1)
        assert (loser_wallet.total_wins, loser_wallet.total_races) == (0, 1)
        assert race.winner == {"ratTokenId": 7, "owner": wallet(7), "prize": "300"}

    @pytest.mark.asyncio
    async def test_finish_with_partial_order_counts_rest_as_losses(self, uow_factory):
        await _create_full_race(uow_factory)

        async with await uow_factory() as uow:
            summary = await RaceLifecycleService(uow).finish(1, [5, 2], [])

        assert summary.outcomes[5] == RaceOutcome.WIN
        assert summary.outcomes[2] == RaceOutcome.PLACED
        assert summary.outcomes[7] == RaceOutcome.LOSS
        assert summary.race.results[0]["prize"] == "0"

    @pytest.mark.asyncio
    async def test_finish_reports_unminted_rats(self, uow_factory):
        await _create_full_race(uow_factory, mint=False)

        async with await uow_factory() as uow:
            summary = await RaceLifecycleService(uow).finish(1, FINISH_ORDER, [])

        assert sorted(summary.missing_rats) == sorted(FINISH_ORDER)
        assert summary.race.status == RaceStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_cancelled_race_cannot_finish(self, uow_factory):
        await _create_full_race(uow_factory)

        async with await uow_factory() as uow:
            race = await RaceLifecycleService(uow).cancel(1, cancelled_by=OWNER_A)
        assert race.status == RaceStatus.CANCELLED

        with pytest.raises(InvalidStateTransition) as exc_info:
            async with await uow_factory() as uow:
                await RaceLifecycleService(uow).finish(1, FINISH_ORDER, [])
        assert exc_info.value.from_terminal

        async with await uow_factory() as uow:
            rat = await uow.rats.get_by_token_id(7)
        assert rat.wins == 0

    @pytest.mark.asyncio
    async def test_start_then_finish(self, uow_factory):
        await _create_full_race(uow_factory)

        async with await uow_factory() as uow:
            race = await RaceLifecycleService(uow).start(1, started_by=OWNER_A, tx_hash="0xgo")
        assert race.status == RaceStatus.RUNNING

        async with await uow_factory() as uow:
            summary = await RaceLifecycleService(uow).finish(1, FINISH_ORDER, [])
        assert summary.race.status == RaceStatus.COMPLETED
