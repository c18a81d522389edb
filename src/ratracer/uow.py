"""Unit of Work for the rat racer backend.

A webhook delivery maps to exactly one unit of work: the handler's writes and
the idempotency ledger row share one transaction.
"""

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ratracer.repositories.processed_event import ProcessedEventRepository
from ratracer.repositories.race import RaceRepository
from ratracer.repositories.rat import RatRepository
from ratracer.repositories.wallet import WalletRepository

logger = structlog.get_logger()


class UnitOfWork:
    """One database transaction plus the repositories bound to it.

    Commits when the ``async with`` block exits cleanly and rolls back when it
    raises. The session is closed either way and the exception propagates.

    Example:
        async with await uow_factory() as uow:
            race = await uow.races.append_participant(race_id, racer, rat_token_id)
            await uow.wallets.record_race_entry(racer, race_id)
    """

    def __init__(self, session: AsyncSession):
        self.session = session

        self.rats = RatRepository(session)
        self.races = RaceRepository(session)
        self.wallets = WalletRepository(session)
        self.processed_events = ProcessedEventRepository(session)

    async def __aenter__(self) -> "UnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        try:
            if exc_type is not None:
                await self.session.rollback()
                logger.debug("transaction.rolled_back", exc_type=exc_type.__name__)
            else:
                await self.session.commit()
                logger.debug("transaction.committed")
        finally:
            await self.session.close()

        return False


def create_uow_factory(session_factory: async_sessionmaker[AsyncSession]):
    """Build an async factory that opens a fresh session per unit of work.

    Args:
        session_factory: Session factory from ``setup_db_session``

    Returns:
        Coroutine function returning a new UnitOfWork
    """

    async def _create_uow() -> UnitOfWork:
        return UnitOfWork(session_factory())

    return _create_uow
