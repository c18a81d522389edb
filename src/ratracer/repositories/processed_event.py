"""ProcessedEvent repository for the idempotency ledger."""

from sqlalchemy import exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from ratracer.models.processed_event import ProcessedEvent
from ratracer.repositories.dialect import insert_ignore


class ProcessedEventRepository:
    """Repository for the write-once processed event ledger."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def exists(self, event_key: str) -> bool:
        """Check if an event key is already recorded.

        Args:
            event_key: Natural key of the event (e.g. "<tx_hash>:<log_index>")

        Returns:
            True if the event has been processed, False otherwise
        """
        result = await self.session.execute(
            select(exists().where(ProcessedEvent.event_key == event_key))  # type: ignore[arg-type]
        )
        return bool(result.scalar())

    async def get(self, event_key: str) -> ProcessedEvent | None:
        result = await self.session.execute(
            select(ProcessedEvent).where(
                ProcessedEvent.event_key == event_key  # type: ignore[arg-type]
            )
        )
        return result.scalar_one_or_none()

    async def add(self, event: ProcessedEvent) -> bool:
        """Record a processed event.

        Uses INSERT ... ON CONFLICT (event_key) DO NOTHING; the unique key is
        what makes two concurrent deliveries of one event mutually exclusive.

        Args:
            event: Ledger entry to record

        Returns:
            True if recorded, False if the key was already present
        """
        return await insert_ignore(
            self.session, ProcessedEvent, event.model_dump(), index_elements=["event_key"]
        )
