"""Idempotency guard for at-least-once webhook delivery.

Ledger-keyed events (transfers and race lifecycle events after creation) are
recorded in the processed_events table inside the same transaction as the
state change they caused. Mints and race creation need no ledger row: the
unique rat token id and race id already make a second creation impossible.
"""

import structlog

from ratracer.models.processed_event import ProcessedEvent
from ratracer.services.exceptions import DuplicateEventError
from ratracer.services.webhooks.events import ContractEvent, EventKind
from ratracer.uow import UnitOfWork

logger = structlog.get_logger()


class IdempotencyGuard:
    """Checks and records whether an event's mutation has been applied."""

    def __init__(self, uow: UnitOfWork):
        """Initialize guard bound to the delivery's unit of work.

        Args:
            uow: Unit of work whose transaction also carries the mutation
        """
        self.uow = uow

    async def has_processed(self, event: ContractEvent) -> bool:
        """Check whether the event has already been applied.

        Args:
            event: Classified event

        Returns:
            True if a previous delivery already applied this event
        """
        if event.kind == EventKind.RAT_MINTED:
            return await self.uow.rats.exists(event.params.token_id)
        if event.kind == EventKind.RACE_CREATED:
            return await self.uow.races.exists(event.params.race_id)
        return await self.uow.processed_events.exists(event.natural_key)

    async def mark_processed(self, event: ContractEvent) -> None:
        """Record the event as applied, in the current transaction.

        Must be called after the mutation and before the unit of work commits.

        Args:
            event: Classified event

        Raises:
            DuplicateEventError: If a concurrent delivery recorded the same key
                first; the caller's transaction must roll back
        """
        if not event.uses_ledger:
            return

        recorded = await self.uow.processed_events.add(
            ProcessedEvent(
                event_key=event.natural_key,
                event_name=event.kind.value,
                tx_hash=event.tx_hash,
                log_index=event.log_index,
                block_number=event.envelope.block_number,
            )
        )
        if not recorded:
            logger.warning(
                "webhook.duplicate_race_lost",
                event_name=event.kind.value,
                event_key=event.natural_key,
            )
            raise DuplicateEventError(f"Event {event.natural_key} was already processed")
