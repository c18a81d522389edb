"""Webhook delivery processing.

One delivery runs as: parse envelope, classify for the receiving endpoint,
check network, then inside a single unit of work check idempotency, dispatch
to the kind's handler and record the event as processed. The handler's state
changes and the ledger row commit together or not at all.
"""

from typing import Any, Callable

import structlog
from sqlalchemy.exc import SQLAlchemyError

from ratracer.core.config import Settings
from ratracer.services.exceptions import ConflictError, DuplicateEventError, StorageError
from ratracer.services.idempotency import IdempotencyGuard
from ratracer.services.metadata.blob_client import BlobStorageClient
from ratracer.services.webhooks.events import (
    ContractEvent,
    EventKind,
    check_network,
    classify,
    parse_envelope,
)
from ratracer.services.webhooks.handlers import HandlerContext
from ratracer.services.webhooks.handlers import router as default_router
from ratracer.services.webhooks.router import EventRouter

logger = structlog.get_logger()

# Creation conflicts raised when a concurrent delivery of the same mint or
# race creation committed first.
_ENTITY_EXISTS_REASONS = frozenset({"rat_exists", "race_exists"})


def _duplicate(event: ContractEvent) -> dict:
    return {
        "success": True,
        "skipped": True,
        "reason": "duplicate",
        "message": "Event already processed",
        "eventKey": event.natural_key,
    }


class WebhookProcessor:
    """Applies verified webhook deliveries to the store."""

    def __init__(
        self,
        uow_factory: Callable[[], Any],
        settings: Settings,
        blob_client: BlobStorageClient | None = None,
        router: EventRouter | None = None,
    ):
        """Initialize processor.

        Args:
            uow_factory: Async factory returning a new UnitOfWork
            settings: Application settings
            blob_client: Metadata storage client (None disables uploads)
            router: Event router (defaults to the registered handlers)
        """
        self.uow_factory = uow_factory
        self.settings = settings
        self.blob_client = blob_client
        self.router = router or default_router

    async def process(self, expected: EventKind, raw_body: bytes) -> dict:
        """Process one verified delivery for the endpoint serving ``expected``.

        Args:
            expected: Event kind handled by the receiving endpoint
            raw_body: Signature-verified request body

        Returns:
            Response body (always ``success: true``; skips carry ``skipped``
            and ``reason``)

        Raises:
            ValidationError: Malformed envelope or parameters (400)
            NotFoundError: Referenced entity is unknown (404)
            ConflictError: Mutation collides with existing state (409)
            InvalidStateError: Operation not allowed in current status (409)
            StorageError: Database failure (500)
        """
        envelope = parse_envelope(raw_body)
        logger.info(
            "webhook.received",
            route=expected.value,
            event_name=envelope.event_name,
            tx_hash=envelope.transaction_hash,
            log_index=envelope.log_index,
            network=envelope.network,
        )

        event = classify(envelope, expected)
        if event is None:
            logger.info(
                "webhook.skipped",
                route=expected.value,
                event_name=envelope.event_name,
                reason="unexpected_event",
            )
            return {
                "success": True,
                "skipped": True,
                "reason": "unexpected_event",
                "message": f"Expected {expected.value}, got {envelope.event_name}",
            }

        check_network(envelope, self.settings.allowed_networks_list)

        try:
            async with await self.uow_factory() as uow:
                guard = IdempotencyGuard(uow)
                if await guard.has_processed(event):
                    logger.info(
                        "webhook.duplicate",
                        event_name=event.kind.value,
                        event_key=event.natural_key,
                    )
                    return _duplicate(event)

                ctx = HandlerContext(uow=uow, settings=self.settings, blob_client=self.blob_client)
                result = await self.router.dispatch(event, ctx)
                await guard.mark_processed(event)
        except DuplicateEventError:
            return _duplicate(event)
        except ConflictError as e:
            if e.reason not in _ENTITY_EXISTS_REASONS:
                raise
            logger.info(
                "webhook.duplicate",
                event_name=event.kind.value,
                event_key=event.natural_key,
                reason=e.reason,
            )
            return _duplicate(event)
        except SQLAlchemyError as e:
            logger.error(
                "webhook.storage_error",
                event_name=event.kind.value,
                tx_hash=event.tx_hash,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise StorageError(f"Failed to store event: {e}") from e

        if result.get("skipped"):
            logger.info(
                "webhook.skipped",
                event_name=event.kind.value,
                event_key=event.natural_key,
                reason=result.get("reason"),
            )
        else:
            logger.info(
                "webhook.processed",
                event_name=event.kind.value,
                event_key=event.natural_key,
                tx_hash=event.tx_hash,
            )
        return {"success": True, **result}
