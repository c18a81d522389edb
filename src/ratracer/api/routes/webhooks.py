"""Hook0 webhook endpoints for rat racer contract events.

Each contract event kind has its own endpoint. Every endpoint verifies the
Hook0 signature (via dependency) before anything else, then hands the raw
body to the WebhookProcessor, which applies the event inside a single unit
of work.

HTTP Status Codes:
    200: Event applied, skipped (unexpected event, terminal race) or duplicate
    400: Missing signature header or malformed payload
    401: Invalid signature
    404: Referenced entity not in the store yet (sender retries)
    409: Race full, rat locked, race not pending or invalid transition
    500: Storage or configuration failure (sender retries)
"""

from fastapi import APIRouter, Depends

from ratracer.api.dependencies import get_event_processor, validate_webhook_signature
from ratracer.services.webhooks.events import EventKind
from ratracer.services.webhooks.processor import WebhookProcessor


router = APIRouter(prefix="/api", tags=["webhooks"])


@router.post("/rat-mint")
async def rat_mint(
    raw_body: bytes = Depends(validate_webhook_signature),
    processor: WebhookProcessor = Depends(get_event_processor),
):
    """Store a newly minted rat and publish its metadata.

    Response 200:
        {"success": true, "tokenId": 42, "owner": "0x...",
         "metadata": {"url": ..., "bloodline": ..., "stats": {...}, "rarityScore": 63.5}}
    """
    return await processor.process(EventKind.RAT_MINTED, raw_body)


@router.post("/rat-transfer")
async def rat_transfer(
    raw_body: bytes = Depends(validate_webhook_signature),
    processor: WebhookProcessor = Depends(get_event_processor),
):
    """Move a rat to its new owner. Mint and burn transfers are skipped."""
    return await processor.process(EventKind.TRANSFER, raw_body)


@router.post("/race-created")
async def race_created(
    raw_body: bytes = Depends(validate_webhook_signature),
    processor: WebhookProcessor = Depends(get_event_processor),
):
    return await processor.process(EventKind.RACE_CREATED, raw_body)


@router.post("/racer-entered")
async def racer_entered(
    raw_body: bytes = Depends(validate_webhook_signature),
    processor: WebhookProcessor = Depends(get_event_processor),
):
    """Enter a rat into a pending race.

    Answers 409 when the race is already full, is no longer pending or the
    rat is entered in another open race.
    """
    return await processor.process(EventKind.RACER_ENTERED, raw_body)


@router.post("/race-started")
async def race_started(
    raw_body: bytes = Depends(validate_webhook_signature),
    processor: WebhookProcessor = Depends(get_event_processor),
):
    return await processor.process(EventKind.RACE_STARTED, raw_body)


@router.post("/race-cancelled")
async def race_cancelled(
    raw_body: bytes = Depends(validate_webhook_signature),
    processor: WebhookProcessor = Depends(get_event_processor),
):
    """Cancel a race and release its rats. A terminal race is a no-op."""
    return await processor.process(EventKind.RACE_CANCELLED, raw_body)


@router.post("/race-finished")
async def race_finished(
    raw_body: bytes = Depends(validate_webhook_signature),
    processor: WebhookProcessor = Depends(get_event_processor),
):
    """Settle a race: results, winner, rat records and wallet totals.

    A race that was already cancelled or completed is a no-op.
    """
    return await processor.process(EventKind.RACE_FINISHED, raw_body)
