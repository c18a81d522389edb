"""Per-event-kind handlers.

Each handler applies one classified event to the store through the unit of
work in its context and returns the kind-specific response fields. Handlers
never commit; the processor owns the transaction.
"""

from dataclasses import dataclass

import structlog

from ratracer.core.config import Settings
from ratracer.core.timezone import utcnow
from ratracer.models.race import InvalidStateTransition, RaceStatus
from ratracer.models.rat import Rat
from ratracer.services.exceptions import BlobStorageError, ConflictError
from ratracer.services.metadata.blob_client import BlobStorageClient
from ratracer.services.metadata.generator import calculate_rarity_score, generate_rat_metadata
from ratracer.services.race_lifecycle import RaceLifecycleService
from ratracer.services.webhooks.events import ZERO_ADDRESS, ContractEvent, EventKind
from ratracer.services.webhooks.router import EventRouter
from ratracer.uow import UnitOfWork

logger = structlog.get_logger()

router = EventRouter()


@dataclass
class HandlerContext:
    """Collaborators available to a handler for one delivery."""

    uow: UnitOfWork
    settings: Settings
    blob_client: BlobStorageClient | None = None

    @property
    def races(self) -> RaceLifecycleService:
        return RaceLifecycleService(self.uow)


def _skip(reason: str, **fields) -> dict:
    return {"skipped": True, "reason": reason, **fields}


def _terminal_skip(error: InvalidStateTransition, race_id: int) -> dict:
    logger.info(
        "webhook.already_terminal",
        race_id=race_id,
        status=error.current.value,
        attempted=error.target.value,
    )
    return _skip("already_terminal", raceId=race_id, status=error.current.value)


@router.register(EventKind.RAT_MINTED)
async def handle_rat_minted(event: ContractEvent, ctx: HandlerContext) -> dict:
    """Generate metadata for a new rat, publish it and store the rat."""
    params = event.params
    metadata = generate_rat_metadata(
        token_id=params.token_id,
        owner=params.to,
        appearance_variant=params.image_index,
        born_at=event.envelope.timestamp,
        base_url=ctx.settings.public_url,
    )
    props = metadata.properties
    rarity_score = calculate_rarity_score(props.stats, props.speeds)

    metadata_url = None
    if ctx.blob_client is not None and ctx.blob_client.enabled:
        try:
            metadata_url = await ctx.blob_client.put_metadata(
                params.token_id, metadata.to_document()
            )
        except BlobStorageError as e:
            logger.warning(
                "blob.upload_failed",
                token_id=params.token_id,
                error=str(e),
                error_type=type(e).__name__,
            )
    else:
        logger.info("blob.upload_skipped", token_id=params.token_id, reason="not_configured")

    rat = await ctx.uow.rats.create_rat(
        Rat(
            token_id=params.token_id,
            owner=params.to,
            owner_block_number=event.envelope.block_number,
            owner_log_index=event.log_index,
            name=metadata.name,
            model_index=props.model_index,
            color=props.color,
            image_url=metadata.image,
            metadata_url=metadata_url,
            stats=props.stats.model_dump(),
            speeds=props.speeds,
            gender=props.gender,
            dob=props.dob,
            archetype=props.archetype,
            power_rating=props.power_rating,
            rarity_score=rarity_score,
            generation=props.breeding.generation,
            is_purebreed=props.breeding.is_purebreed,
        )
    )
    await ctx.uow.wallets.add_rat(params.to, params.token_id)

    logger.info(
        "rat.minted",
        token_id=rat.token_id,
        owner=rat.owner,
        bloodline=props.stats.bloodline,
        rarity_score=rarity_score,
    )
    return {
        "tokenId": rat.token_id,
        "owner": rat.owner,
        "metadata": {
            "url": metadata_url,
            "bloodline": props.stats.bloodline,
            "stats": rat.stats,
            "rarityScore": rarity_score,
        },
    }


@router.register(EventKind.TRANSFER)
async def handle_transfer(event: ContractEvent, ctx: HandlerContext) -> dict:
    """Move a rat to its new owner.

    Mints and burns are skipped, as are transfers older than the one that set
    the stored owner (the ledger still records them).
    """
    params = event.params

    if params.from_address == ZERO_ADDRESS:
        return _skip("mint_transfer", tokenId=params.token_id, transferType="mint")
    if params.to == ZERO_ADDRESS:
        return _skip("burn_transfer", tokenId=params.token_id, transferType="burn")

    change = await ctx.uow.rats.transfer_owner(
        params.token_id,
        params.to,
        block_number=event.envelope.block_number,
        log_index=event.log_index,
    )
    if change.stale:
        return _skip(
            "stale_transfer",
            tokenId=params.token_id,
            owner=change.rat.owner,
            transferType="transfer",
        )

    rat, previous_owner = change.rat, change.previous_owner
    if previous_owner not in (params.from_address, params.to):
        # Deliveries can arrive out of order; the chain is the source of truth.
        logger.warning(
            "rat.owner_mismatch",
            token_id=params.token_id,
            stored_owner=previous_owner,
            event_from=params.from_address,
        )

    if previous_owner != params.to:
        await ctx.uow.wallets.remove_rat(previous_owner, params.token_id)
    if params.from_address not in (previous_owner, params.to):
        await ctx.uow.wallets.remove_rat(params.from_address, params.token_id)
    await ctx.uow.wallets.add_rat(params.to, params.token_id)

    return {
        "tokenId": rat.token_id,
        "from": params.from_address,
        "to": rat.owner,
        "transferType": "transfer",
    }


@router.register(EventKind.RACE_CREATED)
async def handle_race_created(event: ContractEvent, ctx: HandlerContext) -> dict:
    params = event.params
    race = await ctx.races.create(
        race_id=params.race_id,
        creator=params.creator,
        track_id=params.track_id,
        entry_token=params.entry_token,
        entry_fee=params.entry_fee,
        tx_hash=event.tx_hash,
    )
    return {"raceId": race.race_id, "status": race.status.value}


@router.register(EventKind.RACER_ENTERED)
async def handle_racer_entered(event: ContractEvent, ctx: HandlerContext) -> dict:
    """Append the entrant; a repeated (race, rat) pair is a benign duplicate."""
    params = event.params
    entered_at = event.envelope.timestamp or utcnow()
    try:
        race = await ctx.races.enter(params.race_id, params.racer, params.rat_token_id, entered_at)
    except ConflictError as e:
        if e.reason != "duplicate_entry":
            raise
        logger.info(
            "race.duplicate_entry", race_id=params.race_id, rat_token_id=params.rat_token_id
        )
        return _skip("duplicate_entry", raceId=params.race_id)

    return {
        "raceId": race.race_id,
        "race": {
            "participantCount": race.participant_count,
            "status": race.status.value,
            "isFull": race.status == RaceStatus.FULL,
            "prizePool": race.prize_pool,
        },
    }


@router.register(EventKind.RACE_STARTED)
async def handle_race_started(event: ContractEvent, ctx: HandlerContext) -> dict:
    params = event.params
    try:
        race = await ctx.races.start(params.race_id, params.started_by, event.tx_hash)
    except InvalidStateTransition as e:
        if e.from_terminal:
            return _terminal_skip(e, params.race_id)
        if e.current == RaceStatus.RUNNING:
            return _skip("already_running", raceId=params.race_id)
        raise

    return {"raceId": race.race_id, "status": race.status.value}


@router.register(EventKind.RACE_CANCELLED)
async def handle_race_cancelled(event: ContractEvent, ctx: HandlerContext) -> dict:
    params = event.params
    try:
        race = await ctx.races.cancel(params.race_id, params.cancelled_by, event.tx_hash)
    except InvalidStateTransition as e:
        if e.from_terminal:
            return _terminal_skip(e, params.race_id)
        raise

    return {
        "raceId": race.race_id,
        "status": race.status.value,
        "releasedRats": race.rat_token_ids,
    }


@router.register(EventKind.RACE_FINISHED)
async def handle_race_finished(event: ContractEvent, ctx: HandlerContext) -> dict:
    params = event.params
    try:
        summary = await ctx.races.finish(
            params.race_id, params.winning_rat_token_ids, params.prizes, event.tx_hash
        )
    except InvalidStateTransition as e:
        if e.from_terminal:
            return _terminal_skip(e, params.race_id)
        raise

    race = summary.race
    return {
        "raceId": race.race_id,
        "status": race.status.value,
        "winner": race.winner,
        "results": race.results,
        "missingRats": summary.missing_rats,
    }
