"""Webhook envelope parsing and event classification.

Every delivery carries the same envelope (event name, parameters and
provenance fields). The parameters are a tagged union keyed on
``event_name``; each kind has its own pydantic model and is validated before
any handler runs.
"""

import json
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Optional

import structlog
from pydantic import AfterValidator, BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from web3 import Web3

from ratracer.services.exceptions import ValidationError

logger = structlog.get_logger()

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def _checksum(value: str) -> str:
    try:
        return Web3.to_checksum_address(value)
    except (ValueError, TypeError) as e:
        raise ValueError(f"Invalid Ethereum address: {value!r}") from e


Address = Annotated[str, AfterValidator(_checksum)]
Uint = Annotated[int, Field(ge=0)]
TxHash = Annotated[str, Field(pattern=r"^0x[0-9a-fA-F]{64}$")]


class EventKind(str, Enum):
    """Contract events the service reconciles, keyed by on-chain event name."""

    RAT_MINTED = "RatMinted"
    TRANSFER = "Transfer"
    RACE_CREATED = "RaceCreated"
    RACER_ENTERED = "RacerEntered"
    RACE_STARTED = "RaceStarted"
    RACE_CANCELLED = "RaceCancelled"
    RACE_FINISHED = "RaceFinished"


class WebhookEnvelope(BaseModel):
    """Generic delivery envelope shared by all event kinds."""

    model_config = ConfigDict(extra="allow")

    event_name: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    network: Optional[str] = None
    block_number: Optional[Uint] = None
    transaction_hash: Optional[TxHash] = None
    log_index: Optional[Uint] = None
    timestamp: Optional[datetime] = None
    contract_address: Optional[str] = None
    event_signature: Optional[str] = None
    transaction_from: Optional[str] = None
    transaction_to: Optional[str] = None


class _Parameters(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class RatMintedParams(_Parameters):
    to: Address
    token_id: Uint = Field(alias="tokenId")
    image_index: int = Field(alias="imageIndex", ge=0, le=2)


class TransferParams(_Parameters):
    from_address: Address = Field(alias="from")
    to: Address
    token_id: Uint = Field(alias="tokenId")


class RaceCreatedParams(_Parameters):
    race_id: Uint = Field(alias="raceId")
    creator: Address
    track_id: Uint = Field(alias="trackId")
    entry_token: Address = Field(alias="entryToken")
    entry_fee: Uint = Field(alias="entryFee")


class RacerEnteredParams(_Parameters):
    race_id: Uint = Field(alias="raceId")
    racer: Address
    rat_token_id: Uint = Field(alias="ratTokenId")


class RaceStartedParams(_Parameters):
    race_id: Uint = Field(alias="raceId")
    started_by: Address = Field(alias="startedBy")


class RaceCancelledParams(_Parameters):
    race_id: Uint = Field(alias="raceId")
    cancelled_by: Address = Field(alias="cancelledBy")


class RaceFinishedParams(_Parameters):
    race_id: Uint = Field(alias="raceId")
    winning_rat_token_ids: list[Uint] = Field(alias="winningRatTokenIds")
    prizes: list[Uint]
    winners: list[Address] = Field(default_factory=list)


EVENT_PARAMETERS: dict[EventKind, type[_Parameters]] = {
    EventKind.RAT_MINTED: RatMintedParams,
    EventKind.TRANSFER: TransferParams,
    EventKind.RACE_CREATED: RaceCreatedParams,
    EventKind.RACER_ENTERED: RacerEnteredParams,
    EventKind.RACE_STARTED: RaceStartedParams,
    EventKind.RACE_CANCELLED: RaceCancelledParams,
    EventKind.RACE_FINISHED: RaceFinishedParams,
}

# Kinds deduplicated through the processed-event ledger. Mint and race creation
# are keyed by the entity they create instead.
LEDGER_KINDS = frozenset(
    {
        EventKind.TRANSFER,
        EventKind.RACER_ENTERED,
        EventKind.RACE_STARTED,
        EventKind.RACE_CANCELLED,
        EventKind.RACE_FINISHED,
    }
)


@dataclass(frozen=True)
class ContractEvent:
    """A classified delivery: kind, raw envelope and validated parameters."""

    kind: EventKind
    envelope: WebhookEnvelope
    params: Any

    @property
    def tx_hash(self) -> str | None:
        return self.envelope.transaction_hash

    @property
    def log_index(self) -> int | None:
        return self.envelope.log_index

    @property
    def uses_ledger(self) -> bool:
        return self.kind in LEDGER_KINDS

    @property
    def natural_key(self) -> str:
        """Identity of the on-chain event, stable across redelivery.

        Mints are identified by token id and race creation by race id, since
        each can happen only once. Everything else is identified by its
        position in the chain (transaction hash and log index).
        """
        if self.kind == EventKind.RAT_MINTED:
            return f"mint:{self.params.token_id}"
        if self.kind == EventKind.RACE_CREATED:
            return f"race:{self.params.race_id}"
        return f"{(self.tx_hash or '').lower()}:{self.log_index}"


def _describe(error: PydanticValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(loc) for loc in err['loc']) or 'body'}: {err['msg']}"
        for err in error.errors()
    )


def parse_envelope(raw_body: bytes) -> WebhookEnvelope:
    """Parse the generic envelope from a verified request body.

    Args:
        raw_body: Request body bytes (already signature-verified)

    Returns:
        Parsed envelope

    Raises:
        ValidationError: If the body is not a JSON object or lacks event_name
    """
    try:
        payload = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ValidationError(f"Invalid JSON payload: {e}", reason="invalid_json") from e

    if not isinstance(payload, dict):
        raise ValidationError("Webhook payload must be a JSON object", reason="invalid_payload")

    try:
        return WebhookEnvelope.model_validate(payload)
    except PydanticValidationError as e:
        raise ValidationError(
            f"Malformed envelope: {_describe(e)}", reason="invalid_envelope"
        ) from e


def classify(envelope: WebhookEnvelope, expected: EventKind) -> ContractEvent | None:
    """Classify an envelope for an endpoint that serves one event kind.

    Args:
        envelope: Parsed envelope
        expected: Kind handled by the receiving endpoint

    Returns:
        Classified event, or None if the envelope carries a different event
        (not an error: the caller answers with a graceful skip)

    Raises:
        ValidationError: If the event matches but its parameters or
            provenance are malformed
    """
    if envelope.event_name != expected.value:
        return None

    try:
        params = EVENT_PARAMETERS[expected].model_validate(envelope.parameters)
    except PydanticValidationError as e:
        raise ValidationError(
            f"Invalid {expected.value} parameters: {_describe(e)}", reason="invalid_parameters"
        ) from e

    event = ContractEvent(kind=expected, envelope=envelope, params=params)

    if event.uses_ledger and (not event.tx_hash or event.log_index is None):
        raise ValidationError(
            f"{expected.value} requires transaction_hash and log_index", reason="missing_provenance"
        )

    if expected == EventKind.RACE_FINISHED and params.prizes and (
        len(params.prizes) != len(params.winning_rat_token_ids)
    ):
        raise ValidationError(
            "prizes must align with winningRatTokenIds", reason="invalid_parameters"
        )

    return event


def check_network(envelope: WebhookEnvelope, allowed: list[str]) -> None:
    """Reject envelopes from networks outside the allow-list.

    A missing network field is accepted; an empty allow-list accepts any.

    Raises:
        ValidationError: If the envelope names a network that is not allowed
    """
    if not allowed or envelope.network is None:
        return
    if envelope.network.lower() not in allowed:
        raise ValidationError(
            f"Network {envelope.network} is not accepted", reason="unsupported_network"
        )
