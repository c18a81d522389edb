"""Envelope parsing, classification and routing tests."""

import json

import pytest

from ratracer.services.exceptions import ValidationError
from ratracer.services.webhooks.events import (
    EventKind,
    check_network,
    classify,
    parse_envelope,
)
from ratracer.services.webhooks.handlers import router
from ratracer.services.webhooks.router import EventRouter

LOWER_OWNER = "0x5aaeb6053f3e94c9b9a09f33669435e7ef1beaed"
CHECKSUM_OWNER = "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"
TX_HASH = "0x" + "ABCDEF01" * 8


def _body(event_name: str, parameters: dict, **extra) -> bytes:
    payload = {
        "event_name": event_name,
        "parameters": parameters,
        "transaction_hash": TX_HASH,
        "log_index": 3,
        "network": "base-sepolia",
        **extra,
    }
    return json.dumps(payload).encode("utf-8")


class TestParseEnvelope:
    def test_invalid_json(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_envelope(b"{not json")
        assert exc_info.value.reason == "invalid_json"
        assert exc_info.value.status_code == 400

    def test_non_object_payload(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_envelope(b"[1, 2, 3]")
        assert exc_info.value.reason == "invalid_payload"

    def test_missing_event_name(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_envelope(b'{"parameters": {}}')
        assert exc_info.value.reason == "invalid_envelope"

    @pytest.mark.parametrize("tx_hash", ["0xABCDEF", "ab" * 32, "0x" + "zz" * 32, "0x" + "a" * 65])
    def test_malformed_transaction_hash(self, tx_hash):
        with pytest.raises(ValidationError) as exc_info:
            parse_envelope(_body("Transfer", {}, transaction_hash=tx_hash))
        assert exc_info.value.reason == "invalid_envelope"

    def test_unknown_fields_are_kept(self):
        envelope = parse_envelope(_body("Transfer", {}, delivery_id="abc"))

        assert envelope.event_name == "Transfer"
        assert envelope.log_index == 3
        assert envelope.model_extra == {"delivery_id": "abc"}


class TestClassify:
    def test_unexpected_event_returns_none(self):
        envelope = parse_envelope(_body("Transfer", {}))

        assert classify(envelope, EventKind.RAT_MINTED) is None

    def test_rat_minted_normalizes_address_and_numbers(self):
        envelope = parse_envelope(
            _body("RatMinted", {"to": LOWER_OWNER, "tokenId": "42", "imageIndex": "2"})
        )

        event = classify(envelope, EventKind.RAT_MINTED)

        assert event is not None
        assert event.params.to == CHECKSUM_OWNER
        assert event.params.token_id == 42
        assert event.params.image_index == 2
        assert event.natural_key == "mint:42"
        assert event.uses_ledger is False

    def test_invalid_address_rejected(self):
        envelope = parse_envelope(
            _body("RatMinted", {"to": "0x123", "tokenId": 1, "imageIndex": 0})
        )

        with pytest.raises(ValidationError) as exc_info:
            classify(envelope, EventKind.RAT_MINTED)
        assert exc_info.value.reason == "invalid_parameters"

    def test_image_index_out_of_range(self):
        envelope = parse_envelope(
            _body("RatMinted", {"to": LOWER_OWNER, "tokenId": 1, "imageIndex": 3})
        )

        with pytest.raises(ValidationError):
            classify(envelope, EventKind.RAT_MINTED)

    def test_negative_token_id_rejected(self):
        envelope = parse_envelope(
            _body("RatMinted", {"to": LOWER_OWNER, "tokenId": -1, "imageIndex": 0})
        )

        with pytest.raises(ValidationError):
            classify(envelope, EventKind.RAT_MINTED)

    def test_transfer_uses_from_alias(self):
        envelope = parse_envelope(
            _body("Transfer", {"from": LOWER_OWNER, "to": LOWER_OWNER, "tokenId": 7})
        )

        event = classify(envelope, EventKind.TRANSFER)

        assert event.params.from_address == CHECKSUM_OWNER
        assert event.natural_key == f"{TX_HASH.lower()}:3"
        assert event.uses_ledger is True

    def test_ledger_kind_requires_provenance(self):
        body = json.dumps(
            {
                "event_name": "RaceStarted",
                "parameters": {"raceId": 1, "startedBy": LOWER_OWNER},
            }
        ).encode()

        with pytest.raises(ValidationError) as exc_info:
            classify(parse_envelope(body), EventKind.RACE_STARTED)
        assert exc_info.value.reason == "missing_provenance"

    def test_race_created_key_is_race_id(self):
        envelope = parse_envelope(
            _body(
                "RaceCreated",
                {
                    "raceId": 9,
                    "creator": LOWER_OWNER,
                    "trackId": 1,
                    "entryToken": LOWER_OWNER,
                    "entryFee": "1000000000000000000",
                },
            )
        )

        event = classify(envelope, EventKind.RACE_CREATED)

        assert event.natural_key == "race:9"
        assert event.params.entry_fee == 10**18

    def test_race_finished_prizes_must_align(self):
        envelope = parse_envelope(
            _body("RaceFinished", {"raceId": 1, "winningRatTokenIds": [1, 2], "prizes": [5]})
        )

        with pytest.raises(ValidationError):
            classify(envelope, EventKind.RACE_FINISHED)

    def test_race_finished_without_prizes(self):
        envelope = parse_envelope(
            _body("RaceFinished", {"raceId": 1, "winningRatTokenIds": [1, 2], "prizes": []})
        )

        event = classify(envelope, EventKind.RACE_FINISHED)

        assert event.params.winning_rat_token_ids == [1, 2]


class TestCheckNetwork:
    def test_allowed_network(self):
        check_network(parse_envelope(_body("Transfer", {})), ["base-sepolia"])

    def test_missing_network_accepted(self):
        envelope = parse_envelope(json.dumps({"event_name": "Transfer"}).encode())

        check_network(envelope, ["base-mainnet"])

    def test_empty_allow_list_accepts_any(self):
        check_network(parse_envelope(_body("Transfer", {}, network="ethereum")), [])

    def test_other_network_rejected(self):
        envelope = parse_envelope(_body("Transfer", {}, network="ethereum-mainnet"))

        with pytest.raises(ValidationError) as exc_info:
            check_network(envelope, ["base-mainnet", "base-sepolia"])
        assert exc_info.value.reason == "unsupported_network"


class TestEventRouter:
    def test_every_kind_has_a_handler(self):
        assert set(router.kinds) == set(EventKind)

    def test_duplicate_registration_rejected(self):
        local = EventRouter()

        @local.register(EventKind.TRANSFER)
        async def first(event, ctx):
            return {}

        with pytest.raises(ValueError):

            @local.register(EventKind.TRANSFER)
            async def second(event, ctx):
                return {}

    def test_unregistered_kind_is_lookup_error(self):
        with pytest.raises(LookupError):
            EventRouter().handler_for(EventKind.RACE_STARTED)

    @pytest.mark.asyncio
    async def test_dispatch_calls_handler(self):
        local = EventRouter()
        seen = []

        @local.register(EventKind.RACE_STARTED)
        async def handle(event, ctx):
            seen.append((event, ctx))
            return {"ok": True}

        envelope = parse_envelope(_body("RaceStarted", {"raceId": 1, "startedBy": LOWER_OWNER}))
        event = classify(envelope, EventKind.RACE_STARTED)

        assert await local.dispatch(event, "ctx") == {"ok": True}
        assert seen == [(event, "ctx")]
