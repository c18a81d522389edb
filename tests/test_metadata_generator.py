"""Rat metadata generation and blob publishing tests."""

import json
import random
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from ratracer.services.exceptions import (
    BlobAuthError,
    BlobNetworkError,
    BlobRateLimitError,
    BlobStorageError,
    PermanentError,
    TransientError,
)
from ratracer.services.metadata.blob_client import BlobStorageClient, metadata_path
from ratracer.services.metadata.generator import (
    BLOODLINES,
    BLOODLINES_BY_NAME,
    FALLBACK_BIRTH_DATE,
    RatStats,
    calculate_archetype,
    calculate_power_rating,
    calculate_rarity_score,
    generate_rat_metadata,
    roll_bloodline,
)

OWNER = "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"
BORN = datetime(2026, 10, 18, 12, 0, 0, tzinfo=timezone.utc)


def _stats(stamina: int, agility: int, speed: int, bloodline: str = "Alley Cat") -> RatStats:
    return RatStats(stamina=stamina, agility=agility, speed=speed, bloodline=bloodline)


class TestGenerateRatMetadata:
    def test_deterministic_for_same_inputs(self):
        first = generate_rat_metadata(7, OWNER, 1, born_at=BORN)
        second = generate_rat_metadata(7, OWNER, 1, born_at=BORN)

        assert first.to_document() == second.to_document()

    def test_owner_case_does_not_change_roll(self):
        checksum = generate_rat_metadata(7, OWNER, 1, born_at=BORN)
        lower = generate_rat_metadata(7, OWNER.lower(), 1, born_at=BORN)

        assert checksum.properties.stats == lower.properties.stats
        assert checksum.properties.speeds == lower.properties.speeds

    def test_different_tokens_differ(self):
        documents = {
            json.dumps(generate_rat_metadata(t, OWNER, 0, born_at=BORN).properties.speeds)
            for t in range(1, 20)
        }

        assert len(documents) > 1

    def test_stats_within_bloodline_range(self):
        for token_id in range(1, 50):
            metadata = generate_rat_metadata(token_id, OWNER, token_id % 3, born_at=BORN)
            stats = metadata.properties.stats
            bloodline = BLOODLINES_BY_NAME[stats.bloodline]

            for value in (stats.stamina, stats.agility, stats.speed):
                assert bloodline.min_stats <= value <= bloodline.max_stats
            assert len(metadata.properties.speeds) == 5
            assert all(speed >= 0.5 for speed in metadata.properties.speeds)
            assert 0 <= metadata.properties.power_rating <= 100

    def test_appearance_variant_selects_color(self):
        colors = [
            generate_rat_metadata(1, OWNER, variant, born_at=BORN).properties.color
            for variant in (0, 1, 2)
        ]

        assert colors == ["brown", "pink", "white"]

    def test_document_shape(self):
        metadata = generate_rat_metadata(42, OWNER, 2, born_at=BORN, base_url="https://x.test/")
        document = metadata.to_document()

        assert document["name"] == "Street Rat #42"
        assert document["image"] == "https://x.test/images/white.png"
        assert document["external_url"] == "https://x.test/rat/42"
        assert document["properties"]["modelIndex"] == 2
        assert document["properties"]["breeding"]["generation"] == 0
        assert document["properties"]["breeding"]["isPurebreed"] is True
        assert "0x5aAe...eAed" in document["description"]

        traits = {attr["trait_type"]: attr["value"] for attr in document["attributes"]}
        assert traits["Bloodline"] == document["properties"]["stats"]["bloodline"]
        assert traits["Generation"] == 0
        assert traits["Born"] == int(BORN.timestamp())

    def test_dob_is_utc_without_microseconds(self):
        born = datetime(2026, 10, 18, 14, 30, 5, 123456, tzinfo=timezone.utc)

        dob = generate_rat_metadata(1, OWNER, 0, born_at=born).properties.dob

        assert dob == datetime(2026, 10, 18, 14, 30, 5, tzinfo=timezone.utc)
        assert dob.utcoffset() == timedelta(0)

    def test_naive_born_at_is_taken_as_utc(self):
        dob = generate_rat_metadata(1, OWNER, 0, born_at=datetime(2026, 10, 18, 9)).properties.dob

        assert dob == datetime(2026, 10, 18, 9, tzinfo=timezone.utc)

    def test_missing_born_at_uses_fixed_date(self):
        first = generate_rat_metadata(7, OWNER, 1)
        second = generate_rat_metadata(7, OWNER, 1)

        assert first.properties.dob == FALLBACK_BIRTH_DATE
        assert first.to_document() == second.to_document()


class TestBloodlines:
    def test_weights_sum_to_one(self):
        assert sum(b.rarity for b in BLOODLINES) == pytest.approx(1.0)

    def test_roll_distribution_favours_common(self):
        rng = random.Random(1234)
        rolls = [roll_bloodline(rng).name for _ in range(5000)]

        assert rolls.count("Speed Demon") < rolls.count("Alley Cat")
        assert set(rolls) == {b.name for b in BLOODLINES}


class TestDerivedStats:
    @pytest.mark.parametrize(
        "stats,expected",
        [
            ((70, 72, 74), "Balanced"),
            ((95, 60, 62), "Endurance Tank"),
            ((60, 62, 95), "Sprint Specialist"),
            ((60, 95, 62), "Technical Master"),
            ((50, 90, 85), "Glass Cannon"),
            ((60, 80, 85), "Versatile"),
        ],
    )
    def test_archetype(self, stats, expected):
        assert calculate_archetype(_stats(*stats)) == expected

    def test_power_rating_is_capped(self):
        assert calculate_power_rating(_stats(100, 100, 100), 1.12) == 100
        assert calculate_power_rating(_stats(60, 60, 60), 1.0) == 60

    def test_rarity_score(self):
        stats = _stats(60, 70, 80, bloodline="Speed Demon")

        # (100 + 70 + 1.1) / 3
        assert calculate_rarity_score(stats, [1.0, 1.1, 1.2]) == 57.03

    def test_rarity_score_accepts_stored_dict(self):
        stored = {"stamina": 60, "agility": 70, "speed": 80, "bloodline": "Unknown"}

        # unknown bloodline scores 50
        assert calculate_rarity_score(stored, []) == 40.0


class TestBlobStorageClient:
    def _client(self, handler) -> BlobStorageClient:
        return BlobStorageClient(
            token="blob-token",
            api_url="https://blob.test/",
            transport=httpx.MockTransport(handler),
        )

    @pytest.mark.asyncio
    async def test_put_metadata_uses_deterministic_path(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["url"] = str(request.url)
            seen["headers"] = request.headers
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"url": "https://cdn.test/rats/metadata/5.json"})

        url = await self._client(handler).put_metadata(5, {"name": "Street Rat #5"})

        assert url == "https://cdn.test/rats/metadata/5.json"
        assert seen["method"] == "PUT"
        assert seen["url"] == f"https://blob.test/{metadata_path(5)}"
        assert seen["headers"]["authorization"] == "Bearer blob-token"
        assert seen["headers"]["x-add-random-suffix"] == "0"
        assert seen["headers"]["x-allow-overwrite"] == "1"
        assert seen["body"] == {"name": "Street Rat #5"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status_code,error,base",
        [
            (429, BlobRateLimitError, TransientError),
            (503, BlobNetworkError, TransientError),
            (401, BlobAuthError, PermanentError),
            (403, BlobAuthError, PermanentError),
            (400, BlobStorageError, BlobStorageError),
        ],
    )
    async def test_error_classification(self, status_code, error, base):
        client = self._client(lambda request: httpx.Response(status_code, text="nope"))

        with pytest.raises(error) as exc_info:
            await client.put_metadata(1, {})
        assert isinstance(exc_info.value, base)

    @pytest.mark.asyncio
    async def test_network_failure(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(BlobNetworkError):
            await self._client(handler).put_metadata(1, {})

    @pytest.mark.asyncio
    async def test_missing_url_in_response(self):
        client = self._client(lambda request: httpx.Response(200, json={}))

        with pytest.raises(BlobStorageError):
            await client.put_metadata(1, {})

    def test_enabled_requires_token(self):
        assert BlobStorageClient(token="").enabled is False
        assert BlobStorageClient(token="t").enabled is True
