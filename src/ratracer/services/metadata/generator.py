"""Deterministic rat metadata generation.

Each rat gets a bloodline (weighted rarity tier), three core stats drawn from
the bloodline's range, an archetype derived from the stat spread and a
five-segment speed profile used to animate races. All random rolls come from
a ``random.Random`` seeded with the mint parameters, so redelivering the same
mint yields the same rat.

The output document is OpenSea-compatible ERC721 metadata.
"""

import hashlib
import math
import random
from dataclasses import dataclass
from datetime import datetime, timezone

from pydantic import BaseModel, Field

from ratracer.core.timezone import as_utc

SEGMENTS = 5
RAT_COLORS = ("brown", "pink", "white")

# Date of birth used when the mint event carries no block timestamp
FALLBACK_BIRTH_DATE = datetime(2025, 1, 1, tzinfo=timezone.utc)
DEFAULT_BASE_URL = "https://rat-racer.vercel.app"


@dataclass(frozen=True)
class Perk:
    type: str
    condition: str
    bonus: float


@dataclass(frozen=True)
class Bloodline:
    """A rarity tier with its stat range and race-segment strengths."""

    name: str
    rarity: float
    base_multiplier: float
    min_stats: int
    max_stats: int
    variance: float
    description: str
    segment_modifiers: tuple[float, ...]
    perk: Perk
    rarity_score: int
    background_color: str


# Rarer bloodlines have higher stat floors but no bloodline is best on every
# segment of the track.
BLOODLINES: tuple[Bloodline, ...] = (
    Bloodline(
        name="Speed Demon",
        rarity=0.05,
        base_multiplier=1.12,
        min_stats=75,
        max_stats=100,
        variance=0.03,
        description="Pure speed, consistent performance",
        segment_modifiers=(1.18, 1.15, 1.12, 1.10, 1.08),
        perk=Perk("leader_boost", "when_leading", 0.08),
        rarity_score=100,
        background_color="1a1a1a",
    ),
    Bloodline(
        name="Underground Elite",
        rarity=0.10,
        base_multiplier=1.08,
        min_stats=70,
        max_stats=95,
        variance=0.04,
        description="Tactical specialist, dominates mid-race",
        segment_modifiers=(1.02, 1.08, 1.15, 1.18, 1.08),
        perk=Perk("midrace_surge", "segments_3_4", 0.15),
        rarity_score=85,
        background_color="2d2d2d",
    ),
    Bloodline(
        name="Street Runner",
        rarity=0.20,
        base_multiplier=1.06,
        min_stats=65,
        max_stats=90,
        variance=0.05,
        description="Explosive starts, early game dominance",
        segment_modifiers=(1.20, 1.15, 1.05, 1.00, 0.98),
        perk=Perk("first_segment_king", "segment_1", 0.18),
        rarity_score=70,
        background_color="3a3a3a",
    ),
    Bloodline(
        name="City Slicker",
        rarity=0.25,
        base_multiplier=1.04,
        min_stats=60,
        max_stats=85,
        variance=0.06,
        description="Balanced and reliable, rewards smart stat builds",
        segment_modifiers=(1.06, 1.06, 1.06, 1.06, 1.06),
        perk=Perk("balance_bonus", "balanced_stats", 0.12),
        rarity_score=55,
        background_color="4a4a4a",
    ),
    Bloodline(
        name="Alley Cat",
        rarity=0.25,
        base_multiplier=1.03,
        min_stats=55,
        max_stats=80,
        variance=0.07,
        description="Comeback specialist, thrives under pressure",
        segment_modifiers=(0.98, 1.00, 1.05, 1.10, 1.15),
        perk=Perk("comeback_king", "when_behind", 0.14),
        rarity_score=40,
        background_color="4a4a4a",
    ),
    Bloodline(
        name="Sewer Dweller",
        rarity=0.15,
        base_multiplier=1.02,
        min_stats=50,
        max_stats=75,
        variance=0.08,
        description="Chaos agent, unpredictable with huge upside",
        segment_modifiers=(0.95, 0.98, 1.05, 1.12, 1.22),
        perk=Perk("underdog_surge", "last_place", 0.20),
        rarity_score=25,
        background_color="3a3a3a",
    ),
)

BLOODLINES_BY_NAME = {b.name: b for b in BLOODLINES}
DEFAULT_RARITY_SCORE = 50


class RatStats(BaseModel):
    stamina: int = Field(ge=0, le=100)
    agility: int = Field(ge=0, le=100)
    speed: int = Field(ge=0, le=100)
    bloodline: str


class BreedingInfo(BaseModel):
    generation: int = 0
    parent1_token_id: int | None = Field(default=None, serialization_alias="parent1TokenId")
    parent2_token_id: int | None = Field(default=None, serialization_alias="parent2TokenId")
    is_purebreed: bool = Field(default=True, serialization_alias="isPurebreed")
    breeding_count: int = Field(default=0, serialization_alias="breedingCount")


class RatProperties(BaseModel):
    stats: RatStats
    speeds: list[float]
    gender: str
    model_index: int = Field(serialization_alias="modelIndex")
    color: str
    dob: datetime
    archetype: str
    power_rating: int = Field(serialization_alias="powerRating")
    breeding: BreedingInfo = Field(default_factory=BreedingInfo)


class RatMetadata(BaseModel):
    """OpenSea-compatible metadata document for one rat."""

    name: str
    description: str
    image: str
    external_url: str
    background_color: str
    attributes: list[dict]
    properties: RatProperties

    def to_document(self) -> dict:
        """JSON-ready document with camelCase property names."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def _seeded_rng(token_id: int, owner: str, appearance_variant: int) -> random.Random:
    seed = hashlib.sha256(f"{token_id}:{owner.lower()}:{appearance_variant}".encode()).digest()
    return random.Random(int.from_bytes(seed[:8], "big"))


def roll_bloodline(rng: random.Random) -> Bloodline:
    """Pick a bloodline by cumulative rarity weight."""
    roll = rng.random()
    cumulative = 0.0
    for bloodline in BLOODLINES:
        cumulative += bloodline.rarity
        if roll <= cumulative:
            return bloodline
    return BLOODLINES[-1]


def calculate_archetype(stats: RatStats) -> str:
    """Classify a stat spread into a build archetype."""
    stamina, agility, speed = stats.stamina, stats.agility, stats.speed
    values = (stamina, agility, speed)
    avg = sum(values) / 3
    std_dev = math.sqrt(sum((v - avg) ** 2 for v in values) / 3)
    stat_range = max(values) - min(values)

    if std_dev < 10:
        return "Balanced"
    if stamina > agility + 20 and stamina > speed + 20:
        return "Endurance Tank"
    if speed > stamina + 20 and speed > agility + 20:
        return "Sprint Specialist"
    if agility > stamina + 20 and agility > speed + 20:
        return "Technical Master"
    if stat_range > 30:
        return "Glass Cannon"
    return "Versatile"


def archetype_modifier(archetype: str, segment: int, rng: random.Random) -> float:
    if archetype == "Balanced":
        return 1.05
    if archetype == "Endurance Tank":
        return 0.95 + segment * 0.04  # stronger as the race goes on
    if archetype == "Sprint Specialist":
        return 1.15 - segment * 0.04  # fades late
    if archetype == "Technical Master":
        return 1.12 if segment in (2, 3) else 1.0
    if archetype == "Glass Cannon":
        return 1.18 if rng.random() > 0.5 else 0.92
    if archetype == "Versatile":
        return 1.02
    return 1.0


def stat_balance_bonus(stats: RatStats) -> float:
    values = (stats.stamina, stats.agility, stats.speed)
    avg = sum(values) / 3
    max_diff = max(abs(v - avg) for v in values)
    if max_diff < 10:
        return 1.05
    if max_diff > 30:
        return 0.95
    return 1.0


def calculate_power_rating(stats: RatStats, bloodline_multiplier: float) -> int:
    """Composite strength on a 0-100 scale; speed weighs most, then stamina."""
    raw = stats.speed * 0.4 + stats.stamina * 0.35 + stats.agility * 0.25
    return min(100, round(raw * bloodline_multiplier))


def generate_race_speeds(
    stats: RatStats, bloodline: Bloodline, archetype: str, rng: random.Random
) -> list[float]:
    """Build the per-segment speed profile.

    Each segment combines the base speed with the bloodline multiplier and
    segment specialty, the archetype modifier, the stat balance bonus, a
    stamina-dependent fatigue factor and bloodline-specific variance.
    """
    base_speed = (stats.stamina + stats.agility + stats.speed) / 300 * 0.3 + 0.7
    balance = stat_balance_bonus(stats)

    speeds = []
    for i in range(SEGMENTS):
        segment_speed = base_speed
        segment_speed *= bloodline.base_multiplier
        segment_speed *= bloodline.segment_modifiers[i]
        segment_speed *= archetype_modifier(archetype, i, rng)
        segment_speed *= balance

        # Fatigue grows along the track; stamina 100 negates it, max 15%
        progress = i / (SEGMENTS - 1)
        segment_speed *= 1 - progress * (1 - stats.stamina / 100) * 0.15

        segment_speed *= 1 + (rng.random() * bloodline.variance * 2 - bloodline.variance)
        speeds.append(round(max(0.5, segment_speed), 3))

    return speeds


def calculate_rarity_score(stats: dict | RatStats, speeds: list[float]) -> float:
    """Unweighted mean of bloodline tier score, mean core stat and mean segment speed.

    Args:
        stats: Stat block (model or stored dict with stamina/agility/speed/bloodline)
        speeds: Segment speed profile

    Returns:
        Rarity score rounded to two decimals
    """
    if isinstance(stats, RatStats):
        stats = stats.model_dump()
    bloodline = BLOODLINES_BY_NAME.get(stats.get("bloodline", ""))
    bloodline_score = bloodline.rarity_score if bloodline else DEFAULT_RARITY_SCORE
    stat_score = (stats["stamina"] + stats["agility"] + stats["speed"]) / 3
    speed_score = sum(speeds) / len(speeds) if speeds else 0.0
    return round((bloodline_score + stat_score + speed_score) / 3, 2)


def generate_rat_metadata(
    token_id: int,
    owner: str,
    appearance_variant: int,
    born_at: datetime | None = None,
    base_url: str = DEFAULT_BASE_URL,
) -> RatMetadata:
    """Generate metadata for a newly minted (generation 0) rat.

    Args:
        token_id: On-chain token ID
        owner: Owner address at mint
        appearance_variant: Image index 0-2 (brown, pink, white)
        born_at: Date of birth, normally the mint event's block timestamp
            (defaults to FALLBACK_BIRTH_DATE so redelivery stays identical)
        base_url: Public site URL used for image and external links

    Returns:
        Metadata document. Identical inputs always produce identical output.
    """
    rng = _seeded_rng(token_id, owner, appearance_variant)

    bloodline = roll_bloodline(rng)
    stats = RatStats(
        stamina=rng.randint(bloodline.min_stats, bloodline.max_stats),
        agility=rng.randint(bloodline.min_stats, bloodline.max_stats),
        speed=rng.randint(bloodline.min_stats, bloodline.max_stats),
        bloodline=bloodline.name,
    )
    archetype = calculate_archetype(stats)
    speeds = generate_race_speeds(stats, bloodline, archetype, rng)
    power_rating = calculate_power_rating(stats, bloodline.base_multiplier)
    gender = "male" if rng.random() > 0.5 else "female"

    model_index = appearance_variant if 0 <= appearance_variant < len(RAT_COLORS) else 0
    color = RAT_COLORS[model_index]
    dob = as_utc(born_at or FALLBACK_BIRTH_DATE).replace(microsecond=0)
    base = base_url.rstrip("/")
    short_owner = f"{owner[:6]}...{owner[-4:]}"

    return RatMetadata(
        name=f"Street Rat #{token_id}",
        description=(
            f"A {bloodline.name} racing rat from the underground streets. "
            f"{bloodline.description}. Owner: {short_owner}"
        ),
        image=f"{base}/images/{color}.png",
        external_url=f"{base}/rat/{token_id}",
        background_color=bloodline.background_color,
        attributes=[
            {"trait_type": "Bloodline", "value": bloodline.name},
            {"trait_type": "Archetype", "value": archetype},
            {"trait_type": "Gender", "value": gender.capitalize()},
            {
                "display_type": "number",
                "trait_type": "Stamina",
                "value": stats.stamina,
                "max_value": 100,
            },
            {
                "display_type": "number",
                "trait_type": "Agility",
                "value": stats.agility,
                "max_value": 100,
            },
            {
                "display_type": "number",
                "trait_type": "Speed",
                "value": stats.speed,
                "max_value": 100,
            },
            {"display_type": "boost_number", "trait_type": "Power Rating", "value": power_rating},
            {
                "display_type": "boost_percentage",
                "trait_type": "Bloodline Bonus",
                "value": round((bloodline.base_multiplier - 1) * 100),
            },
            {"display_type": "date", "trait_type": "Born", "value": int(dob.timestamp())},
            {"display_type": "number", "trait_type": "Generation", "value": 0},
        ],
        properties=RatProperties(
            stats=stats,
            speeds=speeds,
            gender=gender,
            model_index=model_index,
            color=color,
            dob=dob,
            archetype=archetype,
            power_rating=power_rating,
        ),
    )

