"""Rat entity - one per minted NFT token."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import field_validator
from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from ratracer.core.timezone import UTCTimestamp, utcnow


class RaceOutcome(str, Enum):
    """Result of a finished race for one participant."""

    WIN = "win"
    PLACED = "placed"
    LOSS = "loss"


XP_AWARDS = {RaceOutcome.WIN: 100, RaceOutcome.PLACED: 50, RaceOutcome.LOSS: 10}


def outcome_for_position(position: int) -> RaceOutcome:
    """Map a 1-based finishing position to its outcome (1st wins, 2nd-3rd place)."""
    if position == 1:
        return RaceOutcome.WIN
    if position <= 3:
        return RaceOutcome.PLACED
    return RaceOutcome.LOSS


def compute_level(wins: int, placed: int) -> int:
    """Level derived from race record: one level per 10 wins and per 20 placings."""
    return wins // 10 + placed // 20 + 1


class Rat(SQLModel, table=True):
    """Rat mirrors a minted NFT with its generated metadata and race record."""

    __tablename__ = "rats"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    token_id: int = Field(unique=True, index=True)
    owner: str = Field(max_length=42, index=True)
    # Chain position (block, log index) of the event that set the current owner
    owner_block_number: Optional[int] = Field(default=None)
    owner_log_index: Optional[int] = Field(default=None)
    name: str = Field(max_length=100)
    model_index: int = Field(default=0, ge=0, le=2)
    color: str = Field(max_length=20)
    image_url: str = Field(max_length=500)
    metadata_url: Optional[str] = Field(default=None, max_length=500)

    stats: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    speeds: list = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    gender: str = Field(max_length=10)
    dob: datetime = Field(sa_type=UTCTimestamp)
    archetype: str = Field(max_length=40)
    power_rating: int = Field(default=0)
    rarity_score: float = Field(default=0.0)

    wins: int = Field(default=0, ge=0)
    placed: int = Field(default=0, ge=0)
    losses: int = Field(default=0, ge=0)
    level: int = Field(default=1, ge=1)
    xp: int = Field(default=0, ge=0)

    # Breeding lineage; minted rats are generation 0 with no parents
    generation: int = Field(default=0, ge=0)
    parent1_token_id: Optional[int] = Field(default=None)
    parent2_token_id: Optional[int] = Field(default=None)
    is_purebreed: bool = Field(default=False)
    breeding_count: int = Field(default=0, ge=0)

    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCTimestamp)

    @field_validator("token_id")
    @classmethod
    def validate_token_id(cls, v: int) -> int:
        """Validate token id is non-negative."""
        if v < 0:
            raise ValueError("Token id must be non-negative")
        return v

    @field_validator("owner")
    @classmethod
    def validate_owner(cls, v: str) -> str:
        """Validate Ethereum address format (0x + 40 hex characters)."""
        if not v.startswith("0x") or len(v) != 42:
            raise ValueError("Owner must be in format 0x followed by 40 hex characters")
        return v

    def is_newer_position(self, block_number: int | None, log_index: int | None) -> bool:
        """Whether a chain position comes after the one that set the current owner.

        Positions are compared as (block, log index). When either side has no
        block number the events cannot be ordered and the newer delivery wins.
        """
        if block_number is None or self.owner_block_number is None:
            return True
        return (block_number, log_index or 0) > (
            self.owner_block_number,
            self.owner_log_index or 0,
        )

    def to_public_dict(self) -> dict:
        """Serialize for the read API (camelCase, client-facing)."""
        return {
            "tokenId": self.token_id,
            "name": self.name,
            "owner": self.owner,
            "modelIndex": self.model_index,
            "color": self.color,
            "imageUrl": self.image_url,
            "metadataUrl": self.metadata_url,
            "stats": self.stats,
            "speeds": self.speeds,
            "gender": self.gender,
            "dob": self.dob.isoformat(),
            "archetype": self.archetype,
            "powerRating": self.power_rating,
            "rarityScore": self.rarity_score,
            "wins": self.wins,
            "placed": self.placed,
            "losses": self.losses,
            "level": self.level,
            "xp": self.xp,
            "generation": self.generation,
            "parent1TokenId": self.parent1_token_id,
            "parent2TokenId": self.parent2_token_id,
            "isPurebreed": self.is_purebreed,
            "breedingCount": self.breeding_count,
        }
