"""Wallet entity - aggregate view of an address's rats and race record."""

from datetime import datetime

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from ratracer.core.timezone import UTCTimestamp, utcnow


class Wallet(SQLModel, table=True):
    """Wallet is created lazily the first time any event references an address."""

    __tablename__ = "wallets"  # type: ignore[assignment]

    address: str = Field(primary_key=True, max_length=42)
    rat_ids: list = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    race_history: list = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    total_wins: int = Field(default=0, ge=0)
    total_races: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCTimestamp)

    def to_public_dict(self) -> dict:
        return {
            "address": self.address,
            "ratIds": self.rat_ids,
            "raceHistory": self.race_history,
            "totalWins": self.total_wins,
            "totalRaces": self.total_races,
            "createdAt": self.created_at.isoformat(),
        }
