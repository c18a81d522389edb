"""Race entity - on-chain race mirror with lifecycle status tracking."""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from ratracer.core.timezone import UTCTimestamp, utcnow
from ratracer.services.exceptions import InvalidStateError

MAX_PARTICIPANTS = 6


class RaceStatus(str, Enum):
    """Race lifecycle status."""

    PENDING = "pending"
    FULL = "full"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({RaceStatus.COMPLETED, RaceStatus.CANCELLED})

# Allowed status transitions. Terminal statuses have no outgoing edges.
RACE_TRANSITIONS: dict[RaceStatus, frozenset[RaceStatus]] = {
    RaceStatus.PENDING: frozenset({RaceStatus.FULL, RaceStatus.COMPLETED, RaceStatus.CANCELLED}),
    RaceStatus.FULL: frozenset({RaceStatus.RUNNING, RaceStatus.COMPLETED, RaceStatus.CANCELLED}),
    RaceStatus.RUNNING: frozenset({RaceStatus.COMPLETED}),
    RaceStatus.COMPLETED: frozenset(),
    RaceStatus.CANCELLED: frozenset(),
}


class InvalidStateTransition(InvalidStateError):
    """Raised when attempting an invalid race state transition."""

    reason = "invalid_transition"

    def __init__(self, message: str, current: RaceStatus, target: RaceStatus):
        super().__init__(message)
        self.current = current
        self.target = target

    @property
    def from_terminal(self) -> bool:
        """True when the race was already completed or cancelled."""
        return self.current in TERMINAL_STATUSES


def can_transition(current: RaceStatus, target: RaceStatus) -> bool:
    """Check whether ``current -> target`` is an allowed race transition."""
    return target in RACE_TRANSITIONS[current]


class Race(SQLModel, table=True):
    """Race mirrors one on-chain race and its participants."""

    __tablename__ = "races"  # type: ignore[assignment]

    race_id: int = Field(primary_key=True)
    creator: str = Field(max_length=42, index=True)
    track_id: int = Field(default=0)
    entry_token: str = Field(max_length=42)
    entry_fee: str = Field(default="0", max_length=80)  # uint256 as decimal string
    status: RaceStatus = Field(default=RaceStatus.PENDING, index=True)
    max_participants: int = Field(default=MAX_PARTICIPANTS)
    participants: list = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    participant_count: int = Field(default=0, ge=0)
    prize_pool: str = Field(default="0", max_length=80)
    results: Optional[list] = Field(default=None, sa_column=Column(JSON))
    winner: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    on_chain_prizes: Optional[list] = Field(default=None, sa_column=Column(JSON))

    created_tx_hash: Optional[str] = Field(default=None, max_length=66)
    start_tx_hash: Optional[str] = Field(default=None, max_length=66)
    settlement_tx_hash: Optional[str] = Field(default=None, max_length=66)
    started_by: Optional[str] = Field(default=None, max_length=42)
    cancelled_by: Optional[str] = Field(default=None, max_length=42)

    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCTimestamp)
    filled_at: Optional[datetime] = Field(default=None, sa_type=UTCTimestamp)
    started_at: Optional[datetime] = Field(default=None, sa_type=UTCTimestamp)
    completed_at: Optional[datetime] = Field(default=None, sa_type=UTCTimestamp)
    cancelled_at: Optional[datetime] = Field(default=None, sa_type=UTCTimestamp)

    # Optimistic concurrency counter, bumped by every conditional write
    version: int = Field(default=1)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def rat_token_ids(self) -> list[int]:
        """Token ids of all entered rats, in entry order."""
        return [int(p["ratTokenId"]) for p in self.participants]

    def has_rat(self, rat_token_id: int) -> bool:
        return rat_token_id in self.rat_token_ids

    def ensure_transition(self, target: RaceStatus) -> None:
        """Validate a transition from the current status.

        Args:
            target: Desired status

        Raises:
            InvalidStateTransition: If the transition table does not allow it
        """
        if not can_transition(self.status, target):
            raise InvalidStateTransition(
                f"Cannot move race {self.race_id} from {self.status.value} to {target.value}",
                current=self.status,
                target=target,
            )

    def to_public_dict(self) -> dict:
        """Serialize for the read API (camelCase, client-facing)."""
        return {
            "raceId": self.race_id,
            "creator": self.creator,
            "trackId": self.track_id,
            "entryToken": self.entry_token,
            "entryFee": self.entry_fee,
            "status": self.status.value,
            "maxParticipants": self.max_participants,
            "participants": self.participants,
            "prizePool": self.prize_pool,
            "results": self.results,
            "winner": self.winner,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
            "cancelledAt": self.cancelled_at.isoformat() if self.cancelled_at else None,
        }


class RatLock(SQLModel, table=True):
    """A rat currently entered in a non-terminal race.

    The primary key on ``rat_token_id`` enforces that a rat sits in at most one
    open race at a time. Rows are removed when the race completes or is
    cancelled.
    """

    __tablename__ = "rat_locks"  # type: ignore[assignment]

    rat_token_id: int = Field(primary_key=True)
    race_id: int = Field(index=True)
    locked_at: datetime = Field(default_factory=utcnow, sa_type=UTCTimestamp)
