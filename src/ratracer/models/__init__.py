"""SQLModel database entities.

All models are imported here to ensure they're registered with SQLModel metadata
for Alembic autogenerate support.
"""

from ratracer.models.processed_event import ProcessedEvent
from ratracer.models.race import (
    MAX_PARTICIPANTS,
    InvalidStateTransition,
    Race,
    RaceStatus,
    RatLock,
)
from ratracer.models.rat import (
    XP_AWARDS,
    RaceOutcome,
    Rat,
    compute_level,
    outcome_for_position,
)
from ratracer.models.wallet import Wallet

__all__ = [
    "Rat",
    "compute_level",
    "RaceOutcome",
    "XP_AWARDS",
    "outcome_for_position",
    "Race",
    "RaceStatus",
    "RatLock",
    "MAX_PARTICIPANTS",
    "InvalidStateTransition",
    "Wallet",
    "ProcessedEvent",
]
