"""ProcessedEvent entity - idempotency ledger for webhook deliveries."""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from pydantic import field_validator
from sqlmodel import Field, SQLModel

from ratracer.core.timezone import UTCTimestamp, utcnow


class ProcessedEvent(SQLModel, table=True):
    """ProcessedEvent records that an on-chain event has been applied.

    Write-once: rows are never updated. The unique ``event_key`` is the
    storage-level guard against two concurrent deliveries both applying.
    """

    __tablename__ = "processed_events"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    event_key: str = Field(unique=True, index=True, max_length=100)
    event_name: str = Field(max_length=50)
    tx_hash: Optional[str] = Field(default=None, max_length=66)
    log_index: Optional[int] = Field(default=None)
    block_number: Optional[int] = Field(default=None)
    processed_at: datetime = Field(default_factory=utcnow, sa_type=UTCTimestamp)

    @field_validator("log_index")
    @classmethod
    def validate_log_index(cls, v: Optional[int]) -> Optional[int]:
        """Validate log index is non-negative."""
        if v is not None and v < 0:
            raise ValueError("Log index must be non-negative")
        return v
