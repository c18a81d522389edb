"""Repository layer for the rat racer backend.

Provides data access abstractions for all domain entities.
No base classes - each repository is self-contained.
"""

from ratracer.repositories.processed_event import ProcessedEventRepository
from ratracer.repositories.race import RaceRepository
from ratracer.repositories.rat import RatRepository
from ratracer.repositories.wallet import WalletRepository

__all__ = [
    "RatRepository",
    "RaceRepository",
    "WalletRepository",
    "ProcessedEventRepository",
]
