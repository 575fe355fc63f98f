"""Repository layer for the Afroverse backend.

Provides data access abstractions for all domain entities.
No base classes - each repository is self-contained.
"""

from afroverse.repositories.generation_job import GenerationJobRepository
from afroverse.repositories.owner import OwnerRepository

__all__ = [
    "GenerationJobRepository",
    "OwnerRepository",
]
