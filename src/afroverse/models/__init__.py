"""SQLModel database entities.

All models are imported here to ensure they're registered with SQLModel metadata
for Alembic autogenerate support.
"""

from afroverse.models.generation import (
    GenerationJob,
    GenerationVersion,
    InvariantViolation,
    JobKind,
    JobStatus,
)
from afroverse.models.owner import Owner

__all__ = [
    "Owner",
    "GenerationJob",
    "GenerationVersion",
    "JobStatus",
    "JobKind",
    "InvariantViolation",
]
