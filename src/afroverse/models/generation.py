"""GenerationJob entity - one creative-generation request with append-only versions."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, Index, UniqueConstraint, event
from sqlmodel import Field, Relationship, SQLModel


class JobStatus(str, Enum):
    """Generation job lifecycle status."""

    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class JobKind(str, Enum):
    """What a trigger asks the executor to produce."""

    INITIAL = "initial"
    REFINE = "refine"


# target status -> statuses it may be entered from
ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.RUNNING: frozenset({JobStatus.QUEUED, JobStatus.RUNNING}),
    JobStatus.QUEUED: frozenset({JobStatus.RUNNING}),
    JobStatus.SUCCEEDED: frozenset({JobStatus.RUNNING}),
    JobStatus.FAILED: frozenset({JobStatus.RUNNING}),
}


class InvariantViolation(Exception):
    """Raised when a job would be persisted in a state that breaks a record invariant."""

    pass


def sources_for(target: JobStatus) -> frozenset[JobStatus]:
    """Statuses from which ``target`` may be entered."""
    return ALLOWED_TRANSITIONS[target]


class GenerationVersion(SQLModel, table=True):
    """One immutable, successfully produced result of a generation job."""

    __tablename__ = "generation_versions"  # type: ignore[assignment]
    __table_args__ = (
        UniqueConstraint("job_id", "version_id", name="uq_generation_versions_job_version"),
        UniqueConstraint("job_id", "position", name="uq_generation_versions_job_position"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    job_id: UUID = Field(foreign_key="generation_jobs.id", index=True)
    version_id: str = Field(max_length=32)
    position: int = Field(ge=1)
    artifact_refs: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    provider_request_id: Optional[str] = Field(default=None, max_length=255)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    job: Optional["GenerationJob"] = Relationship(back_populates="versions")


class GenerationJob(SQLModel, table=True):
    """GenerationJob tracks one generation request through queue, lock and retry."""

    __tablename__ = "generation_jobs"  # type: ignore[assignment]
    __table_args__ = (
        Index("ix_generation_jobs_retry_scan", "status", "retry_after", "attempts"),
        Index("ix_generation_jobs_orphan_scan", "status", "locked_at"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    owner_id: UUID = Field(foreign_key="owners.id", index=True)
    input_refs: list = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    style_parameters: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    kind: JobKind = Field(default=JobKind.INITIAL)
    # Job whose latest version a refinement starts from
    base_job_id: Optional[UUID] = Field(default=None, foreign_key="generation_jobs.id")

    provider_name: str = Field(default="replicate", max_length=50)
    provider_model: str = Field(default="google/nano-banana", max_length=255)
    provider_request_ids: list = Field(
        default_factory=list, sa_column=Column(JSON, nullable=False)
    )

    status: JobStatus = Field(default=JobStatus.QUEUED)

    # Retry/lock fields
    attempts: int = Field(default=0, ge=0)
    max_attempts: int = Field(default=5, ge=1)
    last_attempt_at: Optional[datetime] = Field(default=None)
    retry_after: Optional[datetime] = Field(default=None)
    locked_by: Optional[str] = Field(default=None, max_length=64)
    locked_at: Optional[datetime] = Field(default=None)

    error_data: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    versions: list[GenerationVersion] = Relationship(
        back_populates="job",
        sa_relationship_kwargs={"lazy": "selectin", "order_by": "GenerationVersion.position"},
    )

    @property
    def latest_version(self) -> GenerationVersion | None:
        if not self.versions:
            return None
        return self.versions[-1]

    def retry_gate_open(self, now: datetime) -> bool:
        return self.retry_after is None or self.retry_after <= now


@event.listens_for(GenerationJob, "before_insert")
@event.listens_for(GenerationJob, "before_update")
def _reject_succeeded_without_versions(mapper, connection, target: GenerationJob) -> None:
    if target.status == JobStatus.SUCCEEDED and not target.versions:
        raise InvariantViolation(
            f"Generation job {target.id} cannot be succeeded without at least one version"
        )
