"""create_generation_tables

Revision ID: 3f2a9c1d7b64
Revises:
Create Date: 2026-10-19 10:12:41.318207

"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3f2a9c1d7b64"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

job_status = sa.Enum("QUEUED", "RUNNING", "SUCCEEDED", "FAILED", name="jobstatus")


def upgrade() -> None:
    """Create owners, generation_jobs and generation_versions."""
    op.create_table(
        "owners",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("handle", sa.String(length=64), nullable=False),
        sa.Column("display_name", sa.String(length=255), nullable=True),
        sa.Column("banned", sa.Boolean(), nullable=False),
        sa.Column("shadowbanned", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_owners_handle"), "owners", ["handle"], unique=True)

    op.create_table(
        "generation_jobs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("owner_id", sa.Uuid(), nullable=False),
        sa.Column("input_refs", sa.JSON(), nullable=False),
        sa.Column("style_parameters", sa.JSON(), nullable=False),
        sa.Column("provider_name", sa.String(length=50), nullable=False),
        sa.Column("provider_model", sa.String(length=255), nullable=False),
        sa.Column("provider_request_ids", sa.JSON(), nullable=False),
        sa.Column("status", job_status, nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("max_attempts", sa.Integer(), nullable=False),
        sa.Column("last_attempt_at", sa.DateTime(), nullable=True),
        sa.Column("retry_after", sa.DateTime(), nullable=True),
        sa.Column("locked_by", sa.String(length=64), nullable=True),
        sa.Column("locked_at", sa.DateTime(), nullable=True),
        sa.Column("error_data", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["owner_id"], ["owners.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_generation_jobs_owner_id"), "generation_jobs", ["owner_id"], unique=False
    )
    # Recovery scan: queued jobs due for retry
    op.create_index(
        "ix_generation_jobs_retry_scan",
        "generation_jobs",
        ["status", "retry_after", "attempts"],
        unique=False,
    )
    # Recovery scan: running jobs with stale locks
    op.create_index(
        "ix_generation_jobs_orphan_scan",
        "generation_jobs",
        ["status", "locked_at"],
        unique=False,
    )

    op.create_table(
        "generation_versions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("job_id", sa.Uuid(), nullable=False),
        sa.Column("version_id", sa.String(length=32), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("artifact_refs", sa.JSON(), nullable=False),
        sa.Column("provider_request_id", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["job_id"], ["generation_jobs.id"]),
        sa.PrimaryKeyConstraint("id"),
        # One append per version id and per slot; the losing append is absorbed
        sa.UniqueConstraint("job_id", "version_id", name="uq_generation_versions_job_version"),
        sa.UniqueConstraint("job_id", "position", name="uq_generation_versions_job_position"),
    )
    op.create_index(
        op.f("ix_generation_versions_job_id"), "generation_versions", ["job_id"], unique=False
    )


def downgrade() -> None:
    """Drop generation tables."""
    op.drop_index(op.f("ix_generation_versions_job_id"), table_name="generation_versions")
    op.drop_table("generation_versions")
    op.drop_index("ix_generation_jobs_orphan_scan", table_name="generation_jobs")
    op.drop_index("ix_generation_jobs_retry_scan", table_name="generation_jobs")
    op.drop_index(op.f("ix_generation_jobs_owner_id"), table_name="generation_jobs")
    op.drop_table("generation_jobs")
    op.drop_index(op.f("ix_owners_handle"), table_name="owners")
    op.drop_table("owners")
    job_status.drop(op.get_bind(), checkfirst=True)
