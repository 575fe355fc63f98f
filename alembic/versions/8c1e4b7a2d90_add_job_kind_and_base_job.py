"""add_job_kind_and_base_job

Revision ID: 8c1e4b7a2d90
Revises: 3f2a9c1d7b64
Create Date: 2026-10-19 14:03:27.554120

"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "8c1e4b7a2d90"
down_revision: Union[str, Sequence[str], None] = "3f2a9c1d7b64"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

job_kind = sa.Enum("INITIAL", "REFINE", name="jobkind")


def upgrade() -> None:
    """Record the job kind and, for refinements, the job being refined."""
    job_kind.create(op.get_bind(), checkfirst=True)
    op.add_column(
        "generation_jobs",
        sa.Column("kind", job_kind, nullable=False, server_default="INITIAL"),
    )
    op.add_column("generation_jobs", sa.Column("base_job_id", sa.Uuid(), nullable=True))
    op.create_foreign_key(
        "fk_generation_jobs_base_job_id",
        "generation_jobs",
        "generation_jobs",
        ["base_job_id"],
        ["id"],
    )


def downgrade() -> None:
    """Drop kind and base_job_id."""
    op.drop_constraint("fk_generation_jobs_base_job_id", "generation_jobs", type_="foreignkey")
    op.drop_column("generation_jobs", "base_job_id")
    op.drop_column("generation_jobs", "kind")
    job_kind.drop(op.get_bind(), checkfirst=True)
