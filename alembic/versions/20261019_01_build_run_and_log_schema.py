"""Build run and build log schema baseline

Revision ID: 20261019_01
Revises: None
Create Date: 2026-10-19
"""
# pylint: disable=no-member,invalid-name,wrong-import-order

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261019_01"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""

    op.create_table(
        "build_run",
        sa.Column("build_run_id", sa.String(length=36), primary_key=True),
        sa.Column("project_name", sa.Text(), nullable=False),
        sa.Column("scheme_name", sa.Text(), nullable=False),
        sa.Column("version", sa.Text(), nullable=False),
        sa.Column("build_number", sa.Integer(), nullable=False),
        sa.Column("commit_hash", sa.Text(), nullable=False, server_default=""),
        sa.Column("source_branch", sa.Text(), nullable=True),
        sa.Column("export_kinds", sa.Text(), nullable=False),
        sa.Column("state", sa.String(length=32), nullable=False),
        sa.Column("progress", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("message", sa.Text(), nullable=False, server_default=""),
        sa.Column("started_at_utc", sa.String(length=40), nullable=False),
        sa.Column("updated_at_utc", sa.String(length=40), nullable=False),
        sa.Column("ended_at_utc", sa.String(length=40), nullable=True),
        sa.Column("error_code", sa.String(length=64), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.CheckConstraint(
            "state IN ('idle', 'cloning', 'resolving_dependencies', 'archiving', 'exporting', "
            "'cleaning_up', 'completed', 'failed', 'cancelled')",
            name="ck_build_run_state",
        ),
        sa.CheckConstraint("progress >= 0 AND progress <= 1", name="ck_build_run_progress_range"),
    )
    op.create_index("ix_build_run_started_at_utc", "build_run", ["started_at_utc"])
    op.create_index("ix_build_run_project_version", "build_run", ["project_name", "version", "build_number"])

    op.create_table(
        "build_log",
        sa.Column("build_log_id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("entry_id", sa.String(length=36), nullable=False),
        sa.Column(
            "build_run_id",
            sa.String(length=36),
            sa.ForeignKey("build_run.build_run_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("category", sa.String(length=32), nullable=False),
        sa.Column("level", sa.String(length=16), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("created_at_utc", sa.String(length=40), nullable=False),
        sa.UniqueConstraint("entry_id", name="uq_build_log_entry_id"),
        sa.CheckConstraint(
            "category IN ('clone', 'resolve_dependencies', 'archive', 'export', 'cleanup')",
            name="ck_build_log_category",
        ),
        sa.CheckConstraint("level IN ('debug', 'info', 'warning', 'error')", name="ck_build_log_level"),
    )
    op.create_index("ix_build_log_build_run_id", "build_log", ["build_run_id", "build_log_id"])


def downgrade() -> None:
    """Downgrade schema."""

    op.drop_index("ix_build_log_build_run_id", table_name="build_log")
    op.drop_table("build_log")
    op.drop_index("ix_build_run_project_version", table_name="build_run")
    op.drop_index("ix_build_run_started_at_utc", table_name="build_run")
    op.drop_table("build_run")
