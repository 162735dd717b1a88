"""Create classification_jobs table

Revision ID: 001
Revises: None
Create Date: 2026-10-12
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "classification_jobs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("product_description", sa.Text(), nullable=False),
        sa.Column("destination_country", sa.String(8), nullable=True),
        sa.Column("intended_use", sa.Text(), nullable=True),
        sa.Column("user_answers", sa.JSON(), nullable=False, server_default="[]"),
        sa.Column(
            "status",
            sa.String(20),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("missing_info_question", sa.Text(), nullable=True),
        sa.Column("hs_code", sa.String(32), nullable=True),
        sa.Column("confidence_score", sa.Integer(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_classification_jobs_status", "classification_jobs", ["status"])


def downgrade() -> None:
    op.drop_index("ix_classification_jobs_status", table_name="classification_jobs")
    op.drop_table("classification_jobs")
