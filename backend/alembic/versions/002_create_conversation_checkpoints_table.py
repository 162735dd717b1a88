"""Create conversation_checkpoints table for durable orchestration state

Revision ID: 002
Revises: 001
Create Date: 2026-10-14
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "conversation_checkpoints",
        sa.Column("job_id", sa.String(36), primary_key=True),
        sa.Column(
            "status",
            sa.String(20),
            nullable=False,
            server_default="initializing",
        ),
        sa.Column("current_round", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("overall_confidence", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("document", sa.JSON(), nullable=False, server_default="{}"),
        sa.Column(
            "abort_requested",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "ix_conversation_checkpoints_status",
        "conversation_checkpoints",
        ["status"],
    )


def downgrade() -> None:
    op.drop_index("ix_conversation_checkpoints_status", table_name="conversation_checkpoints")
    op.drop_table("conversation_checkpoints")
