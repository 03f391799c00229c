"""Initial schema — the three tables owned by the matching engine.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000

``users``, ``tasks`` and ``task_participants`` belong to the account and
task services and are not created here.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── 1. match_results ────────────────────────────────────────────
    op.create_table(
        "match_results",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("task_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("total_score", sa.Float, nullable=False),
        sa.Column(
            "breakdown",
            postgresql.JSONB,
            nullable=False,
            comment="Per-dimension scores",
        ),
        sa.Column(
            "status",
            sa.String(20),
            server_default="pending",
            nullable=False,
            comment="pending / accepted / rejected / expired",
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.UniqueConstraint("task_id", "user_id", name="uq_match_results_task_user"),
        sa.CheckConstraint(
            "status IN ('pending', 'accepted', 'rejected', 'expired')",
            name="ck_match_results_status",
        ),
    )
    op.create_index("ix_match_results_user_id", "match_results", ["user_id"])
    op.create_index(
        "ix_match_results_status_updated",
        "match_results",
        ["status", "updated_at"],
    )

    # ── 2. matching_preferences ─────────────────────────────────────
    op.create_table(
        "matching_preferences",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), unique=True, nullable=False),
        sa.Column("preferred_categories", postgresql.ARRAY(sa.String), nullable=True),
        sa.Column("preferred_skills", postgresql.ARRAY(sa.String), nullable=True),
        sa.Column("location_preference", postgresql.JSONB, nullable=True),
        sa.Column("availability_preference", postgresql.JSONB, nullable=True),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )

    # ── 3. matching_analytics (append-only) ─────────────────────────
    op.create_table(
        "matching_analytics",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("match_type", sa.String(50), nullable=False),
        sa.Column("match_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("task_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("score", sa.Float, nullable=True),
        sa.Column(
            "action",
            sa.String(50),
            nullable=False,
            comment="accept / reject / view",
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index(
        "ix_matching_analytics_created_action",
        "matching_analytics",
        ["created_at", "action"],
    )


def downgrade() -> None:
    op.drop_index(
        "ix_matching_analytics_created_action", table_name="matching_analytics"
    )
    op.drop_table("matching_analytics")
    op.drop_table("matching_preferences")

    op.drop_index("ix_match_results_status_updated", table_name="match_results")
    op.drop_index("ix_match_results_user_id", table_name="match_results")
    op.drop_table("match_results")
