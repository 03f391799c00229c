"""Backfill match_results from the legacy matching_results table.

Revision ID: 002_backfill_legacy
Revises: 001_initial
Create Date: 2026-10-19 00:00:00.000000

The legacy table had no uniqueness on (task_id, user_id), so it may hold
several rows per pair.  Only the newest row per pair is copied; rows with
a NULL task or user are skipped.  The legacy table is left in place.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "002_backfill_legacy"
down_revision: Union[str, None] = "001_initial"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

LEGACY_TABLE = "matching_results"


def upgrade() -> None:
    bind = op.get_bind()
    if not sa.inspect(bind).has_table(LEGACY_TABLE):
        return

    op.execute(
        """
        INSERT INTO match_results
            (id, task_id, user_id, total_score, breakdown, status, created_at, updated_at)
        SELECT id, task_id, user_id, match_score,
               COALESCE(match_breakdown, '{}'::jsonb),
               COALESCE(status, 'pending'),
               COALESCE(created_at, now()),
               COALESCE(created_at, now())
        FROM (
            SELECT legacy.*,
                   ROW_NUMBER() OVER (
                       PARTITION BY task_id, user_id
                       ORDER BY created_at DESC NULLS LAST, id
                   ) AS rn
            FROM matching_results AS legacy
            WHERE task_id IS NOT NULL AND user_id IS NOT NULL
        ) AS ranked
        WHERE rn = 1
        ON CONFLICT ON CONSTRAINT uq_match_results_task_user DO NOTHING
        """
    )


def downgrade() -> None:
    bind = op.get_bind()
    if not sa.inspect(bind).has_table(LEGACY_TABLE):
        return
    op.execute(
        """
        DELETE FROM match_results
        WHERE id IN (SELECT id FROM matching_results)
        """
    )
