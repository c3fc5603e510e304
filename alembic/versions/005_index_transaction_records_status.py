"""005: index transaction_records by (status, initiated_at)

The maintenance sweep scans for pending records older than a cutoff.

Revision ID: 005
Revises: 004
Create Date: 2026-10-18
"""
from typing import Sequence, Union
from alembic import op

revision: str = "005"
down_revision: Union[str, None] = "004"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE INDEX idx_txr_status_initiated
            ON transaction_records (status, initiated_at);
    """)


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS idx_txr_status_initiated;")
