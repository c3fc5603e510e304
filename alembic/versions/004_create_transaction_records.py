"""004: create transaction_records

One row per settlement attempt. Partial unique indexes:
  uq_txr_listing_completed  at most one completed sale per listing
  uq_txr_listing_pending    at most one settlement in flight per listing

Revision ID: 004
Revises: 003
Create Date: 2026-10-18
"""
from typing import Sequence, Union
from alembic import op

revision: str = "004"
down_revision: Union[str, None] = "003"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE transaction_records (
            id                      VARCHAR(64)     PRIMARY KEY,
            transaction_type        VARCHAR(20)     NOT NULL,
            status                  VARCHAR(20)     NOT NULL DEFAULT 'pending',
            listing_id              VARCHAR(64)     NOT NULL,
            buyer_id                VARCHAR(64)     NOT NULL,
            buyer_account_id        VARCHAR(32)     NOT NULL,
            seller_id               VARCHAR(64)     NOT NULL,
            seller_account_id       VARCHAR(32)     NOT NULL,
            token_id                VARCHAR(32)     NOT NULL,
            serial_number           BIGINT          NOT NULL,
            comic_id                VARCHAR(64)     NOT NULL,
            episode_id              VARCHAR(64)     NOT NULL,
            price_amount            NUMERIC(38, 8)  NOT NULL,
            currency                VARCHAR(10)     NOT NULL,
            platform_fee            NUMERIC(38, 8)  NOT NULL,
            royalty_fee             NUMERIC(38, 8)  NOT NULL,
            total_fees              NUMERIC(38, 8)  NOT NULL,
            seller_amount           NUMERIC(38, 8)  NOT NULL,
            ledger_transaction_id   VARCHAR(128),
            explorer_url            TEXT,
            error_code              VARCHAR(64),
            error_message           TEXT,
            initiated_at            TIMESTAMPTZ     NOT NULL,
            completed_at            TIMESTAMPTZ,
            failed_at               TIMESTAMPTZ,
            CONSTRAINT ck_txr_type   CHECK (transaction_type IN ('purchase', 'auction_complete')),
            CONSTRAINT ck_txr_status CHECK (
                status IN ('pending', 'completed', 'failed', 'cancelled')
            ),
            CONSTRAINT ck_txr_fees   CHECK (
                platform_fee + royalty_fee + seller_amount = price_amount
            )
        );
    """)
    op.execute("""
        CREATE UNIQUE INDEX uq_txr_listing_completed
            ON transaction_records (listing_id)
            WHERE status = 'completed';
    """)
    op.execute("""
        CREATE UNIQUE INDEX uq_txr_listing_pending
            ON transaction_records (listing_id)
            WHERE status = 'pending';
    """)
    op.execute("CREATE INDEX idx_txr_buyer ON transaction_records (buyer_id, id DESC);")
    op.execute("CREATE INDEX idx_txr_seller ON transaction_records (seller_id, id DESC);")
    op.execute("CREATE INDEX idx_txr_initiated ON transaction_records (initiated_at);")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS transaction_records;")
