"""003: create listings and listing_bids

uq_listings_active_nft is the backstop for "one active listing per NFT":
the application checks first, the partial index rejects the loser of a race.

Revision ID: 003
Revises: 002
Create Date: 2026-10-18
"""
from typing import Sequence, Union
from alembic import op

revision: str = "003"
down_revision: Union[str, None] = "002"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE listings (
            id                        VARCHAR(64)     PRIMARY KEY,
            token_id                  VARCHAR(32)     NOT NULL,
            serial_number             BIGINT          NOT NULL,
            comic_id                  VARCHAR(64)     NOT NULL,
            episode_id                VARCHAR(64)     NOT NULL,
            seller_id                 VARCHAR(64)     NOT NULL,
            seller_account_id         VARCHAR(32)     NOT NULL,
            listing_type              VARCHAR(20)     NOT NULL,
            price_amount              NUMERIC(38, 8)  NOT NULL,
            currency                  VARCHAR(10)     NOT NULL DEFAULT 'HBAR',
            status                    VARCHAR(20)     NOT NULL DEFAULT 'active',
            starting_price            NUMERIC(38, 8),
            reserve_price             NUMERIC(38, 8),
            current_bid               NUMERIC(38, 8),
            minimum_bid_increment     NUMERIC(38, 8),
            start_time                TIMESTAMPTZ,
            end_time                  TIMESTAMPTZ,
            highest_bidder_id         VARCHAR(64),
            highest_bidder_account_id VARCHAR(32),
            buyer_id                  VARCHAR(64),
            buyer_account_id          VARCHAR(32),
            sold_price                NUMERIC(38, 8),
            sold_at                   TIMESTAMPTZ,
            ledger_transaction_id     VARCHAR(128),
            explorer_url              TEXT,
            views                     BIGINT          NOT NULL DEFAULT 0,
            version                   BIGINT          NOT NULL DEFAULT 0,
            listed_at                 TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            expires_at                TIMESTAMPTZ,
            updated_at                TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_listings_type     CHECK (listing_type IN ('fixed-price', 'auction')),
            CONSTRAINT ck_listings_status   CHECK (
                status IN ('active', 'sold', 'cancelled', 'expired')
            ),
            CONSTRAINT ck_listings_currency CHECK (currency IN ('HBAR', 'USDT')),
            CONSTRAINT ck_listings_price    CHECK (price_amount >= 0),
            CONSTRAINT ck_listings_auction  CHECK (
                listing_type != 'auction' OR (
                    starting_price IS NOT NULL
                    AND reserve_price >= starting_price
                    AND current_bid >= starting_price
                    AND end_time > start_time
                )
            )
        );
    """)
    op.execute("""
        CREATE UNIQUE INDEX uq_listings_active_nft
            ON listings (token_id, serial_number)
            WHERE status = 'active';
    """)
    op.execute("CREATE INDEX idx_listings_status_id ON listings (status, id DESC);")
    op.execute("CREATE INDEX idx_listings_comic ON listings (comic_id, status);")
    op.execute("""
        CREATE INDEX idx_listings_auction_end ON listings (end_time)
            WHERE status = 'active' AND listing_type = 'auction';
    """)
    op.execute("""
        CREATE INDEX idx_listings_fixed_expiry ON listings (expires_at)
            WHERE status = 'active' AND listing_type = 'fixed-price';
    """)

    op.execute("""
        CREATE TABLE listing_bids (
            listing_id          VARCHAR(64)     NOT NULL REFERENCES listings (id),
            seq                 INT             NOT NULL,
            bidder_id           VARCHAR(64)     NOT NULL,
            bidder_account_id   VARCHAR(32)     NOT NULL,
            amount              NUMERIC(38, 8)  NOT NULL,
            placed_at           TIMESTAMPTZ     NOT NULL,
            tx_ref              VARCHAR(128),
            CONSTRAINT pk_listing_bids PRIMARY KEY (listing_id, seq),
            CONSTRAINT ck_listing_bids_amount CHECK (amount > 0)
        );
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS listing_bids;")
    op.execute("DROP TABLE IF EXISTS listings;")
