"""002: create catalog tables (comics, episode_nfts)

The catalog is owned by the creator-facing service; this service reads
ownership and royalty, and rewrites the owner after a confirmed transfer.

Revision ID: 002
Revises: 001
Create Date: 2026-10-18
"""
from typing import Sequence, Union
from alembic import op

revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE comics (
            id                VARCHAR(64)     PRIMARY KEY,
            title             VARCHAR(255)    NOT NULL,
            creator_id        VARCHAR(64)     NOT NULL,
            royalty_percent   NUMERIC(5, 2)   NOT NULL DEFAULT 10,
            created_at        TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at        TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_comics_royalty CHECK (royalty_percent >= 0 AND royalty_percent <= 100)
        );
    """)
    op.execute("""
        CREATE TABLE episode_nfts (
            episode_id        VARCHAR(64)     NOT NULL,
            comic_id          VARCHAR(64)     NOT NULL REFERENCES comics (id),
            token_id          VARCHAR(32)     NOT NULL,
            serial_number     BIGINT          NOT NULL,
            owner_id          VARCHAR(64),
            owner_account_id  VARCHAR(32)     NOT NULL,
            created_at        TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at        TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT pk_episode_nfts PRIMARY KEY (token_id, serial_number),
            CONSTRAINT uq_episode_nfts_episode_serial UNIQUE (episode_id, serial_number),
            CONSTRAINT ck_episode_nfts_serial CHECK (serial_number >= 1)
        );
    """)
    op.execute(
        "CREATE INDEX idx_episode_nfts_owner ON episode_nfts (owner_account_id);"
    )
    op.execute("""
        CREATE TRIGGER trg_comics_updated_at
            BEFORE UPDATE ON comics
            FOR EACH ROW EXECUTE FUNCTION fn_touch_updated_at();
    """)
    op.execute("""
        CREATE TRIGGER trg_episode_nfts_updated_at
            BEFORE UPDATE ON episode_nfts
            FOR EACH ROW EXECUTE FUNCTION fn_touch_updated_at();
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS episode_nfts;")
    op.execute("DROP TABLE IF EXISTS comics;")
