"""CatalogRepository: concrete implementation of CatalogRepositoryProtocol.

All queries use raw text() SQL. update_owner does not commit: it runs inside
the settlement's post-transfer transaction together with the listing and
transaction record updates.
"""

from decimal import Decimal
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.cm_catalog.domain.models import EpisodeNft
from src.cm_common.errors import InternalError

_GET_EPISODE_NFT_SQL = text("""
    SELECT n.episode_id, n.comic_id, n.token_id, n.serial_number,
           n.owner_id, n.owner_account_id, c.royalty_percent
    FROM episode_nfts n
    JOIN comics c ON c.id = n.comic_id
    WHERE n.episode_id = :episode_id AND n.serial_number = :serial_number
""")

_VERIFY_OWNERSHIP_SQL = text("""
    SELECT 1
    FROM episode_nfts
    WHERE token_id = :token_id
      AND serial_number = :serial_number
      AND owner_account_id = :account_id
""")

_UPDATE_OWNER_SQL = text("""
    UPDATE episode_nfts
    SET owner_id = :owner_id,
        owner_account_id = :owner_account_id,
        updated_at = NOW()
    WHERE token_id = :token_id AND serial_number = :serial_number
    RETURNING episode_id
""")

_GET_ROYALTY_SQL = text("SELECT royalty_percent FROM comics WHERE id = :comic_id")


def _row_to_episode_nft(row: Any) -> EpisodeNft:
    return EpisodeNft(
        episode_id=row.episode_id,
        comic_id=row.comic_id,
        token_id=row.token_id,
        serial_number=row.serial_number,
        owner_id=row.owner_id,
        owner_account_id=row.owner_account_id,
        royalty_percent=Decimal(row.royalty_percent),
    )


class CatalogRepository:
    async def get_episode_nft(
        self, db: AsyncSession, episode_id: str, serial_number: int
    ) -> EpisodeNft | None:
        result = await db.execute(
            _GET_EPISODE_NFT_SQL,
            {"episode_id": episode_id, "serial_number": serial_number},
        )
        row = result.fetchone()
        return _row_to_episode_nft(row) if row else None

    async def verify_ownership(
        self, db: AsyncSession, token_id: str, serial_number: int, account_id: str
    ) -> bool:
        result = await db.execute(
            _VERIFY_OWNERSHIP_SQL,
            {"token_id": token_id, "serial_number": serial_number, "account_id": account_id},
        )
        return result.fetchone() is not None

    async def update_owner(
        self,
        db: AsyncSession,
        token_id: str,
        serial_number: int,
        new_owner_id: str,
        new_owner_account_id: str,
    ) -> None:
        result = await db.execute(
            _UPDATE_OWNER_SQL,
            {
                "token_id": token_id,
                "serial_number": serial_number,
                "owner_id": new_owner_id,
                "owner_account_id": new_owner_account_id,
            },
        )
        if result.fetchone() is None:
            raise InternalError(f"No ownership record for NFT {token_id}/{serial_number}")

    async def get_royalty_percent(self, db: AsyncSession, comic_id: str) -> Decimal | None:
        result = await db.execute(_GET_ROYALTY_SQL, {"comic_id": comic_id})
        value = result.scalar_one_or_none()
        return Decimal(value) if value is not None else None
