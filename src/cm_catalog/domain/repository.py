"""Catalog collaborator Protocol: NFT ownership and royalty lookups.

The comic/episode aggregate lives outside the settlement core. The core only
reads ownership at listing time, reads royalty at settlement time, and writes
the owner after a confirmed ledger transfer.
"""

from decimal import Decimal
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.cm_catalog.domain.models import EpisodeNft


class CatalogRepositoryProtocol(Protocol):
    async def get_episode_nft(
        self, db: AsyncSession, episode_id: str, serial_number: int
    ) -> EpisodeNft | None: ...

    async def verify_ownership(
        self, db: AsyncSession, token_id: str, serial_number: int, account_id: str
    ) -> bool: ...

    async def update_owner(
        self,
        db: AsyncSession,
        token_id: str,
        serial_number: int,
        new_owner_id: str,
        new_owner_account_id: str,
    ) -> None: ...

    async def get_royalty_percent(self, db: AsyncSession, comic_id: str) -> Decimal | None: ...
