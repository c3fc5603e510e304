"""TransactionQueryService: read-only views over transaction records.

No commit/rollback needed.
"""

from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from src.cm_common.datetime_utils import Clock, utc_now
from src.cm_common.errors import TransactionRecordNotFoundError
from src.cm_settlement.application.schemas import (
    TransactionListResponse,
    TransactionRecordResponse,
    TransactionStatsResponse,
    cursor_decode,
    cursor_encode,
)
from src.cm_settlement.domain.repository import TransactionRepositoryProtocol
from src.cm_settlement.infrastructure.persistence import TransactionRepository


class TransactionQueryService:
    def __init__(
        self,
        repo: TransactionRepositoryProtocol | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._repo: TransactionRepositoryProtocol = repo or TransactionRepository()
        self._clock = clock

    async def get_transaction(
        self, db: AsyncSession, record_id: str
    ) -> TransactionRecordResponse:
        record = await self._repo.get_by_id(db, record_id)
        if record is None:
            raise TransactionRecordNotFoundError(record_id)
        return TransactionRecordResponse.from_domain(record)

    async def list_user_transactions(
        self,
        db: AsyncSession,
        user_id: str,
        transaction_type: str | None,
        status: str | None,
        cursor: str | None,
        limit: int,
    ) -> TransactionListResponse:
        records = await self._repo.list_for_user(
            db, user_id, transaction_type, status, cursor_decode(cursor), limit + 1
        )
        has_more = len(records) > limit
        page = records[:limit]
        return TransactionListResponse(
            items=[TransactionRecordResponse.from_domain(r) for r in page],
            next_cursor=cursor_encode(page[-1]) if has_more and page else None,
            has_more=has_more,
        )

    async def list_listing_transactions(
        self, db: AsyncSession, listing_id: str
    ) -> list[TransactionRecordResponse]:
        records = await self._repo.list_for_listing(db, listing_id)
        return [TransactionRecordResponse.from_domain(r) for r in records]

    async def get_transaction_stats(
        self, db: AsyncSession, days: int
    ) -> TransactionStatsResponse:
        since = self._clock() - timedelta(days=days)
        stats = await self._repo.stats(db, since, days)
        return TransactionStatsResponse.from_domain(stats)
