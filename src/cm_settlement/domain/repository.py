"""Repository Protocol for transaction records.

Callers own the transaction: nothing here commits.
"""

from datetime import datetime
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.cm_settlement.domain.models import TransactionRecord, TransactionStats


class TransactionRepositoryProtocol(Protocol):
    async def insert(self, db: AsyncSession, record: TransactionRecord) -> TransactionRecord: ...

    async def mark_completed(
        self,
        db: AsyncSession,
        record_id: str,
        ledger_transaction_id: str,
        explorer_url: str | None,
        completed_at: datetime,
    ) -> None: ...

    async def mark_failed(
        self,
        db: AsyncSession,
        record_id: str,
        error_code: str,
        error_message: str,
        failed_at: datetime,
        ledger_transaction_id: str | None = None,
    ) -> None: ...

    async def fail_stale_pending(
        self,
        db: AsyncSession,
        initiated_before: datetime,
        error_code: str,
        error_message: str,
        failed_at: datetime,
        limit: int,
    ) -> list[TransactionRecord]: ...

    async def exists_for_listing(
        self, db: AsyncSession, listing_id: str, status: str | None = None
    ) -> bool: ...

    async def get_by_id(self, db: AsyncSession, record_id: str) -> TransactionRecord | None: ...

    async def list_for_user(
        self,
        db: AsyncSession,
        user_id: str,
        transaction_type: str | None,
        status: str | None,
        cursor_id: str | None,
        limit: int,
    ) -> list[TransactionRecord]: ...

    async def list_for_listing(
        self, db: AsyncSession, listing_id: str
    ) -> list[TransactionRecord]: ...

    async def stats(self, db: AsyncSession, since: datetime, days: int) -> TransactionStats: ...
