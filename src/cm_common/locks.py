"""Per-listing mutual exclusion inside one process.

Bid placement and settlement on the same listing are serialized here; across
processes the SQL compare-and-swap and the pending-record unique index catch
what an in-process lock cannot.

Entries live only while someone holds or waits on them, so the map stays as
small as the number of listings currently in flight.
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class ListingLocks:
    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._holders: dict[str, int] = {}

    @asynccontextmanager
    async def for_listing(self, listing_id: str) -> AsyncIterator[None]:
        # No await between lookup and increment: the entry cannot be evicted in between.
        lock = self._locks.get(listing_id)
        if lock is None:
            lock = self._locks[listing_id] = asyncio.Lock()
            self._holders[listing_id] = 0
        self._holders[listing_id] += 1
        try:
            async with lock:
                yield
        finally:
            self._holders[listing_id] -= 1
            if self._holders[listing_id] == 0:
                del self._holders[listing_id]
                del self._locks[listing_id]

    def __len__(self) -> int:
        return len(self._locks)


_locks: ListingLocks | None = None


def get_listing_locks() -> ListingLocks:
    global _locks  # noqa: PLW0603
    if _locks is None:
        _locks = ListingLocks()
    return _locks
