"""Listing view counter backed by Redis INCR.

Views are telemetry: every failure is logged and swallowed, and readers fall
back to zero extra views.
"""

import logging

from redis.exceptions import RedisError

from src.cm_common.redis_client import get_redis

logger = logging.getLogger(__name__)

_KEY = "cm:listing_views:{listing_id}"


class ListingViewCounter:
    async def record_view(self, listing_id: str) -> None:
        try:
            redis = await get_redis()
            await redis.incr(_KEY.format(listing_id=listing_id))
        except (RedisError, OSError) as exc:
            logger.warning("View counter unavailable for %s: %s", listing_id, exc)

    async def get_views(self, listing_id: str) -> int:
        try:
            redis = await get_redis()
            value = await redis.get(_KEY.format(listing_id=listing_id))
        except (RedisError, OSError) as exc:
            logger.warning("View counter unavailable for %s: %s", listing_id, exc)
            return 0
        return int(value) if value else 0
