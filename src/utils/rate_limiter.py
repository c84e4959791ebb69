"""
Redis-based rate limiter for the provider webhook endpoint.
Sliding window counter per key; a Redis outage lets requests through.
"""
import logging
import time
from typing import Optional

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60


async def check_rate_limit(
    key: str,
    limit: int,
    window: int = WINDOW_SECONDS,
) -> tuple[bool, Optional[int]]:
    """
    Check if a request is within rate limits using a Redis sorted set.

    Returns: (allowed: bool, retry_after_seconds: int | None)
    """
    try:
        from src.utils.redis_client import get_redis
        redis = await get_redis()

        redis_key = f"boardsync:ratelimit:{key}"
        now = time.time()

        pipe = redis.pipeline()
        pipe.zremrangebyscore(redis_key, 0, now - window)
        pipe.zadd(redis_key, {str(now): now})
        pipe.zcard(redis_key)
        pipe.expire(redis_key, window + 1)
        results = await pipe.execute()
        request_count = results[2]

        if request_count > limit:
            logger.warning(
                "Rate limit exceeded: key=%s count=%d limit=%d",
                key, request_count, limit,
            )
            return False, window

        return True, None
    except Exception as e:
        logger.warning("Rate limiter Redis error: %s. Allowing request.", str(e))
        return True, None


async def check_webhook_rate_limit(client_ip: str) -> tuple[bool, Optional[int]]:
    """Per-IP limit for provider callbacks."""
    from src.config import get_settings
    limit = get_settings().webhook_rate_limit_per_minute
    return await check_rate_limit(f"webhook:ip:{client_ip}", limit)
