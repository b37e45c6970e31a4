from __future__ import annotations

import logging
import time
import uuid
from typing import Callable, Optional

import redis

from ..core.celery_app import celery_app
from ..core.config import get_settings
from ..core.errors import RateLimitedError
from .caching import get_redis_client

logger = logging.getLogger(__name__)

KEY_PREFIX = "ratelimit"


class SlidingWindowLimiter:
    """
    Sliding-window request counter per client, one Redis sorted set each.

    Members are request ids scored by timestamp; a check trims entries older
    than the window, then counts what is left. Rejected requests are not
    recorded, so a client that backs off recovers after one window.
    """

    def __init__(
        self,
        client: redis.Redis,
        scope: str,
        limit: int,
        window_seconds: int,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.client = client
        self.scope = scope
        self.limit = limit
        self.window = window_seconds
        self._clock = clock

    def key(self, client_id: str) -> str:
        return f"{KEY_PREFIX}:{self.scope}:{client_id}"

    def check(self, client_id: Optional[str]) -> None:
        """Record one request for ``client_id`` or raise RateLimitedError."""
        client_id = client_id or "unknown"
        key = self.key(client_id)
        now = self._clock()

        try:
            pipe = self.client.pipeline()
            pipe.zremrangebyscore(key, 0, now - self.window)
            pipe.zcard(key)
            _, count = pipe.execute()

            if count >= self.limit:
                oldest = self.client.zrange(key, 0, 0, withscores=True)
                retry_after = self.window
                if oldest:
                    retry_after = max(1, int(oldest[0][1] + self.window - now) + 1)
                logger.info(
                    "Rate limit exceeded",
                    extra={"client_ip": client_id, "step": f"ratelimit:{self.scope}"},
                )
                raise RateLimitedError(retry_after=retry_after)

            pipe = self.client.pipeline()
            pipe.zadd(key, {f"{now}:{uuid.uuid4().hex[:8]}": now})
            pipe.expire(key, self.window + 1)
            pipe.execute()
        except redis.RedisError:
            # Counter store down: fail open, search still has its own DB timeouts
            logger.warning("Rate limiter unavailable", extra={"client_ip": client_id})

    def cleanup(self) -> int:
        """Trim expired members across all clients; drop empty sets."""
        cutoff = self._clock() - self.window
        removed = 0
        for key in self.client.scan_iter(match=f"{KEY_PREFIX}:{self.scope}:*", count=500):
            removed += self.client.zremrangebyscore(key, 0, cutoff)
            if self.client.zcard(key) == 0:
                self.client.delete(key)
        return removed


def get_search_limiter(client: Optional[redis.Redis] = None) -> SlidingWindowLimiter:
    settings = get_settings()
    return SlidingWindowLimiter(
        client or get_redis_client(),
        "search",
        settings.SEARCH_RATE_LIMIT,
        settings.SEARCH_RATE_WINDOW_SECONDS,
    )


@celery_app.task(name="wikihub.services.rate_limit.cleanup_rate_limit_counters")
def cleanup_rate_limit_counters() -> int:
    try:
        removed = get_search_limiter().cleanup()
    except redis.RedisError:
        logger.exception("Rate limit cleanup failed", extra={"step": "ratelimit"})
        raise
    logger.info("Removed %d expired rate limit entries", removed, extra={"step": "ratelimit"})
    return removed
