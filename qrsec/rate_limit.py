# qrsec/rate_limit.py

from __future__ import annotations

import json
import logging
from typing import Optional

import redis

logger = logging.getLogger("qrsec.rate_limit")

WINDOW_SECONDS = 3600


class RateLimiter:
    """
    Fixed-window per-IP counter in Redis.

    ``hit`` returns None when the request may proceed, or the number of
    seconds until the window resets when the caller is over the limit.
    Fails open when Redis cannot be reached.
    """

    def __init__(self, client: redis.Redis, limit: int, scope: str = "linkcheck"):
        self.client = client
        self.limit = limit
        self.scope = scope

    @classmethod
    def from_url(cls, url: str, limit: int, scope: str = "linkcheck") -> "RateLimiter":
        return cls(redis.Redis.from_url(url, decode_responses=True), limit, scope)

    def _key(self, ip: str) -> str:
        return f"rate:{self.scope}:{ip}"

    def hit(self, ip: str) -> Optional[int]:
        key = self._key(ip)
        try:
            count = self.client.incr(key)
            if count == 1:
                self.client.expire(key, WINDOW_SECONDS)
            if count <= self.limit:
                return None
            ttl = self.client.ttl(key)
        except redis.RedisError as exc:
            logger.warning(json.dumps({"event": "rate_limit_unavailable", "error": str(exc)}))
            return None
        return ttl if ttl and ttl > 0 else WINDOW_SECONDS
