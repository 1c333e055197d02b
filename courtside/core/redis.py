import json
from typing import Optional

import redis
from redis.exceptions import RedisError

from courtside.core.logging_config import get_logger

logger = get_logger()


class AvailabilityCache:
    """Short-lived cache of availability responses.

    Never consulted for reservation decisions; every failure degrades to a
    cache miss.
    """

    def __init__(self, client: Optional[redis.Redis] = None, ttl: int = 30):
        self.client = client
        self.ttl = ttl

    @classmethod
    def from_url(cls, redis_url: Optional[str], ttl: int = 30) -> "AvailabilityCache":
        if not redis_url:
            return cls(None, ttl)

        try:
            client = redis.Redis.from_url(
                redis_url,
                decode_responses=True,
                socket_connect_timeout=2,
                socket_timeout=2,
            )
            client.ping()
            logger.info("Redis connected")
            return cls(client, ttl)
        except RedisError as e:
            logger.warning(f"Redis unavailable, availability cache disabled: {e}")
            return cls(None, ttl)

    @staticmethod
    def key(court_id: int, day) -> str:
        return f"availability:{court_id}:{day.isoformat()}"

    def get(self, court_id: int, day):
        if not self.client:
            return None
        try:
            data = self.client.get(self.key(court_id, day))
            return json.loads(data) if data else None
        except RedisError:
            return None

    def set(self, court_id: int, day, value):
        if not self.client or self.ttl <= 0:
            return
        try:
            self.client.setex(self.key(court_id, day), self.ttl, json.dumps(value))
        except RedisError:
            pass

    def invalidate(self, court_id: int, day):
        if not self.client:
            return
        try:
            self.client.delete(self.key(court_id, day))
        except RedisError:
            pass

    def close(self):
        if self.client:
            self.client.close()
