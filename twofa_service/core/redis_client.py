"""
Redis connection and short-lived key management
"""

import json
from typing import Optional, Tuple
from redis import Redis, ConnectionPool
from twofa_service.core.config import settings


class RedisClient:
    """Redis client wrapper for step-up sessions, attempt limits and event publishing"""

    def __init__(self, url: Optional[str] = None):
        self.pool = ConnectionPool.from_url(
            url or settings.REDIS_URL,
            max_connections=settings.REDIS_POOL_SIZE,
            decode_responses=True
        )
        self.client = Redis(connection_pool=self.pool)

    def get(self, key: str) -> Optional[str]:
        """Get value by key"""
        return self.client.get(key)

    def set(self, key: str, value: str, ttl: Optional[int] = None) -> bool:
        """Set value with optional TTL (seconds)"""
        return self.client.set(key, value, ex=ttl)

    def delete(self, key: str) -> int:
        """Delete key"""
        return self.client.delete(key)

    def getdel(self, key: str) -> Optional[str]:
        """Atomically get and delete a key"""
        return self.client.getdel(key)

    def ttl(self, key: str) -> int:
        """Get remaining TTL"""
        return self.client.ttl(key)

    def incr(self, key: str) -> int:
        """Increment counter"""
        return self.client.incr(key)

    def get_json(self, key: str) -> Optional[dict]:
        raw = self.get(key)
        return json.loads(raw) if raw else None

    def set_json(self, key: str, data: dict, ttl: Optional[int] = None) -> bool:
        return self.set(key, json.dumps(data), ttl=ttl)

    def getdel_json(self, key: str) -> Optional[dict]:
        raw = self.getdel(key)
        return json.loads(raw) if raw else None

    def set_json_if_exists(self, key: str, data: dict) -> bool:
        """Overwrite an existing key, keeping its remaining TTL"""
        return bool(self.client.set(key, json.dumps(data), xx=True, keepttl=True))

    def check_rate_limit(self, key: str, limit: int, window_seconds: int) -> Tuple[bool, int]:
        """
        Count one attempt against a fixed window
        Returns (allowed, remaining)
        """
        current = self.get(key)
        if current is None:
            self.set(key, "1", ttl=window_seconds)
            return True, limit - 1

        count = int(current)
        if count >= limit:
            return False, 0

        self.incr(key)
        return True, limit - count - 1

    def publish(self, channel: str, message: str) -> int:
        """Publish message to channel"""
        return self.client.publish(channel, message)

    def ping(self) -> bool:
        return self.client.ping()

    def close(self):
        """Close Redis connection"""
        self.client.close()
        self.pool.disconnect()


_redis_client: Optional[RedisClient] = None


def get_redis() -> RedisClient:
    """Dependency function to get Redis client (created on first use)"""
    global _redis_client
    if _redis_client is None:
        _redis_client = RedisClient()
    return _redis_client


def close_redis() -> None:
    global _redis_client
    if _redis_client is not None:
        _redis_client.close()
        _redis_client = None
