"""
Redis client wrapper for durable task state and the temporary memory cache.
"""

from functools import wraps
from typing import Dict, List, Optional

import redis
from redis.exceptions import RedisError

from .config import RedisConfig
from .logging_config import get_logger

logger = get_logger(__name__)


class StoreUnavailableError(Exception):
    """Raised when the durable store cannot be reached or rejects a command."""
    pass


def translate_redis_errors(func):
    """Decorator turning redis-py failures into StoreUnavailableError."""

    @wraps(func)
    def wrapper(self, *args, **kwargs):
        try:
            return func(self, *args, **kwargs)
        except RedisError as e:
            logger.error(f'Redis error in {func.__name__}: {e}')
            raise StoreUnavailableError(f'Failed to {func.__name__}: {e}')

    return wrapper


class RedisClient:
    """Thin Redis client exposing the key/value, hash and sorted-set commands the core relies on."""

    def __init__(self, config: RedisConfig, client: Optional[redis.Redis] = None):
        """
        Initialize Redis client.

        Args:
            config: RedisConfig instance with connection parameters
            client: Pre-built redis.Redis instance, built from config if None
        """
        self.config = config
        self.client = client or redis.Redis(host=config.host,
                                            port=config.port,
                                            password=config.password or None,
                                            db=config.db,
                                            socket_timeout=config.socket_timeout,
                                            socket_connect_timeout=config.socket_timeout,
                                            decode_responses=True)

        logger.info(f'Initialized Redis client for {config.host}:{config.port}/{config.db}')

    # Key/value

    @translate_redis_errors
    def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> bool:
        return bool(self.client.set(key, value, ex=ttl_seconds))

    @translate_redis_errors
    def mget(self, keys: List[str]) -> List[Optional[str]]:
        if not keys:
            return []
        return self.client.mget(keys)

    @translate_redis_errors
    def scan_keys(self, pattern: str, count: int = 100) -> List[str]:
        """Collect keys matching pattern using SCAN instead of a blocking KEYS."""
        return list(self.client.scan_iter(match=pattern, count=count))

    # Hashes

    @translate_redis_errors
    def hget(self, name: str, field: str) -> Optional[str]:
        return self.client.hget(name, field)

    @translate_redis_errors
    def hset(self, name: str, field: str, value: str) -> int:
        return self.client.hset(name, field, value)

    @translate_redis_errors
    def hdel(self, name: str, field: str) -> int:
        return self.client.hdel(name, field)

    @translate_redis_errors
    def hgetall(self, name: str) -> Dict[str, str]:
        return self.client.hgetall(name)

    @translate_redis_errors
    def hvals(self, name: str) -> List[str]:
        return self.client.hvals(name)

    # Sorted sets

    @translate_redis_errors
    def zadd(self, name: str, member: str, score: float) -> int:
        return self.client.zadd(name, {member: score})

    @translate_redis_errors
    def zrangebyscore(self, name: str, min_score: float, max_score: float) -> List[str]:
        return self.client.zrangebyscore(name, min_score, max_score)

    @translate_redis_errors
    def zrem(self, name: str, member: str) -> int:
        return self.client.zrem(name, member)

    def health_check(self) -> bool:
        """
        Perform a health check on the Redis service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            return bool(self.client.ping())
        except RedisError as e:
            logger.error(f'Redis health check failed: {e}')
            return False
