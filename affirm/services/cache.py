"""
Redis Cache Service
===================

Redis caching layer for read projections with connection management,
cache operations, and invalidation utilities.

Cache failures never fail a request: reads degrade to a miss and writes
are dropped, with the error logged.
"""

import json
import logging
from typing import Any, Optional

import redis.asyncio as redis
from redis.asyncio import Redis

from affirm.config import settings

logger = logging.getLogger(__name__)

# Global Redis client instance
_redis_client: Optional[Redis] = None


async def init_redis() -> Redis:
    """
    Initialize Redis connection pool and pre-warm a connection.

    Returns:
        Redis client instance
    """
    global _redis_client

    if _redis_client is None:
        _redis_client = redis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
            max_connections=50,
            socket_keepalive=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True,
            health_check_interval=30,
        )
        await _redis_client.ping()
        print("✅ Redis connection established")

    return _redis_client


async def get_redis() -> Redis:
    """Get Redis client, initializing if necessary."""
    if _redis_client is None:
        return await init_redis()

    return _redis_client


async def close_redis() -> None:
    """Close Redis connection."""
    global _redis_client

    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
        print("✅ Redis connection closed")


class CacheManager:
    """
    Redis cache manager with common operations.

    Key naming convention:
        cache:{module}:{resource}:{identifier}

    TTL Guidelines:
        - Subscription projection: 5 minutes (300s)
        - Profile: 5 minutes (300s)
        - Billing history: 15 minutes (900s)
    """

    # Default TTLs in seconds
    TTL_SHORT = 300  # 5 minutes
    TTL_MEDIUM = 900  # 15 minutes

    @staticmethod
    async def get(key: str) -> Optional[Any]:
        """
        Get value from cache.

        Returns:
            Cached value if exists and valid, None otherwise
        """
        try:
            client = await get_redis()
            value = await client.get(key)

            if value is None:
                return None

            return json.loads(value)
        except Exception as e:
            logger.warning("Cache get error for key %s: %s", key, e)
            return None

    @staticmethod
    async def set(
        key: str,
        value: Any,
        ttl: int = TTL_SHORT,
    ) -> bool:
        """
        Set value in cache with TTL.

        Returns:
            True if successful, False otherwise
        """
        try:
            client = await get_redis()
            serialized = json.dumps(value, default=str)
            await client.setex(key, ttl, serialized)
            return True
        except Exception as e:
            logger.warning("Cache set error for key %s: %s", key, e)
            return False

    @staticmethod
    async def delete(key: str) -> bool:
        """
        Delete key from cache.

        Returns:
            True if key was deleted, False otherwise
        """
        try:
            client = await get_redis()
            result = await client.delete(key)
            return result > 0
        except Exception as e:
            logger.warning("Cache delete error for key %s: %s", key, e)
            return False


# =============================================================================
# Cache Key Builders
# =============================================================================

class CacheKeys:
    """Cache key builders for consistent naming."""

    @staticmethod
    def subscription(user_id: str) -> str:
        """Client subscription projection cache key."""
        return f"cache:subscription:{user_id}"

    @staticmethod
    def profile(user_id: str) -> str:
        """User profile cache key."""
        return f"cache:profile:{user_id}"

    @staticmethod
    def billing_history(user_id: str) -> str:
        """Billing history cache key."""
        return f"cache:billing:history:{user_id}"


# =============================================================================
# Cache Invalidation Helpers
# =============================================================================

class CacheInvalidator:
    """Helpers for invalidating related cache entries."""

    @staticmethod
    async def on_profile_update(user_id: str) -> None:
        """Invalidate caches when profile is updated."""
        await CacheManager.delete(CacheKeys.profile(user_id))

    @staticmethod
    async def on_subscription_change(user_id: str) -> None:
        """Invalidate caches when subscription state or ledger changes."""
        await CacheManager.delete(CacheKeys.subscription(user_id))
        await CacheManager.delete(CacheKeys.billing_history(user_id))

    @staticmethod
    async def on_account_delete(user_id: str) -> None:
        """Invalidate every per-user cache entry."""
        await CacheManager.delete(CacheKeys.profile(user_id))
        await CacheInvalidator.on_subscription_change(user_id)
