"""
Redis client.

Async Redis wrapper used as a short-lived status snapshot cache.
"""

from typing import Optional
import redis.asyncio as redis
from shared.config import settings
from shared.errors import RetryableError, ConfigError


class RedisClient:
    """Async Redis client with key prefixing."""

    def __init__(self, url: Optional[str] = None, prefix: str = "reviewreel:cache:"):
        """
        Initialize Redis client.

        Args:
            url: Redis URL (defaults to REDIS_URL)
            prefix: Prefix applied to every key

        Raises:
            ConfigError: If no URL is configured or the client cannot be created
        """
        url = url or settings.redis_url
        if not url:
            raise ConfigError("REDIS_URL is not configured")
        try:
            self.client = redis.from_url(url, decode_responses=False)
        except Exception as e:
            raise ConfigError(f"Failed to initialize Redis client: {str(e)}") from e
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    async def get(self, key: str) -> Optional[str]:
        """
        Get a string value.

        Returns:
            Decoded value or None when the key is missing

        Raises:
            RetryableError: If Redis is unreachable
        """
        try:
            value = await self.client.get(self._key(key))
        except Exception as e:
            raise RetryableError(f"Redis GET failed: {str(e)}") from e
        if value is None:
            return None
        return value.decode("utf-8") if isinstance(value, bytes) else value

    async def set(self, key: str, value: str, ex: Optional[int] = None) -> bool:
        """
        Set a string value with optional expiry in seconds.

        Raises:
            RetryableError: If Redis is unreachable
        """
        try:
            return bool(await self.client.set(self._key(key), value.encode("utf-8"), ex=ex))
        except Exception as e:
            raise RetryableError(f"Redis SET failed: {str(e)}") from e

    async def delete(self, key: str) -> int:
        """
        Delete a key.

        Raises:
            RetryableError: If Redis is unreachable
        """
        try:
            return await self.client.delete(self._key(key))
        except Exception as e:
            raise RetryableError(f"Redis DELETE failed: {str(e)}") from e

    async def close(self) -> None:
        """Close the connection pool."""
        await self.client.aclose()
