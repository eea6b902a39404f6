"""
Composite status cache.

Short-TTL Redis cache of composite progress snapshots. Cache failures are
logged and ignored; the store stays authoritative.
"""

import json
from typing import Any, Dict, Optional

from shared.config import settings
from shared.errors import RetryableError
from shared.logging import get_logger
from shared.models.progress import ProgressSnapshot
from shared.redis_client import RedisClient

logger = get_logger(__name__)


class StatusCache:
    """Owner-tagged snapshot cache; a no-op without Redis."""

    def __init__(self, redis_client: Optional[RedisClient] = None, ttl_seconds: Optional[int] = None):
        self.redis_client = redis_client
        self.ttl_seconds = ttl_seconds or settings.status_cache_ttl_seconds

    @staticmethod
    def _key(composite_id: str) -> str:
        return f"composite_status:{composite_id}"

    async def get(self, composite_id: str) -> Optional[Dict[str, Any]]:
        """
        Cached entry for a composite.

        Returns:
            {"owner_id": ..., "snapshot": ProgressSnapshot} or None on miss
        """
        if self.redis_client is None:
            return None
        try:
            cached = await self.redis_client.get(self._key(composite_id))
        except RetryableError as e:
            logger.warning("Failed to read composite status cache", exc_info=e, extra={"job_id": composite_id})
            return None
        if not cached:
            return None
        try:
            data = json.loads(cached)
            return {
                "owner_id": data["owner_id"],
                "snapshot": ProgressSnapshot.model_validate(data["snapshot"]),
            }
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Discarding malformed cache entry", exc_info=e, extra={"job_id": composite_id})
            return None

    async def set(self, composite_id: str, owner_id: str, snapshot: ProgressSnapshot) -> None:
        if self.redis_client is None:
            return
        payload = json.dumps({"owner_id": owner_id, "snapshot": snapshot.model_dump(mode="json")})
        try:
            await self.redis_client.set(self._key(composite_id), payload, ex=self.ttl_seconds)
        except RetryableError as e:
            logger.warning("Failed to cache composite status", exc_info=e, extra={"job_id": composite_id})

    async def invalidate(self, composite_id: str) -> None:
        if self.redis_client is None:
            return
        try:
            await self.redis_client.delete(self._key(composite_id))
        except RetryableError as e:
            logger.warning("Failed to invalidate composite status", exc_info=e, extra={"job_id": composite_id})

    async def close(self) -> None:
        if self.redis_client is not None:
            await self.redis_client.close()
