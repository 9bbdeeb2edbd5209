"""
Redis cache wrapper for derived performance data.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

import redis.asyncio as redis

logger = logging.getLogger(__name__)


class RedisCache:
    def __init__(self, url: str, prefix: str = "perf:", enabled: bool = True):
        self._client = redis.Redis.from_url(url, decode_responses=True)
        self._prefix = prefix
        self._enabled = enabled

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def get_json(self, key: str) -> Optional[Any]:
        if not self._enabled:
            return None
        try:
            raw = await self._client.get(self._key(key))
            if raw is None:
                return None
            return json.loads(raw)
        except Exception as exc:
            logger.debug("Redis get_json failed: %s", exc)
            return None

    async def set_json(self, key: str, value: Any, ttl_seconds: int) -> None:
        if not self._enabled:
            return
        try:
            await self._client.set(self._key(key), json.dumps(value), ex=ttl_seconds)
        except Exception as exc:
            logger.debug("Redis set_json failed: %s", exc)

    async def delete_prefix(self, prefix: str) -> int:
        """Delete every key under prefix; returns the number deleted"""
        if not self._enabled:
            return 0
        deleted = 0
        try:
            async for key in self._client.scan_iter(match=f"{self._key(prefix)}*"):
                deleted += await self._client.delete(key)
        except Exception as exc:
            logger.warning("Redis delete_prefix failed: %s", exc)
        return deleted

    async def publish(self, channel: str, message: Any) -> bool:
        if not self._enabled:
            return False
        try:
            await self._client.publish(channel, json.dumps(message))
            return True
        except Exception as exc:
            logger.warning("Redis publish failed: %s", exc)
            return False

    async def close(self) -> None:
        try:
            await self._client.close()
        except Exception:
            return
