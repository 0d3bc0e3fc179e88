"""Short-lived JSON cache for credit lookups (Redis with in-process fallback)."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Dict, Optional, Tuple

import redis.asyncio as redis

from config import settings

logger = logging.getLogger(__name__)

CREDIT_CHECK_PREFIX = "credits:"
CREDIT_BALANCE_PREFIX = "credit_balance:"
LOCAL_DEV_CREDITS_PREFIX = "local_dev_credits:"


def credit_check_key(user_id: str) -> str:
    return f"{CREDIT_CHECK_PREFIX}{user_id}"


def credit_balance_key(user_id: str) -> str:
    return f"{CREDIT_BALANCE_PREFIX}{user_id}"


def local_dev_credits_key(user_id: str) -> str:
    return f"{LOCAL_DEV_CREDITS_PREFIX}{user_id}"


class CreditCache:
    """get/set/delete over JSON values with per-key TTL."""

    def __init__(self, backend: str = "memory", redis_url: Optional[str] = None):
        self.backend = (backend or "memory").strip().lower()
        self.redis_url = redis_url or settings.REDIS_URL
        self._local: Dict[str, Tuple[Any, float]] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[Any]:
        if self.backend == "redis":
            try:
                client = redis.from_url(self.redis_url, decode_responses=True)
                try:
                    raw = await client.get(key)
                finally:
                    await client.aclose()
                return json.loads(raw) if raw is not None else None
            except Exception as exc:
                logger.warning("Credit cache read fell back to local store: %s", exc)
        return await self._local_get(key)

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        ttl = max(int(ttl_seconds), 1)
        if self.backend == "redis":
            try:
                client = redis.from_url(self.redis_url, decode_responses=True)
                try:
                    await client.set(key, json.dumps(value), ex=ttl)
                finally:
                    await client.aclose()
                return
            except Exception as exc:
                logger.warning("Credit cache write fell back to local store: %s", exc)
        async with self._lock:
            now = time.time()
            self._prune_expired(now)
            self._local[key] = (value, now + ttl)

    async def delete(self, key: str) -> None:
        if self.backend == "redis":
            try:
                client = redis.from_url(self.redis_url, decode_responses=True)
                try:
                    await client.delete(key)
                finally:
                    await client.aclose()
            except Exception as exc:
                logger.warning("Credit cache delete fell back to local store: %s", exc)
        async with self._lock:
            self._local.pop(key, None)

    async def _local_get(self, key: str) -> Optional[Any]:
        async with self._lock:
            entry = self._local.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if time.time() >= expires_at:
                self._local.pop(key, None)
                return None
            return value

    def _prune_expired(self, now: float) -> None:
        expired = [key for key, (_, expires_at) in self._local.items() if now >= expires_at]
        for key in expired:
            del self._local[key]

    def clear(self) -> None:
        self._local.clear()


credit_cache = CreditCache(backend=settings.CREDIT_CACHE_BACKEND)
