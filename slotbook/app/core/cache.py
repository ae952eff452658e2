"""Availability cache with automatic serialization.

Advisory only: every backend call is bounded by a timeout and any fault is
logged and treated as a miss (reads) or a no-op (writes). Booking re-checks
availability inside its transaction, so a stale entry is never trusted for
correctness.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time as _time
from datetime import date, time
from typing import Any, Protocol, Sequence

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

KEY_PREFIX = "avail"


def build_availability_key(provider_id: int, day: date | str, plan: str | None = None) -> str:
    """``avail:{provider_id}:{YYYY-MM-DD}:{plan or 'any'}``"""
    day_str = day.isoformat() if isinstance(day, date) else str(day)
    plan_str = (str(plan).strip() if plan else "") or "any"
    return f"{KEY_PREFIX}:{provider_id}:{day_str}:{plan_str}"


def build_day_pattern(provider_id: int, day: date | str) -> str:
    day_str = day.isoformat() if isinstance(day, date) else str(day)
    return f"{KEY_PREFIX}:{provider_id}:{day_str}:*"


class CacheBackend(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def setex(self, key: str, ttl_seconds: int, value: str) -> None: ...

    async def delete(self, *keys: str) -> int: ...

    async def delete_pattern(self, pattern: str) -> int: ...


class MemoryBackend:
    """In-process backend (single worker, tests, local development)."""

    def __init__(self, clock=_time.monotonic) -> None:
        self._data: dict[str, tuple[float, str]] = {}
        self._clock = clock

    async def get(self, key: str) -> str | None:
        item = self._data.get(key)
        if item is None:
            return None
        expires_at, value = item
        if expires_at <= self._clock():
            self._data.pop(key, None)
            return None
        return value

    async def setex(self, key: str, ttl_seconds: int, value: str) -> None:
        self._data[key] = (self._clock() + ttl_seconds, value)

    async def delete(self, *keys: str) -> int:
        return sum(1 for k in keys if self._data.pop(k, None) is not None)

    async def delete_pattern(self, pattern: str) -> int:
        prefix = pattern[:-1] if pattern.endswith("*") else pattern
        doomed = [k for k in self._data if k.startswith(prefix)]
        return await self.delete(*doomed)


class RedisBackend:
    """Redis backend; values are JSON strings stored with SETEX."""

    def __init__(self, client: aioredis.Redis) -> None:
        self.client = client

    @classmethod
    def from_url(cls, url: str, timeout_seconds: float = 0.5) -> "RedisBackend":
        client = aioredis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=timeout_seconds,
            socket_timeout=timeout_seconds,
        )
        return cls(client)

    async def get(self, key: str) -> str | None:
        return await self.client.get(key)

    async def setex(self, key: str, ttl_seconds: int, value: str) -> None:
        await self.client.setex(key, ttl_seconds, value)

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return int(await self.client.delete(*keys))

    async def delete_pattern(self, pattern: str) -> int:
        keys = [k async for k in self.client.scan_iter(match=pattern)]
        return await self.delete(*keys)

    async def close(self) -> None:
        await self.client.aclose()


class AvailabilityCache:
    """Fail-open cache of computed slot lists."""

    def __init__(self, backend: CacheBackend, *, ttl_seconds: int = 60, timeout_seconds: float = 0.5) -> None:
        self.backend = backend
        self.ttl_seconds = ttl_seconds
        self.timeout_seconds = timeout_seconds

    async def _call(self, op: str, key: str, fn, *args: Any) -> Any:
        try:
            return await asyncio.wait_for(fn(*args), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning("Cache %s timed out for %s", op, key)
        except Exception as e:
            logger.warning("Cache %s failed for %s: %s", op, key, e)
        return None

    async def get(self, key: str) -> list[time] | None:
        raw = await self._call("get", key, self.backend.get, key)
        if raw is None:
            logger.debug("Cache MISS: %s", key)
            return None
        try:
            slots = [time.fromisoformat(v) for v in json.loads(raw)]
        except (TypeError, ValueError) as e:
            logger.warning("Cache entry %s is corrupt, ignoring: %s", key, e)
            return None
        logger.debug("Cache HIT: %s", key)
        return slots

    async def set(self, key: str, slots: Sequence[time], ttl_seconds: int | None = None) -> None:
        ttl = int(ttl_seconds if ttl_seconds is not None else self.ttl_seconds)
        if ttl <= 0:
            return
        payload = json.dumps([s.strftime("%H:%M") for s in slots])
        await self._call("set", key, self.backend.setex, key, ttl, payload)

    async def invalidate(self, key: str) -> None:
        await self._call("delete", key, self.backend.delete, key)

    async def invalidate_day(self, provider_id: int, day: date | str) -> None:
        """Drop every plan variant cached for ``provider_id`` on ``day``."""
        pattern = build_day_pattern(provider_id, day)
        await self._call("delete_pattern", pattern, self.backend.delete_pattern, pattern)


def build_cache(redis_url: str | None, *, ttl_seconds: int = 60, timeout_seconds: float = 0.5) -> AvailabilityCache:
    if redis_url:
        backend: CacheBackend = RedisBackend.from_url(redis_url, timeout_seconds=timeout_seconds)
        logger.info("Availability cache: redis backend")
    else:
        backend = MemoryBackend()
        logger.info("Availability cache: in-process memory backend")
    return AvailabilityCache(backend, ttl_seconds=ttl_seconds, timeout_seconds=timeout_seconds)


__all__ = [
    "AvailabilityCache",
    "CacheBackend",
    "MemoryBackend",
    "RedisBackend",
    "build_availability_key",
    "build_day_pattern",
    "build_cache",
]
