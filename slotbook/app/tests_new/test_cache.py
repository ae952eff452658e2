import asyncio
from datetime import date, time
from types import SimpleNamespace

from slotbook.app.core.cache import (
    AvailabilityCache,
    MemoryBackend,
    build_availability_key,
    build_cache,
    build_day_pattern,
)

from .conftest import MONDAY


class _Tick:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_key_format():
    assert build_availability_key(7, date(2026, 10, 19)) == "avail:7:2026-10-19:any"
    assert build_availability_key(7, "2026-10-19", "trial") == "avail:7:2026-10-19:trial"
    assert build_availability_key(7, "2026-10-19", "  ") == "avail:7:2026-10-19:any"
    assert build_day_pattern(7, "2026-10-19") == "avail:7:2026-10-19:*"


def test_memory_backend_round_trip_and_ttl_expiry():
    tick = _Tick()
    cache = AvailabilityCache(MemoryBackend(clock=tick), ttl_seconds=60)
    key = build_availability_key(1, MONDAY)

    async def scenario():
        await cache.set(key, [time(9, 0), time(9, 30)])
        first = await cache.get(key)
        tick.now += 61
        second = await cache.get(key)
        return first, second

    first, second = asyncio.run(scenario())
    assert first == [time(9, 0), time(9, 30)]
    assert second is None


def test_zero_ttl_is_not_stored():
    cache = AvailabilityCache(MemoryBackend(), ttl_seconds=0)
    key = build_availability_key(1, MONDAY)

    async def scenario():
        await cache.set(key, [time(9, 0)])
        return await cache.get(key)

    assert asyncio.run(scenario()) is None


def test_invalidate_day_drops_every_plan_variant_only_for_that_day():
    cache = AvailabilityCache(MemoryBackend())

    async def scenario():
        for plan in (None, "trial", "standard"):
            await cache.set(build_availability_key(1, MONDAY, plan), [time(9, 0)])
        await cache.set(build_availability_key(1, "2026-10-20"), [time(9, 0)])
        await cache.set(build_availability_key(2, MONDAY), [time(9, 0)])
        await cache.invalidate_day(1, MONDAY)
        return (
            [await cache.get(build_availability_key(1, MONDAY, p)) for p in (None, "trial", "standard")],
            await cache.get(build_availability_key(1, "2026-10-20")),
            await cache.get(build_availability_key(2, MONDAY)),
        )

    gone, other_day, other_provider = asyncio.run(scenario())
    assert gone == [None, None, None]
    assert other_day == [time(9, 0)]
    assert other_provider == [time(9, 0)]


def test_backend_errors_fail_open(caplog):
    async def boom(*_args, **_kwargs):
        raise ConnectionError("redis down")

    backend = SimpleNamespace(get=boom, setex=boom, delete=boom, delete_pattern=boom)
    cache = AvailabilityCache(backend)

    async def scenario():
        await cache.set("avail:1:2026-10-19:any", [time(9, 0)])
        await cache.invalidate_day(1, MONDAY)
        return await cache.get("avail:1:2026-10-19:any")

    assert asyncio.run(scenario()) is None
    assert "redis down" in caplog.text


def test_slow_backend_times_out_as_miss():
    async def slow_get(_key):
        await asyncio.sleep(1)
        return '["09:00"]'

    backend = SimpleNamespace(get=slow_get)
    cache = AvailabilityCache(backend, timeout_seconds=0.01)
    assert asyncio.run(cache.get("avail:1:2026-10-19:any")) is None


def test_corrupt_entry_is_ignored():
    async def bad_get(_key):
        return "not json"

    cache = AvailabilityCache(SimpleNamespace(get=bad_get))
    assert asyncio.run(cache.get("avail:1:2026-10-19:any")) is None


def test_build_cache_without_redis_uses_memory():
    cache = build_cache(None, ttl_seconds=30, timeout_seconds=0.2)
    assert isinstance(cache.backend, MemoryBackend)
    assert cache.ttl_seconds == 30
    assert cache.timeout_seconds == 0.2


def test_engine_serves_second_read_from_cache_and_invalidates_on_book(world_factory):
    async def scenario():
        w = await world_factory()
        try:
            await w.engine.grant_points(w.client_id, 10, "signup_bonus")
            first = await w.engine.get_available_slots(w.barber_id, MONDAY)
            second = await w.engine.get_available_slots(w.barber_id, MONDAY)
            await w.engine.book(w.client_id, w.barber_id, MONDAY, "10:00")
            third = await w.engine.get_available_slots(w.barber_id, MONDAY)
            return first, second, third
        finally:
            await w.dispose()

    first, second, third = asyncio.run(scenario())
    assert first.from_cache is False
    assert second.from_cache is True
    assert second.slots == first.slots
    assert third.from_cache is False
    assert time(10, 0) not in third.slots
    assert len(third.slots) == 15


def test_invalidate_drops_only_that_key():
    cache = AvailabilityCache(MemoryBackend())
    key = build_availability_key(1, MONDAY)
    trial_key = build_availability_key(1, MONDAY, "trial")

    async def scenario():
        await cache.set(key, [time(9, 0)])
        await cache.set(trial_key, [time(9, 30)])
        await cache.invalidate(key)
        return await cache.get(key), await cache.get(trial_key)

    gone, kept = asyncio.run(scenario())
    assert gone is None
    assert kept == [time(9, 30)]


def test_invalidate_with_failing_backend_logs_and_returns(caplog):
    async def boom(_key):
        raise ConnectionError("redis down")

    cache = AvailabilityCache(SimpleNamespace(delete=boom))
    assert asyncio.run(cache.invalidate("avail:1:2026-10-19:any")) is None
    assert "Cache delete failed for avail:1:2026-10-19:any: redis down" in caplog.text
