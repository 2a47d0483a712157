"""Tests for the dedup cache."""

from __future__ import annotations

import asyncio

import pytest

from ledger_context.cache import CacheKey, DedupCache


class Owner:
    pass


class CountingProducer:
    def __init__(self, value: object = "value", *, delay: float = 0.0) -> None:
        self.value = value
        self.delay = delay
        self.calls = 0

    async def __call__(self) -> object:
        self.calls += 1
        await asyncio.sleep(self.delay)
        return self.value


def test_cache_key_compares_owner_by_identity() -> None:
    first, second = Owner(), Owner()

    assert CacheKey(first, "m", (1,)) == CacheKey(first, "m", (1,))
    assert CacheKey(first, "m", (1,)) != CacheKey(second, "m", (1,))
    assert CacheKey(first, "m", (1,)).with_params((2,)) == CacheKey(first, "m", (2,))
    assert len({CacheKey(first, "m"), CacheKey(first, "m")}) == 1


@pytest.mark.asyncio
async def test_concurrent_calls_share_one_producer_run(clock) -> None:
    cache = DedupCache(clock=clock)
    key = CacheKey(Owner(), "fetch")
    producer = CountingProducer(delay=0.01)

    results = await asyncio.gather(
        *(cache.deduplicated(key, producer, interval_seconds=2) for _ in range(5))
    )

    assert producer.calls == 1
    assert results == ["value"] * 5


@pytest.mark.asyncio
async def test_entry_expires_after_interval(clock) -> None:
    cache = DedupCache(clock=clock)
    key = CacheKey(Owner(), "fetch")
    producer = CountingProducer()

    await cache.deduplicated(key, producer, interval_seconds=2)
    clock.advance(1.9)
    await cache.deduplicated(key, producer, interval_seconds=2)
    assert producer.calls == 1

    clock.advance(0.2)
    await cache.deduplicated(key, producer, interval_seconds=2)
    assert producer.calls == 2


@pytest.mark.asyncio
async def test_failures_are_not_cached(clock) -> None:
    cache = DedupCache(clock=clock)
    key = CacheKey(Owner(), "fetch")
    attempts = 0

    async def flaky() -> str:
        nonlocal attempts
        attempts += 1
        if attempts == 1:
            raise RuntimeError("boom")
        return "ok"

    with pytest.raises(RuntimeError):
        await cache.deduplicated(key, flaky, interval_seconds=2)
    assert key not in cache

    assert await cache.deduplicated(key, flaky, interval_seconds=2) == "ok"
    assert attempts == 2


@pytest.mark.asyncio
async def test_bypass_refreshes_alternative_entry(clock) -> None:
    cache = DedupCache(clock=clock)
    owner = Owner()
    cached_key = CacheKey(owner, "read", (False,))
    fresh_key = CacheKey(owner, "read", (True,))

    await cache.deduplicated(cached_key, CountingProducer("old"), interval_seconds=2)
    fresh = CountingProducer("new")
    value = await cache.deduplicated(
        fresh_key, fresh, alternative_params=(False,), interval_seconds=0
    )
    again = await cache.deduplicated(
        fresh_key, fresh, alternative_params=(False,), interval_seconds=0
    )

    assert (value, again) == ("new", "new")
    assert fresh.calls == 2
    assert cache.peek(cached_key, 2) == (True, "new")


@pytest.mark.asyncio
async def test_cached_call_joins_in_flight_bypass_call(clock) -> None:
    cache = DedupCache(clock=clock)
    owner = Owner()
    fresh = CountingProducer("fresh", delay=0.01)
    cached = CountingProducer("cached")

    results = await asyncio.gather(
        cache.deduplicated(
            CacheKey(owner, "read", (True,)), fresh, alternative_params=(False,), interval_seconds=0
        ),
        cache.deduplicated(
            CacheKey(owner, "read", (False,)), cached, alternative_params=(True,), interval_seconds=2
        ),
    )

    assert results == ["fresh", "fresh"]
    assert cached.calls == 0


@pytest.mark.asyncio
async def test_cancelled_waiter_does_not_cancel_shared_call(clock) -> None:
    cache = DedupCache(clock=clock)
    key = CacheKey(Owner(), "fetch")
    producer = CountingProducer(delay=0.02)

    first = asyncio.ensure_future(cache.deduplicated(key, producer, interval_seconds=2))
    second = asyncio.ensure_future(cache.deduplicated(key, producer, interval_seconds=2))
    await asyncio.sleep(0)
    first.cancel()

    assert await second == "value"
    assert producer.calls == 1
    assert cache.peek(key, 2) == (True, "value")


def test_store_peek_invalidate_and_forget(clock) -> None:
    cache = DedupCache(clock=clock)
    owner, other = Owner(), Owner()
    cache.store(CacheKey(owner, "a"), 1)
    cache.store(CacheKey(owner, "b"), 2)
    cache.store(CacheKey(other, "a"), 3)

    assert cache.peek(CacheKey(owner, "a"), 1) == (True, 1)
    clock.advance(5)
    assert cache.peek(CacheKey(owner, "a"), 1) == (False, None)

    assert cache.invalidate(CacheKey(owner, "a")) is True
    assert cache.invalidate(CacheKey(owner, "a")) is False
    assert cache.forget(owner, keep_methods=("b",)) == 0
    assert cache.forget(owner) == 1
    assert len(cache) == 1

    cache.clear()
    assert len(cache) == 0


def test_least_recently_used_entry_is_evicted(clock) -> None:
    cache = DedupCache(clock=clock, max_entries=3)
    owner = Owner()
    for name in "abc":
        cache.store(CacheKey(owner, name), name)

    assert cache.peek(CacheKey(owner, "a"), 10) == (True, "a")
    cache.store(CacheKey(owner, "d"), "d")

    assert len(cache) == 3
    assert CacheKey(owner, "b") not in cache
    assert CacheKey(owner, "a") in cache
    assert CacheKey(owner, "d") in cache


def test_entries_past_max_age_are_dropped(clock) -> None:
    cache = DedupCache(clock=clock, max_age_seconds=60)
    owner = Owner()
    cache.store(CacheKey(owner, "old"), 1)
    clock.advance(30)
    cache.store(CacheKey(owner, "young"), 2)
    clock.advance(30)

    assert cache.peek(CacheKey(owner, "old"), 1_000) == (False, None)
    assert CacheKey(owner, "old") not in cache

    clock.advance(30)
    assert cache.purge() == 1
    assert len(cache) == 0


def test_overflow_purges_expired_before_evicting(clock) -> None:
    cache = DedupCache(clock=clock, max_entries=2, max_age_seconds=60)
    owner = Owner()
    cache.store(CacheKey(owner, "stale"), 1)
    clock.advance(59)
    cache.store(CacheKey(owner, "kept"), 2)
    clock.advance(1)
    cache.store(CacheKey(owner, "new"), 3)

    assert CacheKey(owner, "stale") not in cache
    assert CacheKey(owner, "kept") in cache
    assert CacheKey(owner, "new") in cache


@pytest.mark.asyncio
async def test_tracked_future_is_joined_and_cached(clock) -> None:
    cache = DedupCache(clock=clock)
    key = CacheKey(Owner(), "fetch")
    future = asyncio.get_running_loop().create_future()
    cache.track(key, future)
    producer = CountingProducer("unused")

    waiter = asyncio.ensure_future(cache.deduplicated(key, producer, interval_seconds=2))
    await asyncio.sleep(0)
    assert cache.in_flight(key) is future
    future.set_result("shared")

    assert await waiter == "shared"
    assert producer.calls == 0
    assert cache.peek(key, 2) == (True, "shared")


def test_cache_size_must_be_positive() -> None:
    with pytest.raises(ValueError):
        DedupCache(max_entries=0)
