"""
Unit tests for per-source interval throttling.

Run: pytest backend/tests/test_rate_limiter.py -v
"""
from __future__ import annotations

import pytest

from shared.utils.rate_limiter import IntervalLimiter, SourceRateLimiter

from tests.fakes import FakeSleep


@pytest.mark.asyncio
async def test_first_call_does_not_wait(fake_sleep: FakeSleep) -> None:
    limiter = IntervalLimiter(0.7, sleep=fake_sleep, monotonic=fake_sleep.monotonic)
    assert await limiter.acquire() == 0.0
    assert fake_sleep.calls == []


@pytest.mark.asyncio
async def test_back_to_back_calls_are_spaced(fake_sleep: FakeSleep) -> None:
    limiter = IntervalLimiter(0.7, sleep=fake_sleep, monotonic=fake_sleep.monotonic)
    await limiter.acquire()
    waited = await limiter.acquire()
    assert waited == pytest.approx(0.7)
    assert fake_sleep.calls == [pytest.approx(0.7)]
    assert limiter.last_call == pytest.approx(0.7)


@pytest.mark.asyncio
async def test_no_wait_once_interval_has_passed(fake_sleep: FakeSleep) -> None:
    limiter = IntervalLimiter(1.0, sleep=fake_sleep, monotonic=fake_sleep.monotonic)
    await limiter.acquire()
    fake_sleep.elapsed += 1.5
    assert await limiter.acquire() == 0.0


@pytest.mark.asyncio
async def test_sources_are_throttled_independently(fake_sleep: FakeSleep) -> None:
    limiter = SourceRateLimiter(
        {"catalog": 0.7, "community": 1.0},
        sleep=fake_sleep,
        monotonic=fake_sleep.monotonic,
    )
    await limiter.wait_for_slot("catalog")
    await limiter.wait_for_slot("community")
    assert fake_sleep.calls == []

    await limiter.wait_for_slot("community")
    assert fake_sleep.calls == [pytest.approx(1.0)]


def test_unknown_source_uses_default_interval() -> None:
    limiter = SourceRateLimiter({"catalog": 0.7}, default_interval_s=0.25)
    assert limiter.limiter("scrape").min_interval_s == 0.25
    assert limiter.limiter("catalog") is limiter.limiter("catalog")
