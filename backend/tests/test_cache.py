"""
Tests for the two-tier reconciliation cache.
Run: pytest backend/tests/test_cache.py -v
"""
from __future__ import annotations

import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from dubs.cache import MemoryCache, ReconciliationCache, SnapshotCache, compute_ttl, merge_season_entities
from shared.models.domain import DubVerdict
from shared.models.enums import LifecycleState, Season
from tests.fakes import make_entity

NOW = datetime(2024, 5, 10, 12, 0, tzinfo=timezone.utc)


def _verdict(entity_id: int = 1, **kwargs) -> DubVerdict:
    fields = {"has_dub": True, "confidence": 70, "platforms": ["Crunchyroll"], "sources": ["catalog", "community"]}
    fields.update(kwargs)
    return DubVerdict(entity_id=entity_id, resolved_at=NOW, **fields)


@pytest.fixture
def snapshots(fake_redis, dub_settings, clock):
    return SnapshotCache(fake_redis, dub_settings, clock)


# ── TTL tiers ───────────────────────────────────────────────────────────

@pytest.mark.parametrize(
    "lifecycle,season,year,expected",
    [
        (LifecycleState.ONGOING, Season.WINTER, 2020, 15 * 60),
        (LifecycleState.FINISHED, Season.SPRING, 2024, 15 * 60),
        (LifecycleState.FINISHED, Season.SUMMER, 2024, 15 * 60),
        (LifecycleState.FINISHED, Season.WINTER, 2024, 2 * 3600),
        (LifecycleState.FINISHED, Season.FALL, 2022, 7 * 86400),
        (LifecycleState.CANCELLED, None, None, 2 * 3600),
        (None, Season.SUMMER, 2023, 7 * 86400),
    ],
)
def test_compute_ttl(lifecycle, season, year, expected, dub_settings) -> None:
    assert compute_ttl(lifecycle, season, year, NOW, dub_settings) == expected


# ── Memory tier ─────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_memory_cache_expires(clock) -> None:
    cache: MemoryCache[str] = MemoryCache(ttl_s=60, clock=clock)
    await cache.put(1, "yes")
    clock.advance(seconds=59)
    assert await cache.get(1) == "yes"
    clock.advance(seconds=1)
    assert await cache.get(1) is None
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_memory_cache_prunes_expired_entries_on_put(clock) -> None:
    cache: MemoryCache[str] = MemoryCache(ttl_s=60, clock=clock)
    await cache.put(1, "old")
    await cache.put(2, "old")
    clock.advance(seconds=61)

    await cache.put(3, "new")

    assert len(cache) == 1
    assert await cache.get(3) == "new"


@pytest.mark.asyncio
async def test_memory_cache_invalidate(clock) -> None:
    cache: MemoryCache[str] = MemoryCache(ttl_s=60, clock=clock)
    await cache.put(1, "yes")
    await cache.put(2, "no")
    await cache.invalidate(1)
    assert await cache.get(1) is None
    assert await cache.get(2) == "no"
    await cache.clear()
    assert len(cache) == 0


# ── Snapshot tier ───────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_snapshot_round_trip_and_freshness(snapshots, fake_redis, clock) -> None:
    await snapshots.put(_verdict(), ttl_s=900)

    assert fake_redis.ttls["snap:dub:1"] == 30 * 86400
    assert await snapshots.get(1) == _verdict()
    clock.advance(seconds=900)
    assert await snapshots.get(1) is None
    assert "snap:dub:1" in fake_redis.values


@pytest.mark.asyncio
async def test_snapshot_corrupt_value_is_a_miss(snapshots, fake_redis) -> None:
    fake_redis.values["snap:dub:1"] = "{not json"
    assert await snapshots.get(1) is None


@pytest.mark.asyncio
async def test_snapshot_envelope_without_payload_is_a_miss(snapshots, fake_redis) -> None:
    envelope = json.dumps({
        "stored_at": "2024-05-10T12:00:00+00:00",
        "expires_at": "2999-01-01T00:00:00+00:00",
    })
    fake_redis.values["snap:dub:1"] = envelope
    fake_redis.values["snap:season:2024:spring"] = envelope
    assert await snapshots.get(1) is None
    assert await snapshots.get_season(Season.SPRING, 2024) is None


@pytest.mark.asyncio
async def test_snapshot_redis_failure_is_a_miss(dub_settings, clock) -> None:
    redis = AsyncMock()
    redis.get_snapshot.side_effect = RedisConnectionError("down")
    redis.set_snapshot.side_effect = RedisConnectionError("down")
    snapshots = SnapshotCache(redis, dub_settings, clock)

    await snapshots.put(_verdict(), ttl_s=900)
    assert await snapshots.get(1) is None


@pytest.mark.asyncio
async def test_season_snapshot(snapshots, fake_redis, clock) -> None:
    stored = await snapshots.put_season(Season.WINTER, 2024, [make_entity(1), make_entity(2)])
    assert "snap:season:2024:winter" in fake_redis.values
    assert (stored.expires_at - stored.stored_at).total_seconds() == 2 * 3600

    loaded = await snapshots.get_season(Season.WINTER, 2024)
    assert [e.external_id for e in loaded.entities] == [1, 2]
    assert loaded.is_fresh(clock.now)
    clock.advance(hours=2)
    assert not (await snapshots.get_season(Season.WINTER, 2024)).is_fresh(clock.now)


# ── Merge ───────────────────────────────────────────────────────────────

def test_merge_keeps_dub_fields_and_missing_entities() -> None:
    existing = [
        make_entity(1, has_dub=True, dub_confidence=70, dub_platforms=["Crunchyroll"], dub_checked_at=NOW),
        make_entity(2),
    ]
    fresh = [make_entity(1, episodes_observed=5), make_entity(3)]

    merged = {e.external_id: e for e in merge_season_entities(existing, fresh)}

    assert sorted(merged) == [1, 2, 3]
    assert merged[1].episodes_observed == 5
    assert merged[1].has_dub is True
    assert merged[1].dub_confidence == 70
    assert merged[1].dub_platforms == ["Crunchyroll"]


def test_merge_fresh_dub_fields_win() -> None:
    existing = [make_entity(1, has_dub=True, dub_confidence=70)]
    fresh = [make_entity(1, has_dub=True, dub_confidence=100)]
    assert merge_season_entities(existing, fresh)[0].dub_confidence == 100


# ── Both tiers ──────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_reconciliation_cache_promotes_snapshot_hits(snapshots, dub_settings, clock) -> None:
    cache = ReconciliationCache(dub_settings, snapshots, clock)
    await cache.put(make_entity(1), _verdict())
    await cache.memory.clear()

    assert await cache.get(1) == _verdict()
    assert len(cache.memory) == 1


@pytest.mark.asyncio
async def test_reconciliation_cache_uses_lifecycle_ttl(snapshots, dub_settings, clock) -> None:
    cache = ReconciliationCache(dub_settings, snapshots, clock)
    await cache.put(make_entity(1, lifecycle_state=LifecycleState.ONGOING), _verdict(1))
    await cache.put(
        make_entity(2, lifecycle_state=LifecycleState.FINISHED, season=Season.FALL, year=2022), _verdict(2)
    )
    await cache.memory.clear()
    clock.advance(hours=1)

    assert await cache.get(1) is None
    assert await cache.get(2) == _verdict(2)


@pytest.mark.asyncio
async def test_reconciliation_cache_invalidate(snapshots, fake_redis, dub_settings, clock) -> None:
    cache = ReconciliationCache(dub_settings, snapshots, clock)
    await cache.put(make_entity(1), _verdict())
    await cache.invalidate(1)
    assert await cache.get(1) is None
    assert "snap:dub:1" not in fake_redis.values
