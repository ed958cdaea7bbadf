"""
Unit tests for RedisManager key helpers and lock commands against a mocked client.

Run: pytest backend/tests/test_redis_manager.py -v
"""
from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from shared.utils.redis_manager import RedisManager, dub_verdict_key, season_snapshot_key


def test_keys() -> None:
    assert season_snapshot_key("FALL", 2024) == "snap:season:2024:fall"
    assert dub_verdict_key(154587) == "snap:dub:154587"


def test_client_requires_connect(settings) -> None:
    with pytest.raises(RuntimeError):
        RedisManager(settings).client


@pytest.mark.asyncio
async def test_snapshot_commands(settings) -> None:
    client = AsyncMock()
    client.get.return_value = '{"payload": []}'
    manager = RedisManager(settings, client=client)

    await manager.set_snapshot("snap:dub:1", "{}", ttl_s=60)
    assert await manager.get_snapshot("snap:dub:1") == '{"payload": []}'
    await manager.delete_snapshot("snap:dub:1")

    client.set.assert_awaited_once_with("snap:dub:1", "{}", ex=60)
    client.delete.assert_awaited_once_with("snap:dub:1")


@pytest.mark.asyncio
async def test_job_lock(settings) -> None:
    client = AsyncMock()
    client.set.return_value = None
    client.eval.return_value = 1
    manager = RedisManager(settings, client=client)

    assert await manager.try_acquire_job_lock("season_sync", "worker-a", ttl_s=3600) is False
    client.set.assert_awaited_once_with("lock:job:season_sync", "worker-a", nx=True, ex=3600)

    assert await manager.release_job_lock("season_sync", "worker-a") is True
    args = client.eval.await_args.args
    assert args[1:] == (1, "lock:job:season_sync", "worker-a")
