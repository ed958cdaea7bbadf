"""
Tests for the jobs entrypoint wiring.
Run: pytest backend/tests/test_main.py -v
"""
from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

import jobs.main as main_module


@pytest.fixture
def managers(monkeypatch: pytest.MonkeyPatch, settings, dub_settings) -> dict[str, AsyncMock]:
    instances = {"db": AsyncMock(), "redis": AsyncMock(), "fetcher": AsyncMock()}
    monkeypatch.setattr(main_module, "get_settings", lambda: settings)
    monkeypatch.setattr(main_module, "get_dub_settings", lambda: dub_settings)
    monkeypatch.setattr(main_module, "DatabaseManager", MagicMock(return_value=instances["db"]))
    monkeypatch.setattr(main_module, "RedisManager", MagicMock(return_value=instances["redis"]))
    monkeypatch.setattr(main_module, "RateLimitedFetcher", MagicMock(return_value=instances["fetcher"]))
    monkeypatch.setattr(main_module, "build_runner", MagicMock(return_value="runner"))
    return instances


@pytest.mark.asyncio
async def test_connected_runner_closes_everything(managers) -> None:
    async with main_module.connected_runner() as runner:
        assert runner == "runner"
        managers["fetcher"].start.assert_awaited_once()

    managers["fetcher"].close.assert_awaited_once()
    managers["redis"].disconnect.assert_awaited_once()
    managers["db"].disconnect.assert_awaited_once()


@pytest.mark.asyncio
async def test_redis_connect_failure_disposes_database(managers) -> None:
    managers["redis"].connect.side_effect = ConnectionError("redis down")

    with pytest.raises(ConnectionError):
        async with main_module.connected_runner():
            pass

    managers["db"].connect.assert_awaited_once()
    managers["db"].disconnect.assert_awaited_once()
    managers["fetcher"].start.assert_not_awaited()
