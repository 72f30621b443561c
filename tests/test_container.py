"""
组件装配测试：数据库不可用时降级为仅本地缓存
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from market_cache.config import CacheServiceSettings
from market_cache.container import build_cache_stack, cache_stack
from market_cache.db import DatabaseConnections
from market_cache.layers.shared import MongoSharedCacheBackend


def _offline_settings(tmp_path, **overrides) -> CacheServiceSettings:
    values = dict(
        MONGODB_ENABLED=False,
        REDIS_ENABLED=False,
        SHARED_CACHE_BACKEND="none",
        SNAPSHOT_DIR=str(tmp_path),
    )
    values.update(overrides)
    return CacheServiceSettings(**values)


class TestContainer:
    @pytest.mark.asyncio
    async def test_local_only_stack(self, tmp_path):
        stack = await build_cache_stack(_offline_settings(tmp_path))
        try:
            assert stack.cache.shared.is_configured is False
            assert stack.connections.mongo_db is None
            assert stack.cache.local.stats()["max_entries"] == 100

            fetch = AsyncMock(return_value={"vix": 14.2})
            assert await stack.cache.get_or_fetch("vix_data", fetch) == {"vix": 14.2}
            assert await stack.cache.get_or_fetch("vix_data", fetch) == {"vix": 14.2}
            fetch.assert_awaited_once()
        finally:
            await stack.close()

    @pytest.mark.asyncio
    async def test_health_report(self, tmp_path):
        stack = await build_cache_stack(_offline_settings(tmp_path))
        try:
            await stack.cache.get_or_fetch("vix_data", AsyncMock(return_value=14.2))
            report = await stack.health()
            assert report["mongodb"] == {"status": "disabled"}
            assert report["redis"] == {"status": "disabled"}
            assert report["shared_cache"] == {"status": "disabled"}
            assert report["local_cache"]["entries"] == 1
            assert report["background_pending"] == 0
        finally:
            await stack.close()

    @pytest.mark.asyncio
    async def test_settings_flow_into_components(self, tmp_path):
        settings = _offline_settings(tmp_path, L1_MAX_ENTRIES=5, STALE_MULTIPLIER=3.0)
        stack = await build_cache_stack(settings)
        try:
            assert stack.cache.local.stats()["max_entries"] == 5
            assert stack.window_index.snapshot_count == 0
        finally:
            await stack.close()

    @pytest.mark.asyncio
    async def test_unavailable_backend_degrades(self, tmp_path):
        settings = _offline_settings(tmp_path, SHARED_CACHE_BACKEND="mongodb")
        stack = await build_cache_stack(settings)
        try:
            assert stack.cache.shared.is_configured is False
        finally:
            await stack.close()

    @pytest.mark.asyncio
    async def test_mongo_backend_selected(self, tmp_path):
        settings = _offline_settings(tmp_path, SHARED_CACHE_BACKEND="mongodb")
        fake_db = MagicMock()

        async def fake_init(self):
            self._mongo_db = fake_db
            return True

        with patch.object(DatabaseConnections, "init_mongodb", fake_init), \
                patch.object(MongoSharedCacheBackend, "ensure_indexes", AsyncMock()) as ensure:
            stack = await build_cache_stack(settings)
        try:
            assert stack.cache.shared.is_configured is True
            ensure.assert_awaited_once()
        finally:
            await stack.close()

    @pytest.mark.asyncio
    async def test_context_manager_closes(self, tmp_path):
        async with cache_stack(_offline_settings(tmp_path), analytics_consent=True) as stack:
            await stack.analytics.track("app_open")
            assert stack.analytics.buffered == 1
        assert stack.analytics.buffered == 0
        assert stack.tasks.pending == 0
