"""
L2 共享缓存测试

覆盖范围：
  - 新鲜度判定（FRESH / STALE / EXPIRED）
  - 读写、解码失败与后端故障的降级
  - MongoDB / Redis 后端（mock 客户端，不需要真实数据库）
"""

from datetime import datetime, timezone
from typing import List
from unittest.mock import AsyncMock, MagicMock

import pytest
from pydantic import BaseModel
from pymongo.errors import PyMongoError
from redis.exceptions import RedisError

from market_cache.errors import SharedCacheCorrupt, SharedCacheUnavailable
from market_cache.layers.shared import (
    MongoSharedCacheBackend,
    RedisSharedCacheBackend,
    SharedCache,
    SharedCacheRow,
    StalenessVerdict,
    classify_staleness,
    decode_value,
    encode_value,
)


class Quote(BaseModel):
    symbol: str
    price: float
    as_of: datetime


# ─────────────────────────────────────────────────────────
# 1. 新鲜度判定
# ─────────────────────────────────────────────────────────

class TestClassifyStaleness:
    def test_fresh_boundary(self):
        assert classify_staleness(300, 300) is StalenessVerdict.FRESH

    def test_stale(self):
        assert classify_staleness(301, 300) is StalenessVerdict.STALE
        assert classify_staleness(600, 300) is StalenessVerdict.STALE

    def test_expired(self):
        assert classify_staleness(601, 300) is StalenessVerdict.EXPIRED

    def test_custom_multiplier(self):
        assert classify_staleness(800, 300, multiplier=3.0) is StalenessVerdict.STALE


# ─────────────────────────────────────────────────────────
# 2. 编解码
# ─────────────────────────────────────────────────────────

class TestCodec:
    def test_model_round_trip(self):
        q = Quote(symbol="AAPL", price=190.5, as_of=datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc))
        assert decode_value(encode_value(q), Quote) == q

    def test_timestamps_are_iso8601(self):
        data = encode_value({"t": datetime(2026, 1, 2, tzinfo=timezone.utc)})
        assert "2026-01-02T00:00:00Z" in data

    def test_untyped_decode(self):
        assert decode_value('{"a": [1, 2]}') == {"a": [1, 2]}

    def test_generic_type(self):
        assert decode_value("[[1, 2.5]]", List[List[float]]) == [[1.0, 2.5]]

    def test_corrupt_payload(self):
        with pytest.raises(SharedCacheCorrupt):
            decode_value("{not json", Quote)
        with pytest.raises(SharedCacheCorrupt):
            decode_value('{"symbol": "AAPL"}', Quote)


# ─────────────────────────────────────────────────────────
# 3. SharedCache 读写
# ─────────────────────────────────────────────────────────

class TestSharedCache:
    def _cache(self, backend, server_clock, multiplier=2.0):
        return SharedCache(backend=backend, stale_multiplier=multiplier, clock=server_clock)

    @pytest.mark.asyncio
    async def test_unconfigured_is_noop_miss(self):
        cache = SharedCache()
        assert not cache.is_configured
        assert await cache.read("k") == (None, StalenessVerdict.FRESH, False)
        assert await cache.write("k", 1, 60) is False
        assert (await cache.stats())["status"] == "disabled"

    @pytest.mark.asyncio
    async def test_missing_row(self, backend, server_clock):
        result = await self._cache(backend, server_clock).read("k")
        assert result.value is None and result.verdict is StalenessVerdict.FRESH
        assert result.hit is False

    @pytest.mark.asyncio
    async def test_write_then_read_fresh(self, backend, server_clock):
        cache = self._cache(backend, server_clock)
        assert await cache.write("k", {"v": 1}, 300) is True
        result = await cache.read("k")
        assert result.value == {"v": 1}
        assert result.verdict is StalenessVerdict.FRESH
        assert result.hit is True

    @pytest.mark.asyncio
    async def test_null_row_is_hit(self, backend, server_clock):
        cache = self._cache(backend, server_clock)
        assert await cache.write("k", None, 300) is True
        assert await cache.read("k") == (None, StalenessVerdict.FRESH, True)

    @pytest.mark.asyncio
    async def test_stale_row_returned(self, backend, server_clock):
        backend.seed("k", '{"v": 1}', age=450, ttl_seconds=300)
        result = await self._cache(backend, server_clock).read("k")
        assert result.value == {"v": 1}
        assert result.verdict is StalenessVerdict.STALE

    @pytest.mark.asyncio
    async def test_expired_row_is_miss(self, backend, server_clock):
        backend.seed("k", '{"v": 1}', age=601, ttl_seconds=300)
        result = await self._cache(backend, server_clock).read("k")
        assert result.value is None
        assert result.verdict is StalenessVerdict.EXPIRED
        assert result.hit is False

    @pytest.mark.asyncio
    async def test_uses_row_ttl_and_server_timestamp(self, backend, server_clock):
        cache = self._cache(backend, server_clock)
        await cache.write("k", 1, 10)
        server_clock.advance(15)
        assert (await cache.read("k")).verdict is StalenessVerdict.STALE
        server_clock.advance(10)
        assert (await cache.read("k")).verdict is StalenessVerdict.EXPIRED

    @pytest.mark.asyncio
    async def test_typed_read(self, backend, server_clock):
        cache = self._cache(backend, server_clock)
        q = Quote(symbol="BTC", price=1.0, as_of=datetime(2026, 1, 1, tzinfo=timezone.utc))
        await cache.write("q", q, 60)
        assert (await cache.read("q", Quote)).value == q

    @pytest.mark.asyncio
    async def test_corrupt_row_is_fresh_miss(self, backend, server_clock):
        backend.seed("k", "{garbage", age=1, ttl_seconds=300)
        result = await self._cache(backend, server_clock).read("k", Quote)
        assert result == (None, StalenessVerdict.FRESH, False)

    @pytest.mark.asyncio
    async def test_backend_read_failure_degrades(self, backend, server_clock):
        backend.fail_reads = True
        result = await self._cache(backend, server_clock).read("k")
        assert result == (None, StalenessVerdict.FRESH, False)

    @pytest.mark.asyncio
    async def test_backend_write_failure_returns_false(self, backend, server_clock):
        backend.fail_writes = True
        assert await self._cache(backend, server_clock).write("k", 1, 60) is False

    @pytest.mark.asyncio
    async def test_unserializable_value(self, backend, server_clock):
        assert await self._cache(backend, server_clock).write("k", object(), 60) is False
        assert backend.writes == 0

    @pytest.mark.asyncio
    async def test_stats(self, backend, server_clock):
        cache = self._cache(backend, server_clock)
        await cache.write("a", 1, 60)
        assert await cache.stats() == {"backend": "memory", "rows": 1, "status": "healthy"}


# ─────────────────────────────────────────────────────────
# 4. MongoDB 后端
# ─────────────────────────────────────────────────────────

class TestMongoBackend:
    def _backend(self, collection):
        db = MagicMock()
        db.__getitem__.return_value = collection
        return MongoSharedCacheBackend(db, "market_data_cache")

    @pytest.mark.asyncio
    async def test_upsert_uses_server_timestamp(self):
        collection = MagicMock()
        collection.update_one = AsyncMock()
        await self._backend(collection).upsert_row("k", '{"v": 1}', 300)
        (flt, update), kwargs = collection.update_one.call_args
        assert flt == {"key": "k"}
        assert update["$currentDate"] == {"updated_at": True}
        assert update["$set"] == {"key": "k", "data": '{"v": 1}', "ttl_seconds": 300}
        assert kwargs["upsert"] is True

    @pytest.mark.asyncio
    async def test_fetch_row(self):
        collection = MagicMock()
        collection.find_one = AsyncMock(return_value={
            "key": "k", "data": "1", "ttl_seconds": 60,
            "updated_at": datetime(2026, 1, 1),
        })
        row = await self._backend(collection).fetch_row("k")
        assert row.updated_at.tzinfo is timezone.utc
        assert row.ttl_seconds == 60

    @pytest.mark.asyncio
    async def test_fetch_missing(self):
        collection = MagicMock()
        collection.find_one = AsyncMock(return_value=None)
        assert await self._backend(collection).fetch_row("k") is None

    @pytest.mark.asyncio
    async def test_malformed_document(self):
        collection = MagicMock()
        collection.find_one = AsyncMock(return_value={"key": "k"})
        with pytest.raises(SharedCacheCorrupt):
            await self._backend(collection).fetch_row("k")

    @pytest.mark.asyncio
    async def test_driver_error_mapped(self):
        collection = MagicMock()
        collection.find_one = AsyncMock(side_effect=PyMongoError("timeout"))
        with pytest.raises(SharedCacheUnavailable):
            await self._backend(collection).fetch_row("k")

    @pytest.mark.asyncio
    async def test_ensure_indexes(self):
        collection = MagicMock()
        collection.create_index = AsyncMock()
        await self._backend(collection).ensure_indexes()
        collection.create_index.assert_awaited_once_with("key", unique=True)


# ─────────────────────────────────────────────────────────
# 5. Redis 后端
# ─────────────────────────────────────────────────────────

class TestRedisBackend:
    def _redis(self):
        redis = MagicMock()
        redis.register_script.return_value = AsyncMock(return_value=1767225600000)
        return redis

    @pytest.mark.asyncio
    async def test_fetch_row(self):
        redis = self._redis()
        redis.hgetall = AsyncMock(return_value={
            "key": "k", "data": '{"v": 1}', "ttl_seconds": "300", "updated_at": "1767225600000",
        })
        row = await RedisSharedCacheBackend(redis, "p:").fetch_row("k")
        redis.hgetall.assert_awaited_once_with("p:k")
        assert row.updated_at == datetime(2026, 1, 1, tzinfo=timezone.utc)
        assert row.ttl_seconds == 300

    @pytest.mark.asyncio
    async def test_fetch_missing(self):
        redis = self._redis()
        redis.hgetall = AsyncMock(return_value={})
        assert await RedisSharedCacheBackend(redis).fetch_row("k") is None

    @pytest.mark.asyncio
    async def test_malformed_hash(self):
        redis = self._redis()
        redis.hgetall = AsyncMock(return_value={"data": "1", "updated_at": "x", "ttl_seconds": "1"})
        with pytest.raises(SharedCacheCorrupt):
            await RedisSharedCacheBackend(redis).fetch_row("k")

    @pytest.mark.asyncio
    async def test_upsert_runs_script(self):
        redis = self._redis()
        backend = RedisSharedCacheBackend(redis, "p:")
        await backend.upsert_row("k", "1", 60)
        script = redis.register_script.return_value
        script.assert_awaited_once_with(keys=["p:k"], args=["k", "1", 60])

    @pytest.mark.asyncio
    async def test_redis_error_mapped(self):
        redis = self._redis()
        redis.hgetall = AsyncMock(side_effect=RedisError("conn refused"))
        with pytest.raises(SharedCacheUnavailable):
            await RedisSharedCacheBackend(redis).fetch_row("k")


class TestSharedCacheRow:
    def test_naive_timestamp_assumed_utc(self):
        row = SharedCacheRow(key="k", data="1", updated_at=datetime(2026, 1, 1), ttl_seconds=1)
        assert row.updated_at.tzinfo is timezone.utc
