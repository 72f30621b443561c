"""
组件装配与生命周期管理
进程启动时构建一次 CacheStack，以引用方式传给使用方；关闭时统一释放资源

使用方式:
    async with cache_stack() as stack:
        value = await stack.cache.get_or_fetch(CacheKeys.VIX_DATA, fetch_vix)
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from market_cache import __version__
from market_cache.analysis.window_index import ProgressiveWindowIndex, default_snapshot_path
from market_cache.config import CacheServiceSettings, get_settings
from market_cache.db import DatabaseConnections
from market_cache.errors import SharedCacheUnavailable
from market_cache.layers.local import LocalCache
from market_cache.layers.shared import (
    MongoSharedCacheBackend,
    RedisSharedCacheBackend,
    SharedCache,
    SharedCacheBackend,
)
from market_cache.layers.tasks import BackgroundTasks
from market_cache.layers.tiered import TieredCache
from market_cache.services.analytics_service import AnalyticsService
from market_cache.services.sentiment_service import SentimentService

logger = logging.getLogger(__name__)


# ── 日志配置 ──────────────────────────────────────────────
def configure_logging(settings: CacheServiceSettings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


@dataclass
class CacheStack:
    settings: CacheServiceSettings
    connections: DatabaseConnections
    tasks: BackgroundTasks
    cache: TieredCache
    window_index: ProgressiveWindowIndex
    sentiment: SentimentService
    analytics: AnalyticsService

    async def health(self) -> dict:
        """数据库连接与各级缓存的健康状态"""
        result = await self.connections.check_health()
        result["shared_cache"] = await self.cache.shared.stats()
        result["local_cache"] = self.cache.local.stats()
        result["background_pending"] = self.tasks.pending
        return result

    async def close(self) -> None:
        logger.info("🔄 行情缓存正在关闭...")
        await self.analytics.stop()
        await self.tasks.drain()
        await self.cache.close()
        await self.connections.close()
        logger.info("✅ 行情缓存已关闭")


async def _build_backend(
    settings: CacheServiceSettings, connections: DatabaseConnections
) -> Optional[SharedCacheBackend]:
    """按配置选择 L2 后端，连接不可用时返回 None（降级为仅 L1）"""
    choice = settings.SHARED_CACHE_BACKEND.lower()
    if choice == "mongodb" and connections.mongo_db is not None:
        backend = MongoSharedCacheBackend(connections.mongo_db, settings.SHARED_CACHE_COLLECTION)
        try:
            await backend.ensure_indexes()
        except SharedCacheUnavailable as exc:
            logger.warning(f"⚠️ L2 索引创建失败: {exc}")
        return backend
    if choice == "redis" and connections.redis is not None:
        return RedisSharedCacheBackend(connections.redis, settings.SHARED_CACHE_REDIS_PREFIX)
    if choice != "none":
        logger.warning(f"⚠️ 共享缓存后端 {choice} 不可用，降级为仅本地缓存")
    return None


async def build_cache_stack(
    settings: Optional[CacheServiceSettings] = None,
    analytics_consent: bool = False,
) -> CacheStack:
    """构建全部组件；数据库连接失败不会阻断构建"""
    settings = settings or get_settings()
    logger.info("=" * 60)
    logger.info(f"🚀 market_cache v{__version__} 初始化中")
    logger.info(f"   L2 后端   : {settings.SHARED_CACHE_BACKEND}")
    logger.info(f"   MongoDB   : {settings.MONGODB_HOST}:{settings.MONGODB_PORT}")
    logger.info(f"   Redis     : {settings.REDIS_HOST}:{settings.REDIS_PORT}")
    logger.info("=" * 60)

    connections = DatabaseConnections(settings)
    mongo_ok = await connections.init_mongodb()
    redis_ok = False
    if settings.SHARED_CACHE_BACKEND.lower() == "redis":
        redis_ok = await connections.init_redis()

    if not mongo_ok and not redis_ok:
        logger.warning("⚠️ 数据库均不可用，降级为本地内存缓存模式")

    tasks = BackgroundTasks(max_pending=settings.BACKGROUND_MAX_PENDING)
    shared = SharedCache(
        backend=await _build_backend(settings, connections),
        stale_multiplier=settings.STALE_MULTIPLIER,
    )
    cache = TieredCache(
        local=LocalCache(max_entries=settings.L1_MAX_ENTRIES),
        shared=shared,
        tasks=tasks,
        default_ttl=settings.TTL_MEDIUM,
    )
    window_index = ProgressiveWindowIndex(
        path=default_snapshot_path(settings.SNAPSHOT_DIR),
        max_snapshots=settings.SNAPSHOT_MAX_COUNT,
        minimum_local_days=settings.SNAPSHOT_MIN_LOCAL_DAYS,
        target_window=settings.SNAPSHOT_TARGET_WINDOW,
        reference_asset_id=settings.REFERENCE_ASSET_ID,
    )
    analytics = AnalyticsService(
        db=connections.mongo_db,
        tasks=tasks,
        flush_interval=settings.ANALYTICS_FLUSH_INTERVAL,
        flush_threshold=settings.ANALYTICS_FLUSH_THRESHOLD,
        max_retry_buffer=settings.ANALYTICS_MAX_RETRY_BUFFER,
        consent=analytics_consent,
        app_version=__version__,
    )
    sentiment = SentimentService(
        cache,
        window_index,
        ttl_long=settings.TTL_LONG,
        ttl_very_long=settings.TTL_VERY_LONG,
    )
    logger.info(f"✅ 行情缓存就绪（L2: {'已启用' if shared.is_configured else '未启用'}）")
    return CacheStack(
        settings=settings,
        connections=connections,
        tasks=tasks,
        cache=cache,
        window_index=window_index,
        sentiment=sentiment,
        analytics=analytics,
    )


@asynccontextmanager
async def cache_stack(
    settings: Optional[CacheServiceSettings] = None,
    analytics_consent: bool = False,
    setup_logging: bool = False,
) -> AsyncIterator[CacheStack]:
    """构建 CacheStack 并启动定时任务，退出时关闭"""
    settings = settings or get_settings()
    if setup_logging:
        configure_logging(settings)
    stack = await build_cache_stack(settings, analytics_consent=analytics_consent)
    stack.analytics.start()
    try:
        yield stack
    finally:
        await stack.close()
