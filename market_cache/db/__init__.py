"""
数据库连接管理模块
统一管理 MongoDB（异步）和 Redis（异步）连接，以显式实例替代全局连接
"""

import logging
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from redis.asyncio import Redis, ConnectionPool

from market_cache.config import CacheServiceSettings

logger = logging.getLogger(__name__)


class DatabaseConnections:
    """MongoDB / Redis 连接持有者，由 CacheStack 创建并负责关闭"""

    def __init__(self, settings: CacheServiceSettings):
        self._settings = settings
        self._mongo_client: Optional[AsyncIOMotorClient] = None
        self._mongo_db: Optional[AsyncIOMotorDatabase] = None
        self._redis_client: Optional[Redis] = None
        self._redis_pool: Optional[ConnectionPool] = None

    @property
    def mongo_db(self) -> Optional[AsyncIOMotorDatabase]:
        """MongoDB 数据库实例（可能为 None）"""
        return self._mongo_db

    @property
    def redis(self) -> Optional[Redis]:
        """Redis 客户端（可能为 None）"""
        return self._redis_client

    async def init_mongodb(self) -> bool:
        """初始化 MongoDB 异步连接，返回是否成功"""
        s = self._settings
        if not s.MONGODB_ENABLED:
            logger.info("MongoDB 未启用，跳过初始化")
            return False
        try:
            self._mongo_client = AsyncIOMotorClient(
                s.MONGO_URI,
                maxPoolSize=s.MONGO_MAX_CONNECTIONS,
                minPoolSize=s.MONGO_MIN_CONNECTIONS,
                serverSelectionTimeoutMS=s.MONGO_SERVER_SELECTION_TIMEOUT_MS,
                connectTimeoutMS=s.MONGO_CONNECT_TIMEOUT_MS,
                socketTimeoutMS=s.MONGO_SOCKET_TIMEOUT_MS,
                tz_aware=True,
            )
            self._mongo_db = self._mongo_client[s.MONGODB_DATABASE]
            await self._mongo_client.admin.command("ping")
            logger.info(f"✅ MongoDB 连接成功: {s.MONGODB_HOST}:{s.MONGODB_PORT}")
            return True
        except Exception as exc:
            logger.warning(f"⚠️ MongoDB 连接失败（缓存将以降级模式运行）: {exc}")
            self._mongo_client = None
            self._mongo_db = None
            return False

    async def init_redis(self) -> bool:
        """初始化 Redis 异步连接，返回是否成功"""
        s = self._settings
        if not s.REDIS_ENABLED:
            logger.info("Redis 未启用，跳过初始化")
            return False
        try:
            self._redis_pool = ConnectionPool.from_url(
                s.REDIS_URL,
                max_connections=s.REDIS_MAX_CONNECTIONS,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=10,
            )
            self._redis_client = Redis(connection_pool=self._redis_pool)
            await self._redis_client.ping()
            logger.info(f"✅ Redis 连接成功: {s.REDIS_HOST}:{s.REDIS_PORT}")
            return True
        except Exception as exc:
            logger.warning(f"⚠️ Redis 连接失败（缓存将以降级模式运行）: {exc}")
            self._redis_client = None
            self._redis_pool = None
            return False

    async def close(self) -> None:
        """关闭所有数据库连接"""
        if self._mongo_client:
            self._mongo_client.close()
            self._mongo_client = None
            self._mongo_db = None
            logger.info("MongoDB 连接已关闭")
        if self._redis_client:
            await self._redis_client.aclose()
            self._redis_client = None
        if self._redis_pool:
            await self._redis_pool.disconnect()
            self._redis_pool = None
            logger.info("Redis 连接已关闭")

    async def check_health(self) -> dict:
        """检查所有数据库连接健康状态"""
        s = self._settings
        result = {
            "mongodb": {"status": "disabled"},
            "redis": {"status": "disabled"},
        }
        if self._mongo_client:
            try:
                await self._mongo_client.admin.command("ping")
                result["mongodb"] = {"status": "healthy", "host": s.MONGODB_HOST}
            except Exception as exc:
                result["mongodb"] = {"status": "unhealthy", "error": str(exc)}
        elif s.MONGODB_ENABLED:
            result["mongodb"] = {"status": "disconnected"}

        if self._redis_client:
            try:
                await self._redis_client.ping()
                result["redis"] = {"status": "healthy", "host": s.REDIS_HOST}
            except Exception as exc:
                result["redis"] = {"status": "unhealthy", "error": str(exc)}
        elif s.REDIS_ENABLED:
            result["redis"] = {"status": "disconnected"}

        return result
