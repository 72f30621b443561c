"""
行情缓存库配置模块
支持从环境变量读取配置，自动检测 Docker 容器环境并启用服务发现
"""

import os
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _is_docker() -> bool:
    """检测当前是否运行在 Docker 容器内"""
    return (
        os.path.exists("/.dockerenv")
        or os.environ.get("DOCKER_CONTAINER", "").lower() in ("1", "true", "yes")
    )


def _default_mongo_host() -> str:
    """Docker 环境使用服务名 'mongodb'，本地使用 'localhost'"""
    return "mongodb" if _is_docker() else "localhost"


def _default_redis_host() -> str:
    """Docker 环境使用服务名 'redis'，本地使用 'localhost'"""
    return "redis" if _is_docker() else "localhost"


class CacheServiceSettings(BaseSettings):
    """行情缓存库配置"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── MongoDB 配置（支持服务发现） ───────────────────────
    MONGODB_HOST: str = Field(default_factory=_default_mongo_host)
    MONGODB_PORT: int = Field(default=27017)
    MONGODB_USERNAME: str = Field(default="")
    MONGODB_PASSWORD: str = Field(default="")
    MONGODB_DATABASE: str = Field(default="market_cache")
    MONGODB_AUTH_SOURCE: str = Field(default="admin")
    MONGODB_ENABLED: bool = Field(default=True)
    MONGO_MAX_CONNECTIONS: int = Field(default=50)
    MONGO_MIN_CONNECTIONS: int = Field(default=5)
    MONGO_CONNECT_TIMEOUT_MS: int = Field(default=30000)
    MONGO_SOCKET_TIMEOUT_MS: int = Field(default=60000)
    MONGO_SERVER_SELECTION_TIMEOUT_MS: int = Field(default=5000)

    @property
    def MONGO_URI(self) -> str:
        if self.MONGODB_USERNAME and self.MONGODB_PASSWORD:
            return (
                f"mongodb://{self.MONGODB_USERNAME}:{self.MONGODB_PASSWORD}"
                f"@{self.MONGODB_HOST}:{self.MONGODB_PORT}"
                f"/{self.MONGODB_DATABASE}?authSource={self.MONGODB_AUTH_SOURCE}"
            )
        return f"mongodb://{self.MONGODB_HOST}:{self.MONGODB_PORT}/{self.MONGODB_DATABASE}"

    # ── Redis 配置（支持服务发现） ─────────────────────────
    REDIS_HOST: str = Field(default_factory=_default_redis_host)
    REDIS_PORT: int = Field(default=6379)
    REDIS_PASSWORD: str = Field(default="")
    REDIS_DB: int = Field(default=0)
    REDIS_ENABLED: bool = Field(default=True)
    REDIS_MAX_CONNECTIONS: int = Field(default=20)

    @property
    def REDIS_URL(self) -> str:
        if self.REDIS_PASSWORD:
            return f"redis://:{self.REDIS_PASSWORD}@{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    # ── 共享缓存（L2）配置 ─────────────────────────────────
    SHARED_CACHE_BACKEND: str = Field(default="mongodb")   # mongodb / redis / none
    SHARED_CACHE_COLLECTION: str = Field(default="market_data_cache")
    SHARED_CACHE_REDIS_PREFIX: str = Field(default="market_data_cache:")

    # ── 缓存 TTL 配置（秒） ────────────────────────────────
    TTL_SHORT: int = Field(default=30)         # 快速变化的数据
    TTL_MEDIUM: int = Field(default=300)       # 行情价格
    TTL_LONG: int = Field(default=300)         # 变化较慢的数据
    TTL_VERY_LONG: int = Field(default=900)    # 相对静态的数据
    STALE_MULTIPLIER: float = Field(default=2.0)  # 超过 TTL × 倍数视为过期
    L1_MAX_ENTRIES: int = Field(default=100, ge=0)  # 0 表示不使用本地缓存
    BACKGROUND_MAX_PENDING: int = Field(default=64)

    # ── 渐进窗口指数配置 ───────────────────────────────────
    SNAPSHOT_DIR: str = Field(default="./cache")
    SNAPSHOT_MAX_COUNT: int = Field(default=120)
    SNAPSHOT_MIN_LOCAL_DAYS: int = Field(default=31)
    SNAPSHOT_TARGET_WINDOW: int = Field(default=90)
    REFERENCE_ASSET_ID: str = Field(default="bitcoin")

    # ── 用户行为分析配置 ───────────────────────────────────
    ANALYTICS_FLUSH_INTERVAL: float = Field(default=60.0)
    ANALYTICS_FLUSH_THRESHOLD: int = Field(default=10)
    ANALYTICS_MAX_RETRY_BUFFER: int = Field(default=100)

    # ── 日志配置 ──────────────────────────────────────────
    LOG_LEVEL: str = Field(default="INFO")


@lru_cache
def get_settings() -> CacheServiceSettings:
    """获取全局配置（单例）"""
    return CacheServiceSettings()
