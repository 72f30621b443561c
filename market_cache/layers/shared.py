"""
L2 – 共享缓存层
跨进程共享的键值存储（MongoDB 集合或 Redis 哈希），每个键一行，写入采用 upsert。
新鲜度完全依据服务端写入的 updated_at 判定：
  FRESH   : age <= ttl
  STALE   : ttl < age <= ttl × 倍数（可用，但触发后台刷新）
  EXPIRED : age > ttl × 倍数（视为未命中）
任何 L2 故障都只记录日志并降级为未命中，不向上抛出
"""

import enum
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Callable, NamedTuple, Optional

from pydantic import BaseModel, TypeAdapter, ValidationError, field_validator
from pydantic_core import to_json
from pymongo.errors import PyMongoError
from redis.exceptions import RedisError

from market_cache.errors import SharedCacheCorrupt, SharedCacheUnavailable

logger = logging.getLogger(__name__)


class StalenessVerdict(str, enum.Enum):
    FRESH = "fresh"
    STALE = "stale"
    EXPIRED = "expired"


def classify_staleness(age: float, ttl: float, multiplier: float = 2.0) -> StalenessVerdict:
    """根据数据年龄与 TTL 判定新鲜度"""
    if age <= ttl:
        return StalenessVerdict.FRESH
    if age <= ttl * multiplier:
        return StalenessVerdict.STALE
    return StalenessVerdict.EXPIRED


class SharedCacheRow(BaseModel):
    """共享缓存中的一行"""
    key: str
    data: str
    updated_at: datetime
    ttl_seconds: int

    @field_validator("updated_at")
    @classmethod
    def _ensure_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class L2Result(NamedTuple):
    value: Optional[Any]
    verdict: StalenessVerdict
    hit: bool = False


_MISS = L2Result(None, StalenessVerdict.FRESH)


@lru_cache(maxsize=128)
def _adapter(value_type: Any) -> TypeAdapter:
    return TypeAdapter(value_type)


def decode_value(data: str, value_type: Any = None) -> Any:
    """将 L2 中的 JSON 文本解码为目标类型，失败时抛出 SharedCacheCorrupt"""
    try:
        if value_type is None:
            return json.loads(data)
        return _adapter(value_type).validate_json(data)
    except ValueError as exc:
        raise SharedCacheCorrupt(str(exc)) from exc


def encode_value(value: Any) -> str:
    """序列化为 JSON 文本，时间统一为 ISO-8601"""
    return to_json(value).decode("utf-8")


# ── 存储后端 ──────────────────────────────────────────────

class SharedCacheBackend(ABC):
    """L2 存储后端：按键 upsert，由服务端分配更新时间"""

    name = "backend"

    @abstractmethod
    async def fetch_row(self, key: str) -> Optional[SharedCacheRow]:
        ...

    @abstractmethod
    async def upsert_row(self, key: str, data: str, ttl_seconds: int) -> None:
        ...

    @abstractmethod
    async def count_rows(self) -> int:
        ...


class MongoSharedCacheBackend(SharedCacheBackend):
    """MongoDB 后端，updated_at 由 $currentDate 在服务端生成"""

    name = "mongodb"

    def __init__(self, db, collection: str = "market_data_cache"):
        self._collection = db[collection]

    async def ensure_indexes(self) -> None:
        try:
            await self._collection.create_index("key", unique=True)
        except PyMongoError as exc:
            raise SharedCacheUnavailable(f"MongoDB 索引创建失败: {exc}") from exc

    async def fetch_row(self, key: str) -> Optional[SharedCacheRow]:
        try:
            doc = await self._collection.find_one({"key": key}, {"_id": 0})
        except PyMongoError as exc:
            raise SharedCacheUnavailable(f"MongoDB 读取失败: {exc}") from exc
        if doc is None:
            return None
        try:
            return SharedCacheRow.model_validate(doc)
        except ValidationError as exc:
            raise SharedCacheCorrupt(f"MongoDB 行格式错误: {exc}") from exc

    async def upsert_row(self, key: str, data: str, ttl_seconds: int) -> None:
        try:
            await self._collection.update_one(
                {"key": key},
                {
                    "$set": {"key": key, "data": data, "ttl_seconds": ttl_seconds},
                    "$currentDate": {"updated_at": True},
                },
                upsert=True,
            )
        except PyMongoError as exc:
            raise SharedCacheUnavailable(f"MongoDB 写入失败: {exc}") from exc

    async def count_rows(self) -> int:
        try:
            return await self._collection.count_documents({})
        except PyMongoError as exc:
            raise SharedCacheUnavailable(f"MongoDB 统计失败: {exc}") from exc


# 以服务端 TIME 生成 updated_at（毫秒），整个写入在脚本内原子完成
_REDIS_UPSERT_SCRIPT = """
local t = redis.call('TIME')
local ms = tonumber(t[1]) * 1000 + math.floor(tonumber(t[2]) / 1000)
redis.call('HSET', KEYS[1], 'key', ARGV[1], 'data', ARGV[2], 'ttl_seconds', ARGV[3], 'updated_at', ms)
return ms
"""


class RedisSharedCacheBackend(SharedCacheBackend):
    """Redis 后端，每个键一个哈希"""

    name = "redis"

    def __init__(self, redis, prefix: str = "market_data_cache:"):
        self._redis = redis
        self._prefix = prefix
        self._upsert = redis.register_script(_REDIS_UPSERT_SCRIPT)

    def _name(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def fetch_row(self, key: str) -> Optional[SharedCacheRow]:
        try:
            fields = await self._redis.hgetall(self._name(key))
        except RedisError as exc:
            raise SharedCacheUnavailable(f"Redis 读取失败: {exc}") from exc
        if not fields:
            return None
        try:
            updated_ms = int(fields["updated_at"])
            return SharedCacheRow(
                key=fields.get("key", key),
                data=fields["data"],
                updated_at=datetime.fromtimestamp(updated_ms / 1000, tz=timezone.utc),
                ttl_seconds=int(fields["ttl_seconds"]),
            )
        except (KeyError, ValueError) as exc:
            raise SharedCacheCorrupt(f"Redis 行格式错误: {exc}") from exc

    async def upsert_row(self, key: str, data: str, ttl_seconds: int) -> None:
        try:
            await self._upsert(keys=[self._name(key)], args=[key, data, ttl_seconds])
        except RedisError as exc:
            raise SharedCacheUnavailable(f"Redis 写入失败: {exc}") from exc

    async def count_rows(self) -> int:
        try:
            count = 0
            async for _ in self._redis.scan_iter(match=f"{self._prefix}*"):
                count += 1
            return count
        except RedisError as exc:
            raise SharedCacheUnavailable(f"Redis 统计失败: {exc}") from exc


# ── 共享缓存 ──────────────────────────────────────────────

def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class SharedCache:
    """L2 共享缓存；未配置后端时所有操作都是无副作用的未命中"""

    def __init__(
        self,
        backend: Optional[SharedCacheBackend] = None,
        stale_multiplier: float = 2.0,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._backend = backend
        self._stale_multiplier = stale_multiplier
        self._clock = clock

    @property
    def is_configured(self) -> bool:
        return self._backend is not None

    @property
    def stale_multiplier(self) -> float:
        return self._stale_multiplier

    def classify(self, row: SharedCacheRow) -> StalenessVerdict:
        age = (self._clock() - row.updated_at).total_seconds()
        return classify_staleness(age, row.ttl_seconds, self._stale_multiplier)

    async def read(self, key: str, value_type: Any = None) -> L2Result:
        """读取并判定新鲜度；损坏或不可用均按未命中处理"""
        if self._backend is None:
            return _MISS
        try:
            row = await self._backend.fetch_row(key)
        except SharedCacheUnavailable as exc:
            logger.warning(f"L2 读取失败 {key}: {exc}")
            return _MISS
        except SharedCacheCorrupt as exc:
            logger.warning(f"L2 数据损坏，按未命中处理 {key}: {exc}")
            return _MISS
        if row is None:
            return _MISS

        verdict = self.classify(row)
        if verdict is StalenessVerdict.EXPIRED:
            logger.debug(f"L2 数据已过期: {key}")
            return L2Result(None, StalenessVerdict.EXPIRED)

        try:
            value = decode_value(row.data, value_type)
        except SharedCacheCorrupt as exc:
            logger.warning(f"L2 数据解码失败，按未命中处理 {key}: {exc}")
            return _MISS
        return L2Result(value, verdict, hit=True)

    async def write(self, key: str, value: Any, ttl_seconds: int) -> bool:
        """尽力写入，失败只记录日志"""
        if self._backend is None:
            return False
        try:
            data = encode_value(value)
        except ValueError as exc:
            logger.warning(f"L2 序列化失败 {key}: {exc}")
            return False
        try:
            await self._backend.upsert_row(key, data, int(ttl_seconds))
        except SharedCacheUnavailable as exc:
            logger.warning(f"L2 写入失败 {key}: {exc}")
            return False
        logger.debug(f"L2 写入: {key}")
        return True

    async def stats(self) -> dict:
        if self._backend is None:
            return {"status": "disabled"}
        try:
            rows = await self._backend.count_rows()
        except SharedCacheUnavailable as exc:
            return {"backend": self._backend.name, "status": "error", "error": str(exc)}
        return {"backend": self._backend.name, "rows": rows, "status": "healthy"}
