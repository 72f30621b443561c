"""
三级缓存编排：L1（本地内存） → L2（共享缓存） → L3（调用方提供的 fetch）

get_or_fetch 的处理顺序（首个命中即返回）：
  1. L1 命中直接返回，不产生任何 I/O
  2. L2 命中（FRESH / STALE）回填 L1 后返回；STALE 时额外调度一次后台刷新
  3. 调用 fetch()，成功后写入 L1 并在后台回写 L2；失败时抛出 FetchFailure

L2 的任何故障都只会让本次调用失去 L2 加速，不会导致调用失败。
同一键的并发未命中共享同一个进行中的 fetch()
"""

import asyncio
import logging
import typing
from collections import Counter
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from market_cache.errors import FetchFailure
from market_cache.layers.local import LocalCache
from market_cache.layers.shared import SharedCache, StalenessVerdict
from market_cache.layers.tasks import BackgroundTasks

logger = logging.getLogger(__name__)

Fetcher = Callable[[], Awaitable[Any]]


def _runtime_type(value_type: Any) -> Optional[type]:
    """把 List[Model] 之类的类型标注还原为可用于 isinstance 的类型"""
    if value_type is None:
        return None
    if isinstance(value_type, type):
        return value_type
    origin = typing.get_origin(value_type)
    return origin if isinstance(origin, type) else None


class TieredCache:
    """三级缓存编排器"""

    def __init__(
        self,
        local: LocalCache,
        shared: SharedCache,
        tasks: Optional[BackgroundTasks] = None,
        default_ttl: float = 300,
    ):
        self._local = local
        self._shared = shared
        self._tasks = tasks or BackgroundTasks()
        self._default_ttl = default_ttl
        self._inflight: Dict[str, asyncio.Task] = {}
        self._refreshing: Set[str] = set()
        self._counters: Counter = Counter()

    @property
    def local(self) -> LocalCache:
        return self._local

    @property
    def shared(self) -> SharedCache:
        return self._shared

    @property
    def tasks(self) -> BackgroundTasks:
        return self._tasks

    async def get_or_fetch(
        self,
        key: str,
        fetch: Fetcher,
        ttl: Optional[float] = None,
        value_type: Any = None,
    ) -> Any:
        """
        三级缓存读取

        Args:
            key: 缓存键（见 CacheKeys）
            fetch: 无参异步函数，从外部 API 获取数据
            ttl: 本次请求的 TTL（秒），默认使用构造时的 default_ttl
            value_type: 期望的值类型，用于 L1 类型检查与 L2 解码

        Raises:
            FetchFailure: 缓存未命中且 fetch() 失败
        """
        if ttl is None:
            ttl = self._default_ttl

        # L1: 本地内存
        hit, cached = self._local.lookup(key, expected_type=_runtime_type(value_type))
        if hit:
            self._counters["l1_hits"] += 1
            logger.debug(f"L1 命中: {key}")
            return cached

        # L2: 共享缓存
        if self._shared.is_configured:
            try:
                result = await self._shared.read(key, value_type)
            except Exception as exc:
                logger.warning(f"L2 读取异常，直接回源 {key}: {exc}")
                result = None
            if result is not None and result.hit:
                self._local.set(key, result.value, ttl)
                stale = result.verdict is StalenessVerdict.STALE
                self._counters["l2_stale_hits" if stale else "l2_hits"] += 1
                logger.debug(f"L2 命中{'（过期，后台刷新）' if stale else ''}: {key}")
                if stale:
                    self._schedule_refresh(key, fetch, ttl)
                return result.value

        # L3: 外部 API
        return await self._fetch_coalesced(key, fetch, ttl)

    def invalidate(self, key: str) -> None:
        """移除本地条目，下次读取会重新查询 L2 / L3"""
        self._local.remove(key)

    def stats(self) -> Dict[str, Any]:
        return {
            "counters": dict(self._counters),
            "local": self._local.stats(),
            "inflight": len(self._inflight),
            "refreshing": len(self._refreshing),
            "background_pending": self._tasks.pending,
        }

    async def close(self) -> None:
        inflight = list(self._inflight.values())
        for task in inflight:
            task.cancel()
        if inflight:
            await asyncio.gather(*inflight, return_exceptions=True)
        await self._tasks.shutdown()

    # ── L3 获取 ───────────────────────────────────────────

    async def _fetch_coalesced(self, key: str, fetch: Fetcher, ttl: float) -> Any:
        # fetch 在独立任务中执行，任一调用方被取消不影响其他等待者
        task = self._inflight.get(key)
        if task is not None:
            self._counters["coalesced"] += 1
            logger.debug(f"复用进行中的请求: {key}")
        else:
            task = asyncio.get_running_loop().create_task(
                self._fetch_and_store(key, fetch, ttl), name=f"fetch:{key}"
            )
            self._inflight[key] = task
            task.add_done_callback(lambda t: self._on_fetch_done(key, t))
        return await asyncio.shield(task)

    def _on_fetch_done(self, key: str, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        # 等待者全部取消时避免 "exception was never retrieved" 警告
        if not task.cancelled():
            task.exception()

    async def _fetch_and_store(self, key: str, fetch: Fetcher, ttl: float) -> Any:
        self._counters["l3_fetches"] += 1
        logger.debug(f"L3 获取: {key}")
        try:
            value = await fetch()
        except Exception as exc:
            self._counters["l3_failures"] += 1
            logger.warning(f"L3 获取失败 {key}: {exc}")
            raise FetchFailure(key, exc) from exc

        self._local.set(key, value, ttl)
        if self._shared.is_configured:
            self._tasks.spawn(self._shared.write(key, value, int(ttl)), name=f"l2-write:{key}")
        return value

    # ── 后台刷新 ──────────────────────────────────────────

    def _schedule_refresh(self, key: str, fetch: Fetcher, ttl: float) -> None:
        if key in self._refreshing:
            return
        task = self._tasks.spawn(
            self._background_refresh(key, fetch, ttl), name=f"refresh:{key}"
        )
        if task is not None:
            self._refreshing.add(key)

    async def _background_refresh(self, key: str, fetch: Fetcher, ttl: float) -> None:
        try:
            try:
                value = await fetch()
            except Exception as exc:
                logger.warning(f"后台刷新失败 {key}: {exc}")
                return
            self._local.set(key, value, ttl)
            await self._shared.write(key, value, int(ttl))
            self._counters["refreshes"] += 1
            logger.debug(f"后台刷新完成: {key}")
        finally:
            self._refreshing.discard(key)
