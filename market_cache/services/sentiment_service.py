"""
情绪数据服务
通过三级缓存获取外部数据源，再交给分析层计算。
具体数据源由调用方以无参异步函数的形式注入
"""

import logging
from typing import Awaitable, Callable, List, Optional

from market_cache.analysis.regime import compute_regime_data
from market_cache.analysis.window_index import ProgressiveWindowIndex
from market_cache.layers.keys import TTL, CacheKeys, make_key
from market_cache.layers.tiered import TieredCache
from market_cache.models.regime import (
    FearGreedReading,
    RegimeIndicatorSnapshot,
    SentimentRegimeData,
)
from market_cache.models.snapshot import IndicatorSnapshot, WindowIndex

logger = logging.getLogger(__name__)


class SentimentService:
    """情绪相关数据的业务服务"""

    def __init__(
        self,
        cache: TieredCache,
        window_index: ProgressiveWindowIndex,
        ttl_long: float = TTL.LONG,
        ttl_very_long: float = TTL.VERY_LONG,
    ):
        self._cache = cache
        self._window_index = window_index
        self._ttl_long = ttl_long
        self._ttl_very_long = ttl_very_long

    # ── 山寨季指数 ────────────────────────────────────────

    async def get_altcoin_season(
        self, fetch_remote: Callable[[], Awaitable[WindowIndex]]
    ) -> WindowIndex:
        """
        获取山寨季指数

        本地快照足够时使用渐进窗口计算结果，否则回退到外部接口（默认 30 天窗口）。
        两种结果都经由三级缓存保存
        """
        async def resolve() -> WindowIndex:
            local = self._window_index.compute_best_index()
            if local is not None:
                logger.debug(f"使用本地 {local.calculation_window} 天窗口计算山寨季指数")
                return local
            return await fetch_remote()

        return await self._cache.get_or_fetch(
            CacheKeys.ALTCOIN_SEASON,
            resolve,
            ttl=self._ttl_very_long,
            value_type=WindowIndex,
        )

    def record_daily_snapshot(self, snapshot: IndicatorSnapshot) -> bool:
        """记录每日快照；新快照写入后本地缓存的指数失效"""
        recorded = self._window_index.record_snapshot(snapshot)
        if recorded:
            self._cache.invalidate(CacheKeys.ALTCOIN_SEASON)
        return recorded

    # ── 情绪象限 ──────────────────────────────────────────

    async def get_regime(
        self,
        fetch_fear_greed: Callable[[], Awaitable[List[FearGreedReading]]],
        fetch_volume: Callable[[], Awaitable[List[List[float]]]],
        live_indicators: Optional[RegimeIndicatorSnapshot] = None,
        days: int = 90,
    ) -> Optional[SentimentRegimeData]:
        """
        计算情绪象限数据

        Args:
            fetch_fear_greed: 获取恐惧贪婪指数历史
            fetch_volume: 获取 BTC 成交量 [[timestamp_ms, volume_usd], ...]
            live_indicators: 实时指标快照
            days: 历史天数（参与缓存键）
        """
        history = await self._cache.get_or_fetch(
            CacheKeys.fear_greed_history(days),
            fetch_fear_greed,
            ttl=self._ttl_long,
            value_type=List[FearGreedReading],
        )
        volume = await self._cache.get_or_fetch(
            make_key(CacheKeys.BTC_VOLUME_HISTORY, days),
            fetch_volume,
            ttl=self._ttl_long,
            value_type=List[List[float]],
        )
        return compute_regime_data(history, volume, live_indicators)
