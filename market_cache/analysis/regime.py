"""
情绪象限计算

情绪轴（恐惧 → 贪婪）与活跃度轴（低 → 高）构成四个象限。
历史轨迹只使用恐惧贪婪指数 + BTC 成交量（两者都有 90 天历史）；
最新的 "Now" 点在提供实时指标时替换为复合分
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Sequence

import pandas as pd

from market_cache.analysis.composite import (
    NEUTRAL_SCORE,
    compute_composite_emotion,
    compute_composite_engagement,
    sigmoid_normalize,
)
from market_cache.models.regime import (
    FearGreedReading,
    RegimeIndicatorSnapshot,
    RegimeMilestones,
    SentimentRegimeData,
    SentimentRegimePoint,
)

logger = logging.getLogger(__name__)

VOLUME_SMA_WINDOW = 30


def _day_key(ts: datetime) -> str:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).strftime("%Y-%m-%d")


def daily_volume_engagement(volume_data: Sequence[Sequence[float]]) -> pd.Series:
    """
    成交量相对 30 日均量的活跃度（0-100），按 UTC 日期索引

    Args:
        volume_data: [[timestamp_ms, volume_usd], ...]
    """
    rows = [(e[0], e[1]) for e in volume_data if len(e) >= 2]
    if not rows:
        return pd.Series(dtype=float)
    df = pd.DataFrame(rows, columns=["ts", "volume"])
    df["date"] = pd.to_datetime(df["ts"], unit="ms", utc=True)
    df = df.sort_values("date").reset_index(drop=True)
    df["sma"] = df["volume"].rolling(window=VOLUME_SMA_WINDOW, min_periods=1).mean()
    df["engagement"] = [
        sigmoid_normalize(v, a) for v, a in zip(df["volume"], df["sma"])
    ]
    df["day"] = df["date"].dt.strftime("%Y-%m-%d")
    return df.groupby("day")["engagement"].last()


def find_closest_point(
    target: datetime,
    points: Sequence[SentimentRegimePoint],
    tolerance_days: int,
) -> Optional[SentimentRegimePoint]:
    """查找距离目标时间最近的点，超出容差返回 None"""
    if not points:
        return None
    closest = min(points, key=lambda p: abs((p.date - target).total_seconds()))
    if abs((closest.date - target).total_seconds()) <= tolerance_days * 86400:
        return closest
    return None


def compute_regime_data(
    fear_greed_history: List[FearGreedReading],
    volume_data: Sequence[Sequence[float]],
    live_indicators: Optional[RegimeIndicatorSnapshot] = None,
) -> Optional[SentimentRegimeData]:
    """
    计算情绪象限数据

    Args:
        fear_greed_history: 恐惧贪婪指数历史
        volume_data: BTC 成交量 [[timestamp_ms, volume_usd], ...]
        live_indicators: 实时指标快照，用于复合 "Now" 点
    """
    if not fear_greed_history or not volume_data:
        return None

    engagement = daily_volume_engagement(volume_data)
    if engagement.empty:
        return None

    points: List[SentimentRegimePoint] = []
    for fg in fear_greed_history:
        day = _day_key(fg.timestamp)
        if day not in engagement.index:
            continue
        points.append(SentimentRegimePoint(
            date=fg.timestamp,
            emotion_score=float(fg.value),
            engagement_score=float(engagement[day]),
        ))
    if not points:
        logger.debug("恐惧贪婪指数与成交量没有重叠的日期")
        return None
    points.sort(key=lambda p: p.date)

    emotion_labels = ["Fear & Greed"]
    engagement_labels = ["BTC Volume"]

    if live_indicators is not None:
        latest = max(fear_greed_history, key=lambda fg: fg.timestamp)
        base_volume = float(engagement.get(_day_key(latest.timestamp), NEUTRAL_SCORE))
        emotion, emotion_labels = compute_composite_emotion(latest.value, live_indicators)
        engaged, engagement_labels = compute_composite_engagement(base_volume, live_indicators)
        points[-1] = SentimentRegimePoint(
            date=latest.timestamp,
            emotion_score=emotion,
            engagement_score=engaged,
        )

    today = points[-1]
    milestones = RegimeMilestones(
        today=today,
        one_week_ago=find_closest_point(today.date - timedelta(days=7), points, 2),
        one_month_ago=find_closest_point(today.date - timedelta(days=30), points, 3),
        three_months_ago=find_closest_point(today.date - timedelta(days=90), points, 5),
    )
    return SentimentRegimeData(
        current_regime=today.regime,
        current_point=today,
        milestones=milestones,
        trajectory=points,
        emotion_components=emotion_labels,
        engagement_components=engagement_labels,
    )
