"""
复合评分引擎
各分量先归一化到 0-100，再按权重加权平均；缺失的指标不参与求和，
其权重按比例分摊给其余分量
"""

import math
from dataclasses import dataclass
from typing import List, Sequence, Tuple

from market_cache.models.regime import RegimeIndicatorSnapshot

NEUTRAL_SCORE = 50.0


@dataclass(frozen=True)
class CompositeComponent:
    score: float    # 0-100
    weight: float
    label: str


class EmotionWeights:
    FEAR_GREED = 0.40
    BTC_RISK = 0.20
    FUNDING_RATE = 0.15
    ALTCOIN_SEASON = 0.15
    BTC_DOMINANCE = 0.10


class EngagementWeights:
    VOLUME = 0.40
    FUNDING_MAGNITUDE = 0.20
    APP_STORE = 0.20
    SEARCH_INTEREST = 0.20


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return min(high, max(low, value))


def _logistic(z: float) -> float:
    # 分支计算避免 exp 溢出
    if z >= 0:
        return 100.0 / (1.0 + math.exp(-z))
    e = math.exp(z)
    return 100.0 * e / (1.0 + e)


def weighted_average(components: Sequence[CompositeComponent]) -> Tuple[float, List[str]]:
    """加权平均；总权重为 0 时返回中性分 50 且无标签"""
    total_weight = sum(c.weight for c in components)
    if total_weight <= 0:
        return NEUTRAL_SCORE, []
    score = sum(c.score * (c.weight / total_weight) for c in components)
    return _clamp(score), [c.label for c in components]


def sigmoid_normalize(value: float, average: float, k: float = 3.0) -> float:
    """
    Sigmoid 归一化到 0-100

    average 为 0 时（资金费率等以 0 为中心的信号）直接使用 value；
    否则使用 value / average 的偏离度，value 等于均值时恰好为 50。
    k 控制曲线陡峭程度，需按指标的量级单独标定
    """
    if average == 0:
        return _clamp(_logistic(k * value))
    return _clamp(_logistic(k * (value / average - 1.0)))


def compute_composite_emotion(
    fear_greed: int, indicators: RegimeIndicatorSnapshot
) -> Tuple[float, List[str]]:
    """情绪轴（恐惧 → 贪婪）复合分"""
    components = [
        CompositeComponent(float(fear_greed), EmotionWeights.FEAR_GREED, "Fear & Greed")
    ]
    if indicators.btc_risk_level is not None:
        components.append(CompositeComponent(
            indicators.btc_risk_level * 100.0, EmotionWeights.BTC_RISK, "BTC Risk"
        ))
    if indicators.funding_rate is not None:
        # 正费率 = 多头付费 = 贪婪
        components.append(CompositeComponent(
            sigmoid_normalize(indicators.funding_rate, 0, k=300),
            EmotionWeights.FUNDING_RATE,
            "Funding Rate",
        ))
    if indicators.altcoin_season is not None:
        components.append(CompositeComponent(
            float(indicators.altcoin_season), EmotionWeights.ALTCOIN_SEASON, "Altcoin Season"
        ))
    if indicators.btc_dominance is not None:
        # 主导率越低投机越强，40%-70% 反向映射到 0-100
        inverted = _clamp((70.0 - indicators.btc_dominance) / 30.0 * 100.0)
        components.append(CompositeComponent(
            inverted, EmotionWeights.BTC_DOMINANCE, "BTC Dominance"
        ))
    return weighted_average(components)


def compute_composite_engagement(
    volume_score: float, indicators: RegimeIndicatorSnapshot
) -> Tuple[float, List[str]]:
    """活跃度轴（低 → 高）复合分"""
    components = [
        CompositeComponent(volume_score, EngagementWeights.VOLUME, "BTC Volume")
    ]
    if indicators.funding_rate is not None:
        components.append(CompositeComponent(
            sigmoid_normalize(abs(indicators.funding_rate), 0.001, k=1500),
            EngagementWeights.FUNDING_MAGNITUDE,
            "Funding Activity",
        ))
    if indicators.app_store_score is not None:
        components.append(CompositeComponent(
            indicators.app_store_score, EngagementWeights.APP_STORE, "App Store"
        ))
    if indicators.search_interest is not None:
        components.append(CompositeComponent(
            float(indicators.search_interest), EngagementWeights.SEARCH_INTEREST, "Search Trends"
        ))
    return weighted_average(components)
