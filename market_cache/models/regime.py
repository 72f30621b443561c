"""情绪象限相关模型"""

import enum
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class SentimentRegime(str, enum.Enum):
    PANIC = "panic"              # 恐惧 + 高活跃
    FOMO = "fomo"                # 贪婪 + 高活跃
    APATHY = "apathy"            # 恐惧 + 低活跃
    COMPLACENCY = "complacency"  # 贪婪 + 低活跃

    @classmethod
    def classify(cls, emotion: float, engagement: float) -> "SentimentRegime":
        if engagement >= 50:
            return cls.FOMO if emotion >= 50 else cls.PANIC
        return cls.COMPLACENCY if emotion >= 50 else cls.APATHY


class FearGreedReading(BaseModel):
    value: int
    timestamp: datetime


class RegimeIndicatorSnapshot(BaseModel):
    """实时指标快照，缺失的指标保持 None"""
    btc_risk_level: Optional[float] = None     # 0.0 - 1.0
    funding_rate: Optional[float] = None       # 一般在 -0.01 ~ +0.01
    altcoin_season: Optional[int] = None       # 0 - 100
    btc_dominance: Optional[float] = None      # 百分比
    app_store_score: Optional[float] = None    # 0 - 100
    search_interest: Optional[int] = None      # 0 - 100


class SentimentRegimePoint(BaseModel):
    date: datetime
    emotion_score: float
    engagement_score: float

    @property
    def regime(self) -> SentimentRegime:
        return SentimentRegime.classify(self.emotion_score, self.engagement_score)


class RegimeMilestones(BaseModel):
    today: SentimentRegimePoint
    one_week_ago: Optional[SentimentRegimePoint] = None
    one_month_ago: Optional[SentimentRegimePoint] = None
    three_months_ago: Optional[SentimentRegimePoint] = None


class SentimentRegimeData(BaseModel):
    current_regime: SentimentRegime
    current_point: SentimentRegimePoint
    milestones: RegimeMilestones
    trajectory: List[SentimentRegimePoint] = Field(default_factory=list)
    emotion_components: List[str] = Field(default_factory=list)
    engagement_components: List[str] = Field(default_factory=list)
