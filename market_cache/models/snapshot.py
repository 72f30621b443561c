"""渐进窗口指数的快照与结果模型"""

import datetime
from typing import List

from pydantic import BaseModel, Field


class BasketPrice(BaseModel):
    asset_id: str
    price: float


class IndicatorSnapshot(BaseModel):
    """按 UTC 日期去重的每日快照"""
    date: datetime.date
    reference_price: float
    basket: List[BasketPrice] = Field(default_factory=list)


class SnapshotFile(BaseModel):
    """持久化到磁盘的快照文件"""
    snapshots: List[IndicatorSnapshot] = Field(default_factory=list)
    last_updated: datetime.datetime = Field(
        default_factory=lambda: datetime.datetime.min.replace(tzinfo=datetime.timezone.utc)
    )


class WindowIndex(BaseModel):
    """篮子相对参考资产的跑赢比例指数"""
    value: int
    is_reference_season: bool
    timestamp: datetime.datetime
    calculation_window: int

    @property
    def season(self) -> str:
        return "Reference Season" if self.is_reference_season else "Basket Season"
