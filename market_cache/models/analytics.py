"""用户行为分析事件模型"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class AnalyticsEvent(BaseModel):
    user_id: Optional[str] = None
    event_name: str
    properties: Optional[Dict[str, Any]] = None
    session_id: str
    device_info: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(tz=timezone.utc))


class DailyActiveUser(BaseModel):
    user_id: str
    recorded_date: str
    session_count: int = 1
    screen_views: int = 0
    coins_viewed: List[str] = Field(default_factory=list)
    app_version: Optional[str] = None


def new_session_id() -> str:
    return str(uuid.uuid4())
