"""
用户行为分析服务
事件先缓存在内存中，达到阈值或定时批量写入 MongoDB；
写入失败的事件重新放回队首（有上限），同时维护每日活跃用户记录
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set

from pymongo.errors import PyMongoError

from market_cache.layers.tasks import BackgroundTasks
from market_cache.models.analytics import AnalyticsEvent, DailyActiveUser, new_session_id

logger = logging.getLogger(__name__)

EVENTS_COLLECTION = "analytics_events"
DAU_COLLECTION = "daily_active_users"


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class AnalyticsService:
    """批量上传的行为分析缓冲区"""

    def __init__(
        self,
        db=None,
        tasks: Optional[BackgroundTasks] = None,
        flush_interval: float = 60.0,
        flush_threshold: int = 10,
        max_retry_buffer: int = 100,
        consent: bool = False,
        user_id_provider: Optional[Callable[[], Optional[str]]] = None,
        session_id: Optional[str] = None,
        device_info: Optional[Dict[str, Any]] = None,
        app_version: Optional[str] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._db = db
        self._tasks = tasks or BackgroundTasks()
        self._flush_interval = flush_interval
        self._flush_threshold = flush_threshold
        self._max_retry_buffer = max_retry_buffer
        self._consent = consent
        self._user_id_provider = user_id_provider or (lambda: None)
        self._session_id = session_id or new_session_id()
        self._device_info = device_info or {}
        self._app_version = app_version
        self._clock = clock

        self._buffer: List[AnalyticsEvent] = []
        self._screen_view_count = 0
        self._coins_viewed: Set[str] = set()
        self._current_day = ""
        self._flush_task: Optional[asyncio.Task] = None

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    @property
    def is_consent_granted(self) -> bool:
        return self._consent

    def set_consent(self, granted: bool) -> None:
        """更新用户授权；撤销授权时清空未上传事件"""
        self._consent = granted
        if not granted:
            self._buffer.clear()

    # ── 记录事件 ──────────────────────────────────────────

    async def track(self, event_name: str, properties: Optional[Dict[str, Any]] = None) -> None:
        """记录事件，未授权时忽略；达到阈值后在后台上传"""
        if not self._consent:
            return
        self._buffer.append(AnalyticsEvent(
            user_id=self._user_id_provider(),
            event_name=event_name,
            properties=properties,
            session_id=self._session_id,
            device_info=self._device_info,
            created_at=self._clock(),
        ))

        if event_name == "screen_view":
            self._screen_view_count += 1
        if event_name in ("coin_tap", "screen_view") and properties:
            coin = properties.get("coin")
            if isinstance(coin, str):
                self._coins_viewed.add(coin)

        if len(self._buffer) >= self._flush_threshold:
            self._tasks.spawn(self.flush(), name="analytics-flush")

    async def track_screen_view(self, screen_name: str, coin: Optional[str] = None) -> None:
        props: Dict[str, Any] = {"screen": screen_name}
        if coin:
            props["coin"] = coin
        await self.track("screen_view", props)

    async def track_tab_switch(self, tab_name: str) -> None:
        await self.track("tab_switch", {"tab": tab_name})

    async def track_coin_tap(self, coin_id: str, source: str) -> None:
        await self.track("coin_tap", {"coin": coin_id, "source": source})

    async def track_app_open(self, source: str = "cold_start") -> None:
        await self.track("app_open", {"source": source})

    async def track_search(self, query: str, result_count: int) -> None:
        await self.track("search", {"query": query, "result_count": result_count})

    # ── 上传 ──────────────────────────────────────────────

    async def flush(self) -> int:
        """上传缓冲区中的事件，返回成功上传的数量"""
        if self._db is None:
            self._buffer.clear()
            return 0
        if not self._buffer:
            return 0

        events = self._buffer
        self._buffer = []
        sent = 0
        try:
            await self._db[EVENTS_COLLECTION].insert_many([e.model_dump() for e in events])
            sent = len(events)
            logger.info(f"已上传 {sent} 条行为事件")
        except PyMongoError as exc:
            logger.error(f"行为事件上传失败: {exc}")
            room = max(0, self._max_retry_buffer - len(self._buffer))
            self._buffer[:0] = events[:room]

        await self._update_dau()
        return sent

    async def _update_dau(self) -> None:
        user_id = self._user_id_provider()
        if user_id is None:
            return
        today = self._clock().strftime("%Y-%m-%d")
        if today == self._current_day and self._screen_view_count == 0:
            return
        self._current_day = today

        dto = DailyActiveUser(
            user_id=user_id,
            recorded_date=today,
            screen_views=self._screen_view_count,
            coins_viewed=sorted(self._coins_viewed),
            app_version=self._app_version,
        )
        try:
            await self._db[DAU_COLLECTION].update_one(
                {"recorded_date": today, "user_id": user_id},
                {"$set": dto.model_dump()},
                upsert=True,
            )
        except PyMongoError as exc:
            logger.error(f"日活记录更新失败: {exc}")

    # ── 定时上传 ──────────────────────────────────────────

    def start(self) -> None:
        """启动定时上传"""
        if self._flush_task is None:
            self._flush_task = asyncio.create_task(self._periodic_flush())

    async def stop(self) -> None:
        """停止定时上传并上传剩余事件"""
        if self._flush_task is not None:
            self._flush_task.cancel()
            try:
                await self._flush_task
            except asyncio.CancelledError:
                pass
            self._flush_task = None
        await self.flush()

    async def _periodic_flush(self) -> None:
        while True:
            await asyncio.sleep(self._flush_interval)
            await self.flush()
