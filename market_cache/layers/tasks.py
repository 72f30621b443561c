"""
后台任务管理
后台刷新、L2 回写等 fire-and-forget 任务统一在此登记，
持有强引用、记录失败日志，并在关闭时等待或取消
"""

import asyncio
import logging
from typing import Coroutine, Optional, Set

logger = logging.getLogger(__name__)


class BackgroundTasks:
    """有上限的后台任务集合"""

    def __init__(self, max_pending: int = 64):
        self._max_pending = max_pending
        self._tasks: Set[asyncio.Task] = set()
        self._closed = False

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine, name: str = "") -> Optional[asyncio.Task]:
        """
        启动后台任务，调用方不等待其完成

        队列已满或已关闭时丢弃任务并返回 None
        """
        if self._closed:
            coro.close()
            logger.warning(f"后台任务管理器已关闭，丢弃任务: {name}")
            return None
        if len(self._tasks) >= self._max_pending:
            coro.close()
            logger.warning(f"后台任务已达上限 {self._max_pending}，丢弃任务: {name}")
            return None
        task = asyncio.get_running_loop().create_task(coro, name=name or None)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(f"后台任务失败 {task.get_name()}: {exc}")

    async def drain(self) -> None:
        """等待当前所有后台任务结束（包括执行中新派生的任务）"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """取消并等待所有未完成任务"""
        self._closed = True
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        if tasks:
            logger.info(f"已取消 {len(tasks)} 个后台任务")
